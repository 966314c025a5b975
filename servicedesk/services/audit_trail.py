import logging
from decimal import Decimal
import enum
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from servicedesk.models.audit import AuditLog

logger = logging.getLogger(__name__)

TICKET_ENTITY = "TICKET"
PO_ENTITY = "PO_REQUEST"


def _json_safe(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


class AuditTrail:
    """Appends audit rows to the caller's open transaction. Never commits."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def record(
        self,
        entity_type: str,
        entity_id: int,
        action: str,
        performed_by_id: int,
        old_value: Optional[Dict[str, Any]] = None,
        new_value: Optional[Dict[str, Any]] = None,
        ticket_id: Optional[int] = None,
        description: Optional[str] = None,
    ) -> AuditLog:
        entry = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            ticket_id=ticket_id,
            action=action,
            performed_by_id=performed_by_id,
            old_value=_json_safe(old_value) if old_value is not None else None,
            new_value=_json_safe(new_value) if new_value is not None else None,
            description=description,
        )
        self.db.add(entry)
        logger.debug(f"Audit {entity_type}#{entity_id} {action} by user {performed_by_id}")
        return entry
