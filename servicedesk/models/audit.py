from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Text
from datetime import datetime
from servicedesk.core.database import Base


class AuditLog(Base):
    """Immutable audit trail, one row per workflow transition."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Entity
    entity_type = Column(String, nullable=False, index=True)  # "TICKET" or "PO_REQUEST"
    entity_id = Column(Integer, nullable=False, index=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id"), index=True)

    # Action
    action = Column(String, nullable=False, index=True)  # "CREATE", "STATUS_CHANGE", "ASSIGN", ...
    description = Column(Text)

    # Actor
    performed_by_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Snapshots, e.g. {"status": "OPEN"} -> {"status": "IN_PROGRESS"}
    old_value = Column(JSON)
    new_value = Column(JSON)

    # Timestamp (immutable)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
