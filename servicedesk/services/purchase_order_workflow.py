"""
Purchase-order approval workflow.

A purchase order moves DRAFT -> PENDING_APPROVAL -> APPROVED/REJECTED ->
ORDERED -> RECEIVED (or CANCELLED). Approval decisions are reserved for
administrators. Status changes that affect the parent ticket are written in
the same transaction as the purchase order itself, so either both change or
neither does.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from servicedesk.core.database import run_in_transaction
from servicedesk.core.exceptions import ConflictError, Forbidden, ValidationError
from servicedesk.models.purchase_order import PurchaseOrder, PurchaseOrderItem, PurchaseOrderStatus
from servicedesk.models.ticket import Ticket
from servicedesk.services import access_policy
from servicedesk.services.access_policy import Actor
from servicedesk.services.audit_trail import PO_ENTITY
from servicedesk.services.notification_jobs import NotificationJob
from servicedesk.services.ticket_workflow import TicketWorkflowService, clean_note, require_found
from servicedesk.services.transition_table import (
    PO_APPROVAL_DECISIONS,
    PO_CREATED_NOTE,
    PO_CREATED_TICKET_STATUS,
    PO_EDITABLE_STATUSES,
    assert_po_transition,
    coupling_for,
    parse_po_status,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def generate_po_number() -> str:
    """Generate unique purchase order number."""
    return f"PO-{datetime.utcnow().strftime('%Y%m%d')}-{str(uuid.uuid4())[:8].upper()}"


@dataclass(frozen=True)
class ItemLine:
    description: str
    quantity: int
    unit_price: Decimal

    @property
    def total_price(self) -> Decimal:
        return (self.unit_price * self.quantity).quantize(CENT)


def _field(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


def validate_item(item: Any) -> ItemLine:
    description = (_field(item, "description") or "").strip()
    if not description:
        raise ValidationError("Item description is required")

    quantity = _field(item, "quantity")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError(f"Item quantity must be a positive integer, got {quantity!r}")

    raw_price = _field(item, "unit_price")
    try:
        unit_price = Decimal(str(raw_price)).quantize(CENT)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid unit price: {raw_price!r}") from None
    if not unit_price.is_finite():
        raise ValidationError(f"Invalid unit price: {raw_price!r}")
    if unit_price < 0:
        raise ValidationError("Item unit price cannot be negative")

    return ItemLine(description=description, quantity=quantity, unit_price=unit_price)


def validate_items(items: Optional[Iterable[Any]]) -> List[ItemLine]:
    lines = [validate_item(item) for item in (items or [])]
    if not lines:
        raise ValidationError("At least one item is required")
    return lines


class PurchaseOrderWorkflowService:
    def __init__(self, db: AsyncSession, notifications=None):
        self.db = db
        self.tickets = TicketWorkflowService(db, notifications)
        self.audit = self.tickets.audit
        self.jobs = self.tickets.jobs

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def lock_po(self, po_id: int) -> Optional[PurchaseOrder]:
        result = await self.db.execute(
            select(PurchaseOrder)
            .where(PurchaseOrder.id == po_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def load_po(self, po_id: int) -> Optional[PurchaseOrder]:
        result = await self.db.execute(
            select(PurchaseOrder)
            .options(selectinload(PurchaseOrder.items), selectinload(PurchaseOrder.ticket))
            .where(PurchaseOrder.id == po_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_po(self, po_id: int, actor: Actor) -> PurchaseOrder:
        po = require_found(await self.load_po(po_id), actor, "Purchase order")
        if not access_policy.can_read_po(actor, po, po.ticket):
            raise Forbidden()
        return po

    def _enqueue_all(self, jobs: Iterable[Optional[NotificationJob]]) -> None:
        for job in jobs:
            self.tickets.enqueue(job)

    # ------------------------------------------------------------------
    # Shared transition
    # ------------------------------------------------------------------

    async def _apply_transition(
        self,
        po: PurchaseOrder,
        ticket: Ticket,
        target: PurchaseOrderStatus,
        actor: Actor,
        notes: Optional[str],
    ) -> List[Optional[NotificationJob]]:
        old_status = po.status
        now = datetime.utcnow()

        po.status = target
        if target == PurchaseOrderStatus.APPROVED:
            po.approved_by_id = actor.id
            po.approved_at = now
        elif target == PurchaseOrderStatus.REJECTED:
            po.rejected_by_id = actor.id
            po.rejected_at = now
            po.rejection_reason = notes
        elif target == PurchaseOrderStatus.CANCELLED:
            po.cancelled_by_id = actor.id
            po.cancelled_at = now
            po.cancellation_reason = notes
        elif target == PurchaseOrderStatus.ORDERED:
            po.ordered_at = now
        elif target == PurchaseOrderStatus.RECEIVED:
            po.received_at = now

        new_value = {"status": target, "total_amount": po.total_amount}
        if notes:
            new_value["notes"] = notes
        self.audit.record(
            PO_ENTITY,
            po.id,
            "STATUS_CHANGE",
            actor.id,
            old_value={"status": old_status, "total_amount": po.total_amount},
            new_value=new_value,
            ticket_id=po.ticket_id,
            description=f"PO {po.po_number} status changed from {old_status.value} to {target.value}",
        )
        await self.db.flush()

        jobs = [await self.jobs.po_status_changed(po, ticket, target, actor, notes)]

        coupling = coupling_for(target, ticket.status)
        if coupling is not None:
            jobs.append(await self.tickets.force_transition(
                ticket,
                coupling.ticket_target,
                actor,
                coupling.note,
                triggered_by={"entity_type": PO_ENTITY, "entity_id": po.id, "po_status": target.value},
            ))

        logger.info(f"PO {po.po_number} status changed {old_status.value} -> {target.value} by user {actor.id}")
        return jobs

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_po(
        self,
        ticket_id: int,
        items: Iterable[Any],
        actor: Actor,
        notes: Optional[str] = None,
        submit: bool = True,
    ) -> PurchaseOrder:
        """
        Raise a purchase order against a ticket.

        The total is always computed from the items. Unless the ticket is
        already waiting for a PO it is moved there in the same transaction.
        """
        lines = validate_items(items)
        notes = clean_note(notes)
        status = PurchaseOrderStatus.PENDING_APPROVAL if submit else PurchaseOrderStatus.DRAFT

        async def work():
            ticket = require_found(await self.tickets.lock_ticket(ticket_id), actor, "Ticket")
            if not access_policy.can_create_po(actor, ticket):
                raise Forbidden()
            if ticket.assigned_to_id is None:
                raise ValidationError("Ticket must be assigned before a purchase order can be raised")

            po = PurchaseOrder(
                po_number=generate_po_number(),
                ticket_id=ticket.id,
                status=status,
                total_amount=sum((line.total_price for line in lines), Decimal("0.00")),
                notes=notes,
                created_by_id=actor.id,
                items=[
                    PurchaseOrderItem(
                        description=line.description,
                        quantity=line.quantity,
                        unit_price=line.unit_price,
                        total_price=line.total_price,
                    )
                    for line in lines
                ],
            )
            self.db.add(po)
            await self.db.flush()

            self.audit.record(
                PO_ENTITY,
                po.id,
                "CREATE",
                actor.id,
                new_value={
                    "status": po.status,
                    "po_number": po.po_number,
                    "total_amount": po.total_amount,
                    "item_count": len(lines),
                },
                ticket_id=ticket.id,
                description=f"PO {po.po_number} created for ticket #{ticket.id}",
            )
            await self.db.flush()

            jobs = [await self.jobs.po_status_changed(po, ticket, status, actor, notes)]
            if ticket.status != PO_CREATED_TICKET_STATUS:
                jobs.append(await self.tickets.force_transition(
                    ticket,
                    PO_CREATED_TICKET_STATUS,
                    actor,
                    PO_CREATED_NOTE,
                    triggered_by={"entity_type": PO_ENTITY, "entity_id": po.id, "po_status": status.value},
                ))
            return po.id, jobs

        po_id, jobs = await run_in_transaction(self.db, work)
        self._enqueue_all(jobs)
        logger.info(f"PO {po_id} created for ticket {ticket_id} by user {actor.id}")
        return await self.load_po(po_id)

    async def approve_po(
        self,
        po_id: int,
        decision: Any,
        actor: Actor,
        notes: Optional[str] = None,
    ) -> PurchaseOrder:
        """Record an administrator's APPROVED or REJECTED decision."""
        if not access_policy.can_approve_po(actor):
            raise Forbidden("Only administrators can approve purchase orders")
        target = parse_po_status(decision)
        if target not in PO_APPROVAL_DECISIONS:
            raise ValidationError("Decision must be APPROVED or REJECTED")
        notes = clean_note(notes)

        async def work():
            po = require_found(await self.lock_po(po_id), actor, "Purchase order")
            if po.status != PurchaseOrderStatus.PENDING_APPROVAL:
                raise ConflictError(
                    f"PO request is already {po.status.value.lower().replace('_', ' ')}"
                )
            ticket = await self.tickets.lock_ticket(po.ticket_id)
            return await self._apply_transition(po, ticket, target, actor, notes)

        jobs = await run_in_transaction(self.db, work)
        self._enqueue_all(jobs)
        return await self.load_po(po_id)

    async def update_po_status(
        self,
        po_id: int,
        requested_status: Any,
        actor: Actor,
        notes: Optional[str] = None,
    ) -> PurchaseOrder:
        target = parse_po_status(requested_status)
        notes = clean_note(notes)

        async def work():
            po = require_found(await self.lock_po(po_id), actor, "Purchase order")
            ticket = await self.tickets.lock_ticket(po.ticket_id)
            if target in PO_APPROVAL_DECISIONS:
                if not access_policy.can_approve_po(actor):
                    raise Forbidden("Only administrators can approve purchase orders")
            elif not access_policy.can_update_po(actor, po, ticket):
                raise Forbidden()

            assert_po_transition(po.status, target)
            return await self._apply_transition(po, ticket, target, actor, notes)

        jobs = await run_in_transaction(self.db, work)
        self._enqueue_all(jobs)
        return await self.load_po(po_id)

    async def add_item(self, po_id: int, item: Any, actor: Actor) -> PurchaseOrder:
        """Append an item while the order is still editable; the total follows."""
        line = validate_item(item)

        async def work():
            po = require_found(await self.lock_po(po_id), actor, "Purchase order")
            ticket = await self.db.get(Ticket, po.ticket_id)
            if not access_policy.can_update_po(actor, po, ticket):
                raise Forbidden()
            if po.status not in PO_EDITABLE_STATUSES:
                raise ConflictError(
                    f"Cannot add items to a purchase order that is {po.status.value}"
                )

            self.db.add(PurchaseOrderItem(
                purchase_order_id=po.id,
                description=line.description,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total_price=line.total_price,
            ))
            old_total = po.total_amount or Decimal("0.00")
            po.total_amount = old_total + line.total_price

            self.audit.record(
                PO_ENTITY,
                po.id,
                "ADD_ITEM",
                actor.id,
                old_value={"total_amount": old_total},
                new_value={
                    "total_amount": po.total_amount,
                    "item": {
                        "description": line.description,
                        "quantity": line.quantity,
                        "unit_price": line.unit_price,
                    },
                },
                ticket_id=po.ticket_id,
                description=f"Item added to PO {po.po_number}",
            )
            await self.db.flush()

        await run_in_transaction(self.db, work)
        logger.info(f"Item added to PO {po_id} by user {actor.id}")
        return await self.load_po(po_id)
