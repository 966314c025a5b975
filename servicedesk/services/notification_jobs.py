"""
Notification job construction.

Jobs are built inside the workflow transaction, so recipient lookups see the
same snapshot as the write-set, and are handed to the notification queue only
after the transaction commits.
"""

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from servicedesk.core.config import settings
from servicedesk.models.notification import NotificationType
from servicedesk.models.purchase_order import PurchaseOrder, PurchaseOrderStatus
from servicedesk.models.ticket import Ticket, TicketStatus
from servicedesk.models.user import User, UserRole
from servicedesk.services.access_policy import Actor


@dataclass(frozen=True)
class NotificationJob:
    recipients: FrozenSet[int]
    type: NotificationType
    title: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    email_subject: Optional[str] = None
    email_template: Optional[str] = None
    email_context: Dict[str, Any] = field(default_factory=dict)
    attempt: int = 1

    def retry_for(self, recipients: Iterable[int]) -> "NotificationJob":
        return dataclasses.replace(self, recipients=frozenset(recipients), attempt=self.attempt + 1)


PO_TITLES: Dict[PurchaseOrderStatus, str] = {
    PurchaseOrderStatus.DRAFT: "PO #{number} Drafted",
    PurchaseOrderStatus.PENDING_APPROVAL: "PO #{number} Requires Approval",
    PurchaseOrderStatus.APPROVED: "PO #{number} Approved",
    PurchaseOrderStatus.REJECTED: "PO #{number} Rejected",
    PurchaseOrderStatus.ORDERED: "PO #{number} Marked as Ordered",
    PurchaseOrderStatus.RECEIVED: "PO #{number} Received",
    PurchaseOrderStatus.CANCELLED: "PO #{number} Cancelled",
}


def _po_message(po: PurchaseOrder, status: PurchaseOrderStatus, updated_by: str, notes: Optional[str]) -> str:
    number = po.po_number
    if status == PurchaseOrderStatus.DRAFT:
        return f"Purchase order #{number} has been drafted for ticket #{po.ticket_id}."
    if status == PurchaseOrderStatus.PENDING_APPROVAL:
        return (
            f"A new purchase order #{number} has been submitted for ticket "
            f"#{po.ticket_id} and requires your approval."
        )
    if status == PurchaseOrderStatus.APPROVED:
        return f"Purchase order #{number} has been approved by {updated_by}."
    if status == PurchaseOrderStatus.REJECTED:
        message = f"Purchase order #{number} has been rejected by {updated_by}."
        return f"{message} Reason: {notes}" if notes else message
    if status == PurchaseOrderStatus.ORDERED:
        return f"Purchase order #{number} has been marked as ordered."
    if status == PurchaseOrderStatus.RECEIVED:
        return f"Purchase order #{number} has been marked as received."
    if status == PurchaseOrderStatus.CANCELLED:
        message = f"Purchase order #{number} has been cancelled by {updated_by}."
        return f"{message} Reason: {notes}" if notes else message
    return f"The status of purchase order #{number} has been updated to {status.value}."


class NotificationJobBuilder:
    """Resolves recipients and renders texts for workflow events."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ------------------------------------------------------------------
    # Recipient resolution
    # ------------------------------------------------------------------

    async def customer_contact_ids(self, customer_id: int) -> List[int]:
        result = await self.db.execute(
            select(User.id).where(
                User.customer_id == customer_id,
                User.role == UserRole.CUSTOMER_ACCOUNT_OWNER,
                User.is_active.is_(True),
            )
        )
        return list(result.scalars().all())

    async def admin_ids(self) -> List[int]:
        result = await self.db.execute(
            select(User.id).where(User.role == UserRole.ADMIN, User.is_active.is_(True))
        )
        return list(result.scalars().all())

    async def ticket_recipients(self, ticket: Ticket, actor: Actor) -> FrozenSet[int]:
        """Customer contacts and the assignee, never the actor."""
        recipients = set(await self.customer_contact_ids(ticket.customer_id))
        if ticket.assigned_to_id is not None:
            recipients.add(ticket.assigned_to_id)
        recipients.discard(actor.id)
        return frozenset(recipients)

    async def po_recipients(self, po: PurchaseOrder, ticket: Ticket, status: PurchaseOrderStatus, actor: Actor) -> FrozenSet[int]:
        recipients = {po.created_by_id}
        if ticket.assigned_to_id is not None:
            recipients.add(ticket.assigned_to_id)
        if status == PurchaseOrderStatus.PENDING_APPROVAL:
            recipients.update(await self.admin_ids())
        recipients.discard(actor.id)
        return frozenset(recipients)

    async def display_name(self, user_id: int) -> str:
        user = await self.db.get(User, user_id)
        if user is None:
            return "System"
        return user.full_name or user.email

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def _ticket_url(self, ticket_id: int) -> str:
        return f"{settings.FRONTEND_BASE_URL}/tickets/{ticket_id}"

    def _po_url(self, po_id: int) -> str:
        return f"{settings.FRONTEND_BASE_URL}/purchase-orders/{po_id}"

    async def ticket_created(self, ticket: Ticket, actor: Actor) -> Optional[NotificationJob]:
        recipients = await self.ticket_recipients(ticket, actor)
        if not recipients:
            return None
        created_by = await self.display_name(actor.id)
        return NotificationJob(
            recipients=recipients,
            type=NotificationType.TICKET_CREATED,
            title=f"Ticket #{ticket.id} Created",
            message=f"Ticket #{ticket.id} \"{ticket.title}\" has been created by {created_by}",
            data={"ticketId": ticket.id, "status": ticket.status.value},
            email_subject=f"Ticket #{ticket.id} - {ticket.title}",
            email_template="ticket_update.html",
            email_context={
                "ticket_id": ticket.id,
                "ticket_title": ticket.title,
                "status": ticket.status.value,
                "updated_by": created_by,
                "comments": ticket.description,
                "ticket_url": self._ticket_url(ticket.id),
                "current_year": datetime.utcnow().year,
            },
        )

    async def ticket_status_changed(
        self,
        ticket: Ticket,
        old_status: TicketStatus,
        new_status: TicketStatus,
        actor: Actor,
        note: Optional[str] = None,
    ) -> Optional[NotificationJob]:
        recipients = await self.ticket_recipients(ticket, actor)
        if not recipients:
            return None
        updated_by = await self.display_name(actor.id)
        status = new_status.value
        return NotificationJob(
            recipients=recipients,
            type=NotificationType.TICKET_UPDATE,
            title=f"Ticket {status}",
            message=f"Ticket #{ticket.id} has been updated to {status}",
            data={
                "ticketId": ticket.id,
                "status": status,
                "previousStatus": old_status.value,
                "updatedBy": actor.id,
                "note": note,
            },
            email_subject=f"Ticket #{ticket.id} - Status Updated to {status}",
            email_template="ticket_update.html",
            email_context={
                "ticket_id": ticket.id,
                "ticket_title": ticket.title,
                "status": status,
                "updated_by": updated_by,
                "comments": note,
                "ticket_url": self._ticket_url(ticket.id),
                "current_year": datetime.utcnow().year,
            },
        )

    async def ticket_assigned(self, ticket: Ticket, assignee_id: int, actor: Actor, note: Optional[str] = None) -> Optional[NotificationJob]:
        if assignee_id == actor.id:
            return None
        assigned_by = await self.display_name(actor.id)
        return NotificationJob(
            recipients=frozenset({assignee_id}),
            type=NotificationType.TICKET_ASSIGNED,
            title=f"Ticket #{ticket.id} Assigned",
            message=f"Ticket #{ticket.id} has been assigned to you by {assigned_by}",
            data={"ticketId": ticket.id, "status": ticket.status.value, "assignedBy": actor.id},
            email_subject=f"Ticket #{ticket.id} - Assigned to you",
            email_template="ticket_update.html",
            email_context={
                "ticket_id": ticket.id,
                "ticket_title": ticket.title,
                "status": ticket.status.value,
                "updated_by": assigned_by,
                "comments": note,
                "ticket_url": self._ticket_url(ticket.id),
                "current_year": datetime.utcnow().year,
            },
        )

    async def po_status_changed(
        self,
        po: PurchaseOrder,
        ticket: Ticket,
        status: PurchaseOrderStatus,
        actor: Actor,
        notes: Optional[str] = None,
    ) -> Optional[NotificationJob]:
        recipients = await self.po_recipients(po, ticket, status, actor)
        if not recipients:
            return None
        updated_by = await self.display_name(actor.id)
        title = PO_TITLES[status].format(number=po.po_number)
        message = _po_message(po, status, updated_by, notes)
        return NotificationJob(
            recipients=recipients,
            type=NotificationType(f"PO_{status.value}"),
            title=title,
            message=message,
            data={
                "poId": po.id,
                "poNumber": po.po_number,
                "ticketId": ticket.id,
                "status": status.value,
                "updatedBy": actor.id,
                "notes": notes,
            },
            email_subject=title,
            email_template="po_status_update.html",
            email_context={
                "po_number": po.po_number,
                "status": status.value.replace("_", " "),
                "message": message,
                "updated_by": updated_by,
                "notes": notes,
                "amount": str(po.total_amount),
                "ticket_id": ticket.id,
                "po_url": self._po_url(po.id),
                "current_year": datetime.utcnow().year,
            },
        )
