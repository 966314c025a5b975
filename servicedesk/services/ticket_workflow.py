"""
Ticket lifecycle service.

Every state change goes through ``run_in_transaction``: the ticket row is
locked, the edge is validated against the transition table, and the status
update, history row, optional note and audit row are committed together.
Notification jobs built during the transaction are enqueued after commit.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from servicedesk.core.config import settings
from servicedesk.core.database import run_in_transaction
from servicedesk.core.exceptions import ConflictError, Forbidden, InvalidStatus, NotFound, ValidationError
from servicedesk.models.customer import Asset, Customer
from servicedesk.models.ticket import Ticket, TicketHistory, TicketNote, TicketPriority, TicketStatus
from servicedesk.models.user import User, UserRole
from servicedesk.services import access_policy
from servicedesk.services.access_policy import Actor
from servicedesk.services.audit_trail import AuditTrail, TICKET_ENTITY
from servicedesk.services.notification_jobs import NotificationJob, NotificationJobBuilder
from servicedesk.services.transition_table import (
    TERMINAL_TICKET_STATUSES,
    assert_ticket_transition,
    can_force_ticket,
    initial_ticket_status,
    parse_status,
    parse_ticket_status,
    ticket_effects,
)

logger = logging.getLogger(__name__)


def clean_note(note: Optional[str]) -> Optional[str]:
    if note is None:
        return None
    note = note.strip()
    return note or None


def require_found(entity, actor: Actor, label: str):
    """
    Raise NotFound for a missing entity. With HIDE_INACCESSIBLE_ENTITIES set,
    non-admins get the same Forbidden they would get for someone else's
    record, so ids cannot be guessed.
    """
    if entity is not None:
        return entity
    if settings.HIDE_INACCESSIBLE_ENTITIES and not actor.is_admin:
        raise Forbidden()
    raise NotFound(f"{label} not found")


class TicketWorkflowService:
    def __init__(self, db: AsyncSession, notifications=None):
        self.db = db
        self.notifications = notifications
        self.audit = AuditTrail(db)
        self.jobs = NotificationJobBuilder(db)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def lock_ticket(self, ticket_id: int) -> Optional[Ticket]:
        """Load a ticket for update. Concurrent writers queue behind the row lock."""
        result = await self.db.execute(
            select(Ticket)
            .where(Ticket.id == ticket_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def load_ticket(self, ticket_id: int) -> Optional[Ticket]:
        result = await self.db.execute(
            select(Ticket)
            .options(selectinload(Ticket.customer), selectinload(Ticket.assigned_to))
            .where(Ticket.id == ticket_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_ticket(self, ticket_id: int, actor: Actor) -> Ticket:
        ticket = require_found(await self.load_ticket(ticket_id), actor, "Ticket")
        if not access_policy.can_access_ticket(actor, ticket):
            raise Forbidden()
        return ticket

    def enqueue(self, job: Optional[NotificationJob]) -> None:
        if self.notifications is not None and job is not None:
            self.notifications.enqueue(job)

    # ------------------------------------------------------------------
    # Bookkeeping shared with the purchase-order workflow
    # ------------------------------------------------------------------

    async def apply_transition(
        self,
        ticket: Ticket,
        target: TicketStatus,
        actor: Actor,
        note: Optional[str] = None,
        triggered_by: Optional[Dict[str, Any]] = None,
    ) -> TicketStatus:
        """
        Write one ticket transition into the open transaction.

        The edge must already be validated. Returns the previous status.
        """
        old_status = ticket.status
        old_assignee = ticket.assigned_to_id
        effects = ticket_effects(target)
        now = datetime.utcnow()

        # First writer wins; an existing assignee is never replaced
        if effects.auto_assign_actor and ticket.assigned_to_id is None and actor.is_service_person:
            ticket.assigned_to_id = actor.id

        if effects.requires_assignee and ticket.assigned_to_id is None:
            raise ValidationError(f"Ticket must be assigned before moving to {target.value}")

        ticket.status = target
        if effects.stamp_resolved_at and ticket.resolved_at is None:
            ticket.resolved_at = now
        if effects.stamp_closed_at:
            ticket.closed_at = now

        if note:
            self.db.add(TicketNote(ticket_id=ticket.id, author_id=actor.id, content=note, created_at=now))

        self.db.add(TicketHistory(
            ticket_id=ticket.id,
            from_status=old_status,
            status=target,
            note=note or f"Status changed to {target.value}",
            changed_by_id=actor.id,
            changed_at=now,
        ))

        old_value: Dict[str, Any] = {"status": old_status}
        new_value: Dict[str, Any] = {"status": target}
        if ticket.assigned_to_id != old_assignee:
            old_value["assigned_to_id"] = old_assignee
            new_value["assigned_to_id"] = ticket.assigned_to_id
        if triggered_by:
            new_value["triggered_by"] = triggered_by

        self.audit.record(
            TICKET_ENTITY,
            ticket.id,
            "STATUS_CHANGE",
            actor.id,
            old_value=old_value,
            new_value=new_value,
            ticket_id=ticket.id,
            description=f"Status changed from {old_status.value} to {target.value}",
        )
        await self.db.flush()
        return old_status

    async def force_transition(
        self,
        ticket: Ticket,
        target: Optional[TicketStatus],
        actor: Actor,
        note: str,
        triggered_by: Dict[str, Any],
    ) -> Optional[NotificationJob]:
        """
        Ticket side effect of a purchase-order change.

        Bypasses the user-facing edge table but never touches a closed
        ticket. When the ticket is already in ``target`` (or there is no
        target) only the note is written.
        """
        if not can_force_ticket(ticket.status):
            raise ConflictError(
                f"Ticket #{ticket.id} is {ticket.status.value} and cannot be updated by purchase order changes"
            )

        if target is None or ticket.status == target:
            self.db.add(TicketNote(ticket_id=ticket.id, author_id=actor.id, content=note))
            await self.db.flush()
            return None

        old_status = await self.apply_transition(ticket, target, actor, note, triggered_by=triggered_by)
        logger.info(
            f"Ticket {ticket.id} moved {old_status.value} -> {target.value} "
            f"by {triggered_by.get('entity_type')} {triggered_by.get('entity_id')}"
        )
        return await self.jobs.ticket_status_changed(ticket, old_status, target, actor, note)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_ticket(
        self,
        actor: Actor,
        title: str,
        description: Optional[str] = None,
        priority: Any = TicketPriority.MEDIUM,
        customer_id: Optional[int] = None,
        asset_id: Optional[int] = None,
    ) -> Ticket:
        title = (title or "").strip()
        if not title:
            raise ValidationError("Title is required")
        try:
            priority = parse_status(TicketPriority, priority)
        except InvalidStatus:
            raise ValidationError(f"Invalid priority: {priority}") from None

        if actor.is_customer_owner:
            customer_id = actor.customer_id
        if customer_id is None:
            raise ValidationError("customer_id is required")
        if not access_policy.can_create_ticket(actor, customer_id):
            raise Forbidden()

        async def work():
            customer = await self.db.get(Customer, customer_id)
            if customer is None or not customer.is_active:
                raise NotFound("Customer not found")

            asset = None
            if asset_id is not None:
                asset = await self.db.get(Asset, asset_id)
                if asset is None:
                    raise NotFound("Asset not found")
                if asset.customer_id != customer_id:
                    raise ValidationError("Asset does not belong to this customer")

            ticket = Ticket(
                title=title,
                description=description,
                priority=priority,
                status=initial_ticket_status(asset is not None),
                customer_id=customer_id,
                asset_id=asset_id,
                created_by_id=actor.id,
            )
            self.db.add(ticket)
            await self.db.flush()

            self.db.add(TicketHistory(
                ticket_id=ticket.id,
                from_status=None,
                status=ticket.status,
                note="Ticket created",
                changed_by_id=actor.id,
            ))
            self.audit.record(
                TICKET_ENTITY,
                ticket.id,
                "CREATE",
                actor.id,
                new_value={
                    "status": ticket.status,
                    "priority": ticket.priority,
                    "customer_id": customer_id,
                    "asset_id": asset_id,
                },
                ticket_id=ticket.id,
                description=f"Ticket created: {title}",
            )
            await self.db.flush()
            return ticket.id, await self.jobs.ticket_created(ticket, actor)

        ticket_id, job = await run_in_transaction(self.db, work)
        self.enqueue(job)
        logger.info(f"Ticket {ticket_id} created by user {actor.id}")
        return await self.load_ticket(ticket_id)

    async def transition(
        self,
        ticket_id: int,
        requested_status: Any,
        actor: Actor,
        note: Optional[str] = None,
    ) -> Ticket:
        """
        Move a ticket to ``requested_status``.

        Raises NotFound, InvalidStatus, Forbidden, InvalidTransition or
        ValidationError; nothing is written in those cases.
        """
        target = parse_ticket_status(requested_status)
        note = clean_note(note)

        async def work():
            ticket = require_found(await self.lock_ticket(ticket_id), actor, "Ticket")
            if not access_policy.can_transition_ticket(actor, ticket, target):
                raise Forbidden()

            assert_ticket_transition(ticket.status, target)
            old_status = await self.apply_transition(ticket, target, actor, note)
            return old_status, await self.jobs.ticket_status_changed(ticket, old_status, target, actor, note)

        old_status, job = await run_in_transaction(self.db, work)
        self.enqueue(job)
        logger.info(
            f"Ticket {ticket_id} status changed {old_status.value} -> {target.value} by user {actor.id}"
        )
        return await self.load_ticket(ticket_id)

    async def assign(
        self,
        ticket_id: int,
        assignee_id: int,
        actor: Actor,
        note: Optional[str] = None,
    ) -> Ticket:
        if not access_policy.can_assign_ticket(actor):
            raise Forbidden()
        note = clean_note(note)

        async def work():
            ticket = require_found(await self.lock_ticket(ticket_id), actor, "Ticket")
            if ticket.status in TERMINAL_TICKET_STATUSES:
                raise ConflictError(f"Ticket #{ticket.id} is {ticket.status.value} and cannot be reassigned")

            assignee = await self.db.get(User, assignee_id)
            if assignee is None or not assignee.is_active or assignee.role != UserRole.SERVICE_PERSON:
                raise ValidationError("Assignee must be an active service person")
            if ticket.assigned_to_id == assignee_id:
                raise ConflictError(f"Ticket #{ticket.id} is already assigned to {assignee.full_name}")

            previous = ticket.assigned_to_id
            ticket.assigned_to_id = assignee_id
            self.db.add(TicketNote(
                ticket_id=ticket.id,
                author_id=actor.id,
                content=note or f"Assigned to {assignee.full_name}",
            ))
            self.audit.record(
                TICKET_ENTITY,
                ticket.id,
                "ASSIGN",
                actor.id,
                old_value={"assigned_to_id": previous},
                new_value={"assigned_to_id": assignee_id},
                ticket_id=ticket.id,
                description=f"Assigned to {assignee.full_name}",
            )
            await self.db.flush()
            return await self.jobs.ticket_assigned(ticket, assignee_id, actor, note)

        job = await run_in_transaction(self.db, work)
        self.enqueue(job)
        logger.info(f"Ticket {ticket_id} assigned to user {assignee_id} by user {actor.id}")
        return await self.load_ticket(ticket_id)
