"""
Access rules for tickets and purchase orders.

Pure predicates over an already authenticated actor and the entity at hand.
Callers raise Forbidden when a predicate returns False.
"""

from dataclasses import dataclass
from typing import Optional

from servicedesk.models.user import UserRole
from servicedesk.models.ticket import Ticket, TicketStatus
from servicedesk.models.purchase_order import PurchaseOrder


@dataclass(frozen=True)
class Actor:
    """The caller as asserted by the identity layer."""
    id: int
    role: UserRole
    customer_id: Optional[int] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_service_person(self) -> bool:
        return self.role == UserRole.SERVICE_PERSON

    @property
    def is_customer_owner(self) -> bool:
        return self.role == UserRole.CUSTOMER_ACCOUNT_OWNER


def can_access_ticket(actor: Actor, ticket: Ticket) -> bool:
    if actor.is_admin:
        return True
    if actor.is_customer_owner:
        return actor.customer_id is not None and ticket.customer_id == actor.customer_id
    if actor.is_service_person:
        return ticket.assigned_to_id == actor.id
    return False


def can_transition_ticket(actor: Actor, ticket: Ticket, target: TicketStatus) -> bool:
    """
    Ticket access, plus the claim edge: any service person may move an
    unassigned ticket into IN_PROGRESS and becomes its assignee.
    """
    if can_access_ticket(actor, ticket):
        return True
    return (
        actor.is_service_person
        and ticket.assigned_to_id is None
        and target == TicketStatus.IN_PROGRESS
    )


def can_create_ticket(actor: Actor, customer_id: int) -> bool:
    if actor.is_admin or actor.is_service_person:
        return True
    if actor.is_customer_owner:
        return actor.customer_id == customer_id
    return False


def can_assign_ticket(actor: Actor) -> bool:
    return actor.is_admin


def _is_po_participant(actor: Actor, po: PurchaseOrder, ticket: Ticket) -> bool:
    return ticket.assigned_to_id == actor.id or po.created_by_id == actor.id


def can_read_po(actor: Actor, po: PurchaseOrder, ticket: Ticket) -> bool:
    if actor.is_admin:
        return True
    if actor.is_customer_owner:
        return actor.customer_id is not None and ticket.customer_id == actor.customer_id
    if actor.is_service_person:
        return _is_po_participant(actor, po, ticket)
    return False


def can_update_po(actor: Actor, po: PurchaseOrder, ticket: Ticket) -> bool:
    """Status edges other than approval, and item changes. Customers are read-only."""
    if actor.is_admin:
        return True
    if actor.is_service_person:
        return _is_po_participant(actor, po, ticket)
    return False


def can_create_po(actor: Actor, ticket: Ticket) -> bool:
    if actor.is_admin:
        return True
    return actor.is_service_person and ticket.assigned_to_id == actor.id


def can_approve_po(actor: Actor) -> bool:
    return actor.is_admin
