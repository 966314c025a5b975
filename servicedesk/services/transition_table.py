"""
Ticket and purchase-order transition tables.

Pure data plus lookups: which edges exist, what bookkeeping an edge implies on
the ticket, and how a purchase-order status change drives its parent ticket.
Nothing in here touches the database.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Type, TypeVar
import enum

from servicedesk.core.config import settings
from servicedesk.core.exceptions import InvalidStatus, InvalidTransition
from servicedesk.models.ticket import TicketStatus
from servicedesk.models.purchase_order import PurchaseOrderStatus

E = TypeVar("E", bound=enum.Enum)


# -----------------------------------------------------------------------------
# Ticket lifecycle
# -----------------------------------------------------------------------------

TICKET_TRANSITIONS: Dict[TicketStatus, FrozenSet[TicketStatus]] = {
    TicketStatus.WAITING_FOR_RESPONSE: frozenset({
        TicketStatus.OPEN,
        TicketStatus.IN_PROGRESS,
    }),
    TicketStatus.OPEN: frozenset({
        TicketStatus.WAITING_FOR_RESPONSE,
        TicketStatus.IN_PROGRESS,
    }),
    TicketStatus.IN_PROGRESS: frozenset({
        TicketStatus.WAITING_FOR_RESPONSE,
        TicketStatus.SPARE_NEEDED,
        TicketStatus.WAITING_FOR_PO,
        TicketStatus.FIXED_PENDING_CLOSURE,
    }),
    TicketStatus.SPARE_NEEDED: frozenset({
        TicketStatus.IN_PROGRESS,
        TicketStatus.WAITING_FOR_PO,
    }),
    TicketStatus.WAITING_FOR_PO: frozenset({
        TicketStatus.IN_PROGRESS,
        TicketStatus.SPARE_NEEDED,
    }),
    TicketStatus.FIXED_PENDING_CLOSURE: frozenset({
        TicketStatus.IN_PROGRESS,
        TicketStatus.CLOSED,
    }),
    TicketStatus.CLOSED: frozenset(),
}

TERMINAL_TICKET_STATUSES: FrozenSet[TicketStatus] = frozenset({TicketStatus.CLOSED})

# A ticket may be unassigned only while in one of these
PRE_ASSIGNMENT_STATUSES: FrozenSet[TicketStatus] = frozenset({
    TicketStatus.WAITING_FOR_RESPONSE,
    TicketStatus.OPEN,
})

# Status a ticket is forced into when its purchase order is approved
PARTS_PENDING_STATUS = TicketStatus.SPARE_NEEDED


@dataclass(frozen=True)
class TicketEdgeEffects:
    """Bookkeeping implied by entering a ticket status."""
    auto_assign_actor: bool = False
    stamp_resolved_at: bool = False
    stamp_closed_at: bool = False
    requires_assignee: bool = True


TICKET_EDGE_EFFECTS: Dict[TicketStatus, TicketEdgeEffects] = {
    TicketStatus.WAITING_FOR_RESPONSE: TicketEdgeEffects(requires_assignee=False),
    TicketStatus.OPEN: TicketEdgeEffects(requires_assignee=False),
    TicketStatus.IN_PROGRESS: TicketEdgeEffects(auto_assign_actor=True),
    TicketStatus.SPARE_NEEDED: TicketEdgeEffects(),
    TicketStatus.WAITING_FOR_PO: TicketEdgeEffects(),
    TicketStatus.FIXED_PENDING_CLOSURE: TicketEdgeEffects(stamp_resolved_at=True),
    TicketStatus.CLOSED: TicketEdgeEffects(stamp_closed_at=True),
}


def initial_ticket_status(has_asset: bool) -> TicketStatus:
    """Tickets raised against a known asset skip the triage state."""
    return TicketStatus.OPEN if has_asset else TicketStatus.WAITING_FOR_RESPONSE


def ticket_effects(target: TicketStatus) -> TicketEdgeEffects:
    return TICKET_EDGE_EFFECTS[target]


def can_transition_ticket(current: TicketStatus, target: TicketStatus, enforce: Optional[bool] = None) -> bool:
    """
    Check a requested (user-driven) ticket edge.

    With enforcement off, any status other than the current one is reachable,
    matching the legacy behaviour of validating only the status value.
    """
    if enforce is None:
        enforce = settings.ENFORCE_TICKET_TRANSITIONS
    if not enforce:
        return current != target and current not in TERMINAL_TICKET_STATUSES
    return target in TICKET_TRANSITIONS.get(current, frozenset())


def assert_ticket_transition(current: TicketStatus, target: TicketStatus, enforce: Optional[bool] = None) -> None:
    if not can_transition_ticket(current, target, enforce=enforce):
        raise InvalidTransition(current, target)


def can_force_ticket(current: TicketStatus) -> bool:
    """Purchase-order coupling may move any ticket that is not closed."""
    return current not in TERMINAL_TICKET_STATUSES


# -----------------------------------------------------------------------------
# Purchase-order lifecycle
# -----------------------------------------------------------------------------

PO_TRANSITIONS: Dict[PurchaseOrderStatus, FrozenSet[PurchaseOrderStatus]] = {
    PurchaseOrderStatus.DRAFT: frozenset({
        PurchaseOrderStatus.PENDING_APPROVAL,
    }),
    PurchaseOrderStatus.PENDING_APPROVAL: frozenset({
        PurchaseOrderStatus.APPROVED,
        PurchaseOrderStatus.REJECTED,
    }),
    PurchaseOrderStatus.APPROVED: frozenset({
        PurchaseOrderStatus.ORDERED,
        PurchaseOrderStatus.CANCELLED,
    }),
    PurchaseOrderStatus.ORDERED: frozenset({
        PurchaseOrderStatus.RECEIVED,
        PurchaseOrderStatus.CANCELLED,
    }),
    PurchaseOrderStatus.RECEIVED: frozenset(),
    PurchaseOrderStatus.CANCELLED: frozenset(),
    PurchaseOrderStatus.REJECTED: frozenset(),
}

TERMINAL_PO_STATUSES: FrozenSet[PurchaseOrderStatus] = frozenset(
    status for status, targets in PO_TRANSITIONS.items() if not targets
)

# Statuses that require an administrator to enter
PO_APPROVAL_DECISIONS: FrozenSet[PurchaseOrderStatus] = frozenset({
    PurchaseOrderStatus.APPROVED,
    PurchaseOrderStatus.REJECTED,
})

# Items may only be added before a decision has been made
PO_EDITABLE_STATUSES: FrozenSet[PurchaseOrderStatus] = frozenset({
    PurchaseOrderStatus.DRAFT,
    PurchaseOrderStatus.PENDING_APPROVAL,
})


def can_transition_po(current: PurchaseOrderStatus, target: PurchaseOrderStatus) -> bool:
    return target in PO_TRANSITIONS.get(current, frozenset())


def assert_po_transition(current: PurchaseOrderStatus, target: PurchaseOrderStatus) -> None:
    if not can_transition_po(current, target):
        raise InvalidTransition(current, target)


@dataclass(frozen=True)
class TicketCoupling:
    """
    Effect of a purchase-order status change on the parent ticket.

    ``when_ticket_in`` restricts the coupling to tickets in that status;
    ``ticket_target`` of None means only the note is written.
    """
    note: str
    ticket_target: Optional[TicketStatus] = None
    when_ticket_in: Optional[TicketStatus] = None

    def applies_to(self, ticket_status: TicketStatus) -> bool:
        return self.when_ticket_in is None or self.when_ticket_in == ticket_status


PO_TICKET_COUPLING: Dict[PurchaseOrderStatus, TicketCoupling] = {
    PurchaseOrderStatus.APPROVED: TicketCoupling(
        note="PO approved, waiting for parts to be ordered",
        ticket_target=PARTS_PENDING_STATUS,
    ),
    PurchaseOrderStatus.REJECTED: TicketCoupling(
        note="PO rejected, spare parts still needed",
        ticket_target=TicketStatus.SPARE_NEEDED,
    ),
    PurchaseOrderStatus.ORDERED: TicketCoupling(
        note="Parts have been ordered, waiting for delivery",
        ticket_target=TicketStatus.IN_PROGRESS,
        when_ticket_in=TicketStatus.SPARE_NEEDED,
    ),
    PurchaseOrderStatus.RECEIVED: TicketCoupling(
        note="Parts received, work in progress",
        when_ticket_in=TicketStatus.IN_PROGRESS,
    ),
}

PO_CREATED_TICKET_STATUS = TicketStatus.WAITING_FOR_PO
PO_CREATED_NOTE = "Status changed to WAITING_FOR_PO (Purchase order created)"


def coupling_for(target: PurchaseOrderStatus, ticket_status: TicketStatus) -> Optional[TicketCoupling]:
    coupling = PO_TICKET_COUPLING.get(target)
    if coupling is None or not coupling.applies_to(ticket_status):
        return None
    return coupling


# -----------------------------------------------------------------------------
# Parsing
# -----------------------------------------------------------------------------

def parse_status(enum_cls: Type[E], value) -> E:
    """Coerce a raw status value into ``enum_cls`` or raise InvalidStatus."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().upper())
    except (ValueError, AttributeError):
        raise InvalidStatus(f"Invalid status: {value}") from None


def parse_ticket_status(value) -> TicketStatus:
    return parse_status(TicketStatus, value)


def parse_po_status(value) -> PurchaseOrderStatus:
    return parse_status(PurchaseOrderStatus, value)
