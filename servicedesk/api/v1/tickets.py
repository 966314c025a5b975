import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from servicedesk.api.v1.auth import get_current_user, get_notification_queue
from servicedesk.core.database import get_db
from servicedesk.schemas.ticket import TicketAssign, TicketCreate, TicketResponse, TicketStatusChange
from servicedesk.services.access_policy import Actor
from servicedesk.services.notification_queue import NotificationQueue
from servicedesk.services.ticket_workflow import TicketWorkflowService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    ticket_data: TicketCreate,
    current_user: Actor = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifications: Optional[NotificationQueue] = Depends(get_notification_queue),
):
    """Create a new ticket. Starts OPEN when raised against an asset."""
    service = TicketWorkflowService(db, notifications)
    return await service.create_ticket(
        current_user,
        title=ticket_data.title,
        description=ticket_data.description,
        priority=ticket_data.priority,
        customer_id=ticket_data.customer_id,
        asset_id=ticket_data.asset_id,
    )


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(
    ticket_id: int,
    current_user: Actor = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get a single ticket."""
    return await TicketWorkflowService(db).get_ticket(ticket_id, current_user)


@router.post("/{ticket_id}/status", response_model=TicketResponse)
async def change_ticket_status(
    ticket_id: int,
    status_change: TicketStatusChange,
    current_user: Actor = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifications: Optional[NotificationQueue] = Depends(get_notification_queue),
):
    """Change ticket status."""
    service = TicketWorkflowService(db, notifications)
    return await service.transition(ticket_id, status_change.status, current_user, status_change.note)


@router.post("/{ticket_id}/assign", response_model=TicketResponse)
async def assign_ticket(
    ticket_id: int,
    assignment: TicketAssign,
    current_user: Actor = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifications: Optional[NotificationQueue] = Depends(get_notification_queue),
):
    """Assign a ticket to a service person (administrators only)."""
    service = TicketWorkflowService(db, notifications)
    return await service.assign(ticket_id, assignment.assigned_to_id, current_user, assignment.note)
