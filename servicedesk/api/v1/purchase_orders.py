import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from servicedesk.api.v1.auth import get_current_user, get_notification_queue
from servicedesk.core.database import get_db
from servicedesk.schemas.purchase_order import (
    PurchaseOrderCreate,
    PurchaseOrderDecision,
    PurchaseOrderItemCreate,
    PurchaseOrderResponse,
    PurchaseOrderStatusChange,
)
from servicedesk.services.access_policy import Actor
from servicedesk.services.notification_queue import NotificationQueue
from servicedesk.services.purchase_order_workflow import PurchaseOrderWorkflowService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=PurchaseOrderResponse, status_code=status.HTTP_201_CREATED)
async def create_purchase_order(
    po_data: PurchaseOrderCreate,
    current_user: Actor = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifications: Optional[NotificationQueue] = Depends(get_notification_queue),
):
    """Raise a purchase order for spare parts on a ticket."""
    service = PurchaseOrderWorkflowService(db, notifications)
    return await service.create_po(
        po_data.ticket_id,
        po_data.items,
        current_user,
        notes=po_data.notes,
        submit=po_data.submit,
    )


@router.get("/{po_id}", response_model=PurchaseOrderResponse)
async def get_purchase_order(
    po_id: int,
    current_user: Actor = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await PurchaseOrderWorkflowService(db).get_po(po_id, current_user)


@router.post("/{po_id}/approve", response_model=PurchaseOrderResponse)
async def approve_purchase_order(
    po_id: int,
    decision: PurchaseOrderDecision,
    current_user: Actor = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifications: Optional[NotificationQueue] = Depends(get_notification_queue),
):
    """Approve or reject a pending purchase order (administrators only)."""
    service = PurchaseOrderWorkflowService(db, notifications)
    return await service.approve_po(po_id, decision.status, current_user, decision.notes)


@router.patch("/{po_id}/status", response_model=PurchaseOrderResponse)
async def change_purchase_order_status(
    po_id: int,
    status_change: PurchaseOrderStatusChange,
    current_user: Actor = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifications: Optional[NotificationQueue] = Depends(get_notification_queue),
):
    service = PurchaseOrderWorkflowService(db, notifications)
    return await service.update_po_status(po_id, status_change.status, current_user, status_change.notes)


@router.post("/{po_id}/items", response_model=PurchaseOrderResponse, status_code=status.HTTP_201_CREATED)
async def add_purchase_order_item(
    po_id: int,
    item: PurchaseOrderItemCreate,
    current_user: Actor = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Add an item to a draft or pending purchase order."""
    return await PurchaseOrderWorkflowService(db).add_item(po_id, item, current_user)
