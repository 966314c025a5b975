"""
Notification API Endpoints

Lets a user read, count, mark read and delete their own in-app notifications.
"""

from datetime import datetime
from typing import List
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from servicedesk.api.v1.auth import get_current_user
from servicedesk.core.database import get_db
from servicedesk.models.notification import Notification, NotificationStatus
from servicedesk.schemas.notification import MarkAllReadResponse, NotificationResponse, UnreadCountResponse
from servicedesk.services.access_policy import Actor

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=List[NotificationResponse])
async def list_my_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: Actor = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Newest first."""
    query = select(Notification).where(Notification.user_id == current_user.id)
    if unread_only:
        query = query.where(Notification.status == NotificationStatus.UNREAD)
    query = query.order_by(Notification.created_at.desc(), Notification.id.desc()).offset(offset).limit(limit)

    result = await db.execute(query)
    return result.scalars().all()


@router.get("/unread-count", response_model=UnreadCountResponse)
async def get_unread_count(
    current_user: Actor = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(func.count(Notification.id)).where(
            Notification.user_id == current_user.id,
            Notification.status == NotificationStatus.UNREAD,
        )
    )
    return UnreadCountResponse(count=result.scalar_one())


@router.patch("/read-all", response_model=MarkAllReadResponse)
async def mark_all_notifications_read(
    current_user: Actor = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        update(Notification)
        .where(
            Notification.user_id == current_user.id,
            Notification.status == NotificationStatus.UNREAD,
        )
        .values(status=NotificationStatus.READ, read_at=datetime.utcnow())
    )
    await db.commit()

    logger.info(f"User {current_user.id} marked {result.rowcount} notification(s) read")
    return MarkAllReadResponse(updated=result.rowcount)


async def get_own_notification(db: AsyncSession, notification_id: int, user_id: int) -> Notification:
    result = await db.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id,
        )
    )
    notification = result.scalar_one_or_none()

    if not notification:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found"
        )
    return notification


@router.patch("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: int,
    current_user: Actor = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Only the recipient can mark a notification read."""
    notification = await get_own_notification(db, notification_id, current_user.id)

    if notification.status != NotificationStatus.READ:
        notification.status = NotificationStatus.READ
        notification.read_at = datetime.utcnow()
        await db.commit()
        await db.refresh(notification)

    return notification


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: int,
    current_user: Actor = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    notification = await get_own_notification(db, notification_id, current_user.id)
    await db.delete(notification)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
