"""
Notification Schemas

Pydantic schemas for notification API endpoints.
"""

from pydantic import BaseModel
from datetime import datetime
from typing import Optional, Dict, Any
from servicedesk.models.notification import NotificationType, NotificationStatus


class NotificationResponse(BaseModel):
    id: int
    user_id: int
    type: NotificationType
    title: str
    message: str
    data: Optional[Dict[str, Any]]
    status: NotificationStatus
    read_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class UnreadCountResponse(BaseModel):
    count: int


class MarkAllReadResponse(BaseModel):
    updated: int
