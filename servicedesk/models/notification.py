"""
Notification Models

In-app notifications created by the notification dispatcher, one row per
recipient and event.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum as SQLEnum, Text, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from servicedesk.core.database import Base


class NotificationType(str, enum.Enum):
    """Types of events that produce notifications."""
    TICKET_CREATED = "TICKET_CREATED"
    TICKET_UPDATE = "TICKET_UPDATE"
    TICKET_ASSIGNED = "TICKET_ASSIGNED"
    PO_DRAFT = "PO_DRAFT"
    PO_PENDING_APPROVAL = "PO_PENDING_APPROVAL"
    PO_APPROVED = "PO_APPROVED"
    PO_REJECTED = "PO_REJECTED"
    PO_ORDERED = "PO_ORDERED"
    PO_RECEIVED = "PO_RECEIVED"
    PO_CANCELLED = "PO_CANCELLED"


class NotificationStatus(str, enum.Enum):
    UNREAD = "UNREAD"
    READ = "READ"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    type = Column(SQLEnum(NotificationType), nullable=False, index=True)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON)  # Event payload: ticketId, poId, status, ...

    status = Column(SQLEnum(NotificationStatus), nullable=False, default=NotificationStatus.UNREAD, index=True)
    read_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    # Relationships
    user = relationship("User")
