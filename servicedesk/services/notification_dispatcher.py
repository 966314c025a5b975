"""
Notification fan-out.

For each recipient of a job: persist an in-app Notification, push it to the
recipient's live connections and try one email. Only the database write is
retried; push and email are best effort and their failures are logged.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Protocol, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from servicedesk.core.exceptions import DeliveryError
from servicedesk.models.notification import Notification, NotificationStatus
from servicedesk.models.user import User
from servicedesk.services.notification_jobs import NotificationJob

logger = logging.getLogger(__name__)


class LivePublisher(Protocol):
    async def publish(self, user_id: int, payload: Dict[str, Any], event_type: str = "notification") -> int:
        ...


class EmailTransport(Protocol):
    def is_configured(self) -> bool:
        ...

    async def send(self, to, subject: str, template_name: str, context: Dict[str, Any]) -> Optional[str]:
        ...


def serialize_notification(notification: Notification) -> Dict[str, Any]:
    return {
        "id": notification.id,
        "type": notification.type.value,
        "title": notification.title,
        "message": notification.message,
        "data": notification.data,
        "status": notification.status.value,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


class NotificationDispatcher:
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        registry: LivePublisher,
        email_sender: EmailTransport,
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.email_sender = email_sender

    async def dispatch(self, job: NotificationJob) -> Set[int]:
        """
        Deliver ``job`` to every recipient.

        Returns the recipients whose notification row could not be stored,
        so the caller can retry just those.
        """
        failed: Set[int] = set()
        for user_id in sorted(job.recipients):
            try:
                await self._deliver(job, user_id)
            except SQLAlchemyError as e:
                logger.error(
                    f"Failed to store {job.type.value} notification for user {user_id} "
                    f"(attempt {job.attempt}): {e}"
                )
                failed.add(user_id)
        return failed

    async def _deliver(self, job: NotificationJob, user_id: int) -> None:
        async with self.session_factory() as db:
            user = await db.get(User, user_id)
            if user is None or not user.is_active:
                logger.info(f"Skipping {job.type.value} notification for inactive or unknown user {user_id}")
                return

            notification = Notification(
                user_id=user_id,
                type=job.type,
                title=job.title,
                message=job.message,
                data=job.data,
                status=NotificationStatus.UNREAD,
                created_at=datetime.utcnow(),
            )
            db.add(notification)
            await db.commit()
            payload = serialize_notification(notification)
            email = user.email

        await self._push(user_id, payload)
        await self._email(job, email)

    async def _push(self, user_id: int, payload: Dict[str, Any]) -> None:
        try:
            await self.registry.publish(user_id, payload)
        except Exception as e:
            logger.warning(f"Live push to user {user_id} failed: {e}")

    async def _email(self, job: NotificationJob, email: Optional[str]) -> None:
        if not email or not job.email_template:
            return
        if not self.email_sender.is_configured():
            logger.debug(f"Email not configured, skipping {job.type.value} email to {email}")
            return
        try:
            await self.email_sender.send(
                email,
                job.email_subject or job.title,
                job.email_template,
                job.email_context,
            )
        except DeliveryError as e:
            logger.warning(f"Email delivery of {job.type.value} to {email} failed: {e.message}")
