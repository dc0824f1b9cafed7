"""
Notification dispatcher for admin broadcasts.
"""

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..cache import CacheKeyBuilder, RedisCache, get_cache
from ..config import get_settings
from ..database import transaction
from ..models.booking import Booking
from ..models.notification import (
    MessageType,
    Notification,
    NotificationStatus,
    NotificationTemplate,
    RecipientType,
)
from ..models.user import STAFF_ROLES, User, UserRole
from ..utils.exceptions import DuplicateRecentError
from ..utils.logging_config import log_business_event
from ..utils.timeutils import utcnow
from .email_service import EmailService

logger = logging.getLogger(__name__)


def compute_dedup_key(subject: str, title: str, html: str, recipient_type: RecipientType) -> str:
    """Content hash identifying a broadcast for duplicate suppression."""
    payload = f"{subject}::{title}::{recipient_type.value}::{html}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _active_users() -> Select:
    return select(User).where(User.is_active.is_(True))


def _registered_users() -> Select:
    return _active_users().where(User.role == UserRole.USER)


def _participants() -> Select:
    booking_users = select(Booking.user_id).distinct()
    return _active_users().where(User.id.in_(booking_users))


def _staff() -> Select:
    return _active_users().where(User.role.in_(STAFF_ROLES))


# One query per cohort
COHORT_QUERIES: Dict[RecipientType, Callable[[], Select]] = {
    RecipientType.ALL: _active_users,
    RecipientType.REGISTERED: _registered_users,
    RecipientType.PARTICIPANTS: _participants,
    RecipientType.STAFF: _staff,
}


@dataclass
class BroadcastResult:
    """Outcome of a broadcast."""
    sent: int
    failed: int
    notification: Notification


class NotificationService:
    """Service for broadcasting notifications to recipient cohorts."""

    def __init__(
        self,
        session: AsyncSession,
        email_service: Optional[EmailService] = None,
        cache: Optional[RedisCache] = None
    ):
        self.session = session
        self.email_service = email_service or EmailService()
        self.cache = cache or get_cache()
        self.settings = get_settings()

    async def broadcast(
        self,
        subject: str,
        title: str,
        html: str,
        message_type: MessageType,
        recipient_type: RecipientType,
        admin: Optional[User] = None
    ) -> BroadcastResult:
        """
        Send a broadcast to every unique address in a cohort.

        Identical content sent to the same cohort within the dedup window is
        rejected. Individual delivery failures don't stop the others; they are
        counted and the notification ends ``failed`` if any occurred.

        Args:
            subject: Email subject
            title: Heading of the message
            html: Body HTML
            message_type: Presentation category
            recipient_type: Cohort to deliver to
            admin: Admin sending the broadcast

        Returns:
            BroadcastResult with sent and failed counts and the stored record

        Raises:
            DuplicateRecentError: If the same broadcast was sent recently
        """
        window = self.settings.notification_dedup_window_minutes
        dedup_key = compute_dedup_key(subject, title, html, recipient_type)
        claim_key = CacheKeyBuilder.broadcast_dedup(dedup_key)

        if not await self.cache.claim(claim_key, ttl=window * 60):
            logger.info(f"Duplicate broadcast rejected by cache claim: {dedup_key}")
            raise DuplicateRecentError(dedup_key, window)

        try:
            async with transaction(self.session):
                since = utcnow() - timedelta(minutes=window)
                recent = (await self.session.execute(
                    select(Notification.id)
                    .where(
                        Notification.dedup_key == dedup_key,
                        Notification.created_at >= since
                    )
                    .limit(1)
                )).first()
                if recent:
                    logger.info(f"Duplicate broadcast rejected: {dedup_key}")
                    raise DuplicateRecentError(dedup_key, window)

                notification = Notification(
                    subject=subject,
                    title=title,
                    html=html,
                    message_type=message_type,
                    recipient_type=recipient_type,
                    dedup_key=dedup_key,
                    status=NotificationStatus.PENDING,
                    sent_count=0,
                    admin_id=admin.id if admin else None,
                    admin_name=admin.full_name if admin else None,
                    admin_email=admin.email if admin else None
                )
                self.session.add(notification)
                await self.session.flush()

                recipients = await self.resolve_recipients(recipient_type)
        except DuplicateRecentError:
            raise
        except Exception:
            await self.cache.delete(claim_key)
            raise

        logger.info(
            f"Broadcasting notification {notification.id} to {len(recipients)} "
            f"{recipient_type.value} recipients"
        )

        sent = await self._fan_out(recipients, subject, title, html, message_type)
        failed = len(recipients) - sent

        async with transaction(self.session):
            notification.sent_count = sent
            if failed:
                notification.status = NotificationStatus.FAILED
                notification.error = f"{failed} failures"
            else:
                notification.status = NotificationStatus.SENT

        log_business_event(
            "notification_broadcast",
            {
                "notification_id": str(notification.id),
                "recipient_type": recipient_type.value,
                "sent": sent,
                "failed": failed,
            },
            user_id=str(admin.id) if admin else None
        )
        return BroadcastResult(sent=sent, failed=failed, notification=notification)

    async def resolve_recipients(self, recipient_type: RecipientType) -> List[User]:
        """Users in a cohort, one per unique email address."""
        query = COHORT_QUERIES[recipient_type]().order_by(User.created_at)
        users = (await self.session.execute(query)).scalars().all()

        unique: Dict[str, User] = {}
        for user in users:
            if user.email:
                unique.setdefault(user.email.strip().lower(), user)
        return list(unique.values())

    async def list_notifications(self, limit: Optional[int] = None) -> List[Notification]:
        """Most recent broadcasts first."""
        limit = limit or self.settings.notification_history_limit
        result = await self.session.execute(
            select(Notification).order_by(Notification.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def list_templates(self) -> List[NotificationTemplate]:
        result = await self.session.execute(
            select(NotificationTemplate).order_by(NotificationTemplate.created_at.desc())
        )
        return list(result.scalars().all())

    async def save_template(
        self,
        name: str,
        subject: str,
        title: str,
        html: str,
        message_type: MessageType = MessageType.CUSTOM,
        admin: Optional[User] = None
    ) -> NotificationTemplate:
        """Store reusable broadcast content."""
        async with transaction(self.session):
            template = NotificationTemplate(
                name=name,
                subject=subject,
                title=title,
                html=html,
                message_type=message_type,
                created_by=admin.id if admin else None
            )
            self.session.add(template)
            await self.session.flush()

        logger.info(f"Notification template '{name}' saved")
        return template

    # Private helper methods

    async def _fan_out(
        self,
        recipients: List[User],
        subject: str,
        title: str,
        html: str,
        message_type: MessageType
    ) -> int:
        """Deliver to all recipients with bounded concurrency; returns successes."""
        semaphore = asyncio.Semaphore(self.settings.notification_max_concurrency)

        async def deliver(user: User) -> bool:
            async with semaphore:
                try:
                    return await self.email_service.send_notification_email(
                        to=user.email,
                        subject=subject,
                        title=title,
                        html_content=html,
                        message_type=message_type.value,
                        recipient_name=user.full_name
                    )
                except Exception as e:
                    # One bad recipient must not abort the rest
                    logger.error(f"Delivery to {user.email} failed: {e}")
                    return False

        results = await asyncio.gather(*(deliver(user) for user in recipients))
        return sum(1 for delivered in results if delivered)
