"""
Broadcast notification and reusable template models.
"""

import enum
import uuid
from typing import Optional

from sqlalchemy import Enum, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class MessageType(enum.Enum):
    """Presentation category of a broadcast."""
    OFFER = "offer"
    ANNOUNCEMENT = "announcement"
    UPDATE = "update"
    CUSTOM = "custom"


class RecipientType(enum.Enum):
    """Named recipient cohort of a broadcast."""
    ALL = "all"
    REGISTERED = "registered"
    PARTICIPANTS = "participants"
    STAFF = "staff"


class NotificationStatus(enum.Enum):
    """Enumeration for notification delivery status."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class Notification(Base):
    """A broadcast sent by an admin to one recipient cohort."""

    __tablename__ = "notifications"

    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    html: Mapped[str] = mapped_column(Text, nullable=False)

    message_type: Mapped[MessageType] = mapped_column(
        Enum(MessageType),
        default=MessageType.CUSTOM,
        nullable=False
    )
    recipient_type: Mapped[RecipientType] = mapped_column(
        Enum(RecipientType),
        default=RecipientType.ALL,
        nullable=False
    )

    dedup_key: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    status: Mapped[NotificationStatus] = mapped_column(
        Enum(NotificationStatus),
        default=NotificationStatus.PENDING,
        nullable=False,
        index=True
    )
    sent_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Sender snapshot, kept even if the admin account changes later
    admin_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    admin_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    admin_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Notification(id={self.id}, subject='{self.subject}', "
            f"recipient_type={self.recipient_type.value}, status={self.status.value})>"
        )


class NotificationTemplate(Base):
    """Saved broadcast content an admin can reuse."""

    __tablename__ = "notification_templates"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    html: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[MessageType] = mapped_column(
        Enum(MessageType),
        default=MessageType.CUSTOM,
        nullable=False
    )
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
