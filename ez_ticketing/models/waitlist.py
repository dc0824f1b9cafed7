"""
Waitlist entry model. Queue position is derived at read time, never stored.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional, TYPE_CHECKING

from sqlalchemy import CheckConstraint, DateTime, Enum, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .user import User
    from .event import Event


class WaitlistStatus(enum.Enum):
    """Enumeration for waitlist status."""
    WAITING = "waiting"
    NOTIFIED = "notified"
    EXPIRED = "expired"
    CONVERTED = "converted"


ACTIVE_WAITLIST_STATUSES = (WaitlistStatus.WAITING, WaitlistStatus.NOTIFIED)


class WaitlistEntry(Base):
    """A user's place in the queue for one event and ticket type."""

    __tablename__ = "waitlist_entries"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    ticket_type: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    status: Mapped[WaitlistStatus] = mapped_column(
        Enum(WaitlistStatus),
        default=WaitlistStatus.WAITING,
        nullable=False,
        index=True
    )

    notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True
    )

    user: Mapped["User"] = relationship("User", back_populates="waitlist_entries")
    event: Mapped["Event"] = relationship("Event", back_populates="waitlist_entries")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_waitlist_quantity_positive"),
        Index("ix_waitlist_queue", "event_id", "ticket_type", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<WaitlistEntry(id={self.id}, user_id={self.user_id}, event_id={self.event_id}, "
            f"ticket_type='{self.ticket_type}', status={self.status.value})>"
        )
