"""
Event and ticket type models holding the capacity counters.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .booking import Booking
    from .waitlist import WaitlistEntry

# Name used for waitlist entries of events sold on a flat capacity
DEFAULT_TICKET_TYPE = "General"


class Event(Base):
    """Event with either a flat capacity counter or a list of ticket types.

    When neither ``capacity`` nor ticket types are set the event is
    unlimited. The counters are mutated only by the capacity ledger.
    """

    __tablename__ = "events"

    title: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    venue: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    event_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True
    )

    # Flat capacity model
    capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    available: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Bumped by every ledger mutation; also serializes writers on the row
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    ticket_types: Mapped[List["TicketType"]] = relationship(
        "TicketType",
        back_populates="event",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TicketType.created_at"
    )

    bookings: Mapped[List["Booking"]] = relationship(
        "Booking",
        back_populates="event",
        cascade="all, delete-orphan"
    )

    waitlist_entries: Mapped[List["WaitlistEntry"]] = relationship(
        "WaitlistEntry",
        back_populates="event",
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("capacity IS NULL OR capacity > 0", name="ck_events_capacity_positive"),
        CheckConstraint("available IS NULL OR available >= 0", name="ck_events_available_non_negative"),
        CheckConstraint("available IS NULL OR available <= capacity", name="ck_events_capacity_consistency"),
        CheckConstraint("version > 0", name="ck_events_version_positive"),
    )

    @property
    def has_ticket_types(self) -> bool:
        return bool(self.ticket_types)

    @property
    def seat_capacity(self) -> Optional[int]:
        """Number of numbered seats in the venue layout, None if unlimited."""
        if self.capacity is not None:
            return self.capacity
        if self.ticket_types:
            return sum(ticket_type.quantity for ticket_type in self.ticket_types)
        return None

    def get_ticket_type(self, ticket_type_id: uuid.UUID) -> Optional["TicketType"]:
        for ticket_type in self.ticket_types:
            if ticket_type.id == ticket_type_id:
                return ticket_type
        return None

    def get_ticket_type_by_name(self, name: str) -> Optional["TicketType"]:
        for ticket_type in self.ticket_types:
            if ticket_type.name == name:
                return ticket_type
        return None

    def __repr__(self) -> str:
        return (
            f"<Event(id={self.id}, title='{self.title}', "
            f"date={self.event_date}, capacity={self.available}/{self.capacity})>"
        )


class TicketType(Base):
    """A priced tier of an event with its own quantity counter."""

    __tablename__ = "ticket_types"

    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal('0.00')
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    available: Mapped[int] = mapped_column(Integer, nullable=False)

    event: Mapped["Event"] = relationship("Event", back_populates="ticket_types")

    __table_args__ = (
        UniqueConstraint("event_id", "name", name="uq_ticket_types_event_name"),
        CheckConstraint("quantity > 0", name="ck_ticket_types_quantity_positive"),
        CheckConstraint("available >= 0", name="ck_ticket_types_available_non_negative"),
        CheckConstraint("available <= quantity", name="ck_ticket_types_capacity_consistency"),
        CheckConstraint("price >= 0", name="ck_ticket_types_price_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"<TicketType(id={self.id}, name='{self.name}', "
            f"available={self.available}/{self.quantity})>"
        )
