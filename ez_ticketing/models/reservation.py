"""
Reservation model recording each capacity decrement taken by the ledger.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class Reservation(Base):
    """One ledger decrement. ``released_at`` is set exactly once on release."""

    __tablename__ = "reservations"

    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    ticket_type_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("ticket_types.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    released_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_reservations_quantity_positive"),
    )

    @property
    def is_released(self) -> bool:
        return self.released_at is not None
