"""
Pydantic schemas for bookings and seat maps.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import Field

from ..models.booking import BookingStatus
from .common import APIModel


class BookingCreate(APIModel):
    """Schema for creating a booking."""
    event_id: UUID = Field(..., description="ID of the event to book")
    ticket_type_id: Optional[UUID] = Field(None, description="Ticket type; required when the event sells ticket types")
    quantity: int = Field(..., ge=1, description="Number of tickets")
    seats: Optional[List[int]] = Field(None, description="Seat numbers, one per ticket")


class TicketTypeSummary(APIModel):
    id: UUID
    name: str
    price: Decimal


class BookingResponse(APIModel):
    """Schema for booking responses."""
    id: UUID
    reference: str
    user_id: UUID
    event_id: UUID
    ticket_type_id: Optional[UUID] = None
    ticket_type: Optional[TicketTypeSummary] = None
    quantity: int
    total_amount: Decimal
    seats: Optional[List[int]] = None
    ticket_ids: List[str]
    status: BookingStatus
    created_at: datetime
    cancelled_at: Optional[datetime] = None


class BookedSeatsResponse(APIModel):
    """Seats held by non-cancelled bookings."""
    booked_seats: List[int]


class SeatLayoutResponse(APIModel):
    """Venue grid for an event."""
    event_id: UUID
    capacity: Optional[int] = Field(None, description="Seat count, null for unlimited events")
    columns: int
    rows: List[List[int]]
    booked_seats: List[int]
