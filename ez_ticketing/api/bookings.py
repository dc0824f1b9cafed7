"""
FastAPI routes for bookings and seat maps.
"""

import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.user import User
from ..schemas.booking import (
    BookedSeatsResponse,
    BookingCreate,
    BookingResponse,
    SeatLayoutResponse,
)
from ..services.booking_service import BookingService
from ..services.waitlist_service import WaitlistNotifier
from ..utils.dependencies import get_current_user, get_waitlist_notifier
from ..utils.exceptions import AuthorizationError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: WaitlistNotifier = Depends(get_waitlist_notifier)
):
    """
    Book tickets for an event.

    - **eventId**: Event to book
    - **ticketTypeId**: Ticket type, required when the event sells ticket types
    - **quantity**: Number of tickets
    - **seats**: Optional seat numbers, one per ticket

    Capacity and seat availability are checked when the booking is committed.
    """
    booking_service = BookingService(db, waitlist_notifier=notifier)
    booking = await booking_service.create_booking(
        user_id=current_user.id,
        event_id=booking_data.event_id,
        ticket_type_id=booking_data.ticket_type_id,
        quantity=booking_data.quantity,
        seats=booking_data.seats
    )
    return BookingResponse.model_validate(booking)


@router.get("/my", response_model=List[BookingResponse])
async def get_my_bookings(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get the current user's bookings, newest first."""
    bookings = await BookingService(db).get_user_bookings(current_user.id)
    return [BookingResponse.model_validate(booking) for booking in bookings]


@router.get("/event/{event_id}/seats", response_model=BookedSeatsResponse)
async def get_booked_seats(
    event_id: UUID,
    db: AsyncSession = Depends(get_db)
):
    """Seat numbers held by non-cancelled bookings for an event."""
    booked = await BookingService(db).get_booked_seats(event_id)
    return BookedSeatsResponse(booked_seats=booked)


@router.get("/event/{event_id}/layout", response_model=SeatLayoutResponse)
async def get_seat_layout(
    event_id: UUID,
    db: AsyncSession = Depends(get_db)
):
    """Venue grid for an event with its booked seats."""
    return SeatLayoutResponse(**await BookingService(db).get_seat_layout(event_id))


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get a single booking. Only the owner or an admin may read it."""
    booking = await BookingService(db).get_booking(booking_id)
    if booking.user_id != current_user.id and not current_user.is_admin:
        raise AuthorizationError("You can only view your own bookings")
    return BookingResponse.model_validate(booking)


@router.delete("/{booking_id}", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: WaitlistNotifier = Depends(get_waitlist_notifier)
):
    """
    Cancel a booking.

    Released tickets are offered to the event's waitlist. Cancelling an
    already cancelled booking returns it unchanged.
    """
    booking_service = BookingService(db, waitlist_notifier=notifier)
    booking = await booking_service.cancel_booking(booking_id, requested_by=current_user)
    logger.info(f"User {current_user.id} cancelled booking {booking_id}")
    return BookingResponse.model_validate(booking)
