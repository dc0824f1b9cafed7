"""
Booking transaction coordinator.

A booking is created in the same database transaction as its ledger
reservation. Any failure before commit rolls the transaction back, which
also undoes the capacity decrement.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..config import get_settings
from ..database import transaction
from ..models.booking import Booking, BookingStatus
from ..models.event import DEFAULT_TICKET_TYPE, Event, TicketType
from ..models.user import User
from ..utils.exceptions import (
    AuthorizationError,
    BookingNotFoundError,
    EventNotFoundError,
    PersistenceFailureError,
    TicketTypeNotFoundError,
    ValidationError,
)
from ..utils.identifiers import generate_booking_reference, generate_ticket_ids
from ..utils.logging_config import log_business_event
from ..utils.timeutils import utcnow
from .capacity_ledger import CapacityLedger, ReservationToken
from .seat_map import layout, validate_seats
from .waitlist_service import WaitlistNotifier, WaitlistService

logger = logging.getLogger(__name__)


class BookingService:
    """Service for creating and cancelling bookings."""

    def __init__(self, session: AsyncSession, waitlist_notifier: Optional[WaitlistNotifier] = None):
        self.session = session
        self.settings = get_settings()
        self.ledger = CapacityLedger(session)
        self.waitlist = WaitlistService(session, notifier=waitlist_notifier)

    async def create_booking(
        self,
        user_id: UUID,
        event_id: UUID,
        ticket_type_id: Optional[UUID],
        quantity: int,
        seats: Optional[Sequence[int]] = None,
        max_per_user: Optional[int] = None
    ) -> Booking:
        """
        Create a confirmed booking.

        Steps: validate the request, check any selected seats, take the units
        from the ledger, apply the per-user limit and re-check the seats while
        the event row is held, then store the booking with one ticket id per
        unit.

        Args:
            user_id: ID of the user booking
            event_id: ID of the event
            ticket_type_id: Ticket type, required for events that sell types
            quantity: Number of tickets
            seats: Optional seat numbers, one per ticket
            max_per_user: Per-user ticket limit for the event; defaults to
                the ``max_tickets_per_user`` setting

        Returns:
            The confirmed booking

        Raises:
            ValidationError: For a bad quantity, ticket type or seat selection
            EventNotFoundError: If the event doesn't exist
            SeatConflictError: If a selected seat is already booked
            InsufficientCapacityError: If not enough units remain
            PersistenceFailureError: If the booking couldn't be stored; the
                reservation has been rolled back by then
        """
        limit = self.settings.max_tickets_per_user if max_per_user is None else max_per_user
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", field_errors={"quantity": ["must be >= 1"]})
        if quantity > limit:
            raise ValidationError(
                f"You can book at most {limit} tickets for this event",
                field_errors={"quantity": [f"must be <= {limit}"]}
            )
        requested_seats = list(seats) if seats else None

        logger.info(f"Creating booking for user {user_id}, event {event_id}, quantity {quantity}")

        try:
            async with transaction(self.session):
                event = await self._get_event(event_id)
                ticket_type = self._resolve_ticket_type(event, ticket_type_id)

                if requested_seats is not None:
                    validate_seats(
                        requested_seats,
                        await self.get_booked_seats(event_id),
                        quantity,
                        event.seat_capacity
                    )

                token = await self.ledger.reserve(event_id, ticket_type_id, quantity)

                # Counted under the event row lock taken by reserve
                await self._check_user_limit(user_id, event_id, quantity, limit)

                if requested_seats is not None:
                    # The reservation holds the event row, so this read is
                    # authoritative against other seat selections
                    validate_seats(
                        requested_seats,
                        await self.get_booked_seats(event_id),
                        quantity,
                        event.seat_capacity
                    )

                booking = await self._persist_booking(user_id, ticket_type, token, requested_seats)

                await self.waitlist.convert_for_booking(
                    user_id,
                    event_id,
                    ticket_type.name if ticket_type else DEFAULT_TICKET_TYPE
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to store booking for event {event_id}, reservation rolled back: {e}")
            raise PersistenceFailureError() from e

        log_business_event(
            "booking_created",
            {
                "booking_id": str(booking.id),
                "reference": booking.reference,
                "event_id": str(event_id),
                "quantity": quantity,
            },
            user_id=str(user_id)
        )
        return booking

    async def cancel_booking(self, booking_id: UUID, requested_by: Optional[User] = None) -> Booking:
        """
        Cancel a booking and give its units back.

        Cancelling twice is a no-op. When units were released, the waitlist
        for the event and ticket type is offered the freed quantity.

        Args:
            booking_id: ID of the booking
            requested_by: User asking for the cancellation; must own the
                booking unless they are an admin

        Returns:
            The cancelled booking

        Raises:
            BookingNotFoundError: If the booking doesn't exist
            AuthorizationError: If the requester may not cancel it
        """
        logger.info(f"Cancelling booking {booking_id}")

        async with transaction(self.session):
            booking = await self._get_booking(booking_id)

            if requested_by is not None and booking.user_id != requested_by.id and not requested_by.is_admin:
                raise AuthorizationError("You can only cancel your own bookings")

            result = await self.session.execute(
                update(Booking)
                .where(
                    Booking.id == booking_id,
                    Booking.status != BookingStatus.CANCELLED
                )
                .values(status=BookingStatus.CANCELLED, cancelled_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            released = False
            if result.rowcount == 1:
                released = await self.ledger.release(booking.reservation_id)
            else:
                logger.info(f"Booking {booking_id} was already cancelled")

            await self.session.refresh(booking, attribute_names=["status", "cancelled_at", "updated_at"])

        if released:
            log_business_event(
                "booking_cancelled",
                {"booking_id": str(booking.id), "event_id": str(booking.event_id), "quantity": booking.quantity},
                user_id=str(booking.user_id)
            )
            await self._offer_to_waitlist(booking)

        return booking

    async def get_booked_seats(self, event_id: UUID) -> List[int]:
        """Seats held by non-cancelled bookings, derived from the booking table."""
        rows = (await self.session.execute(
            select(Booking.seats).where(
                Booking.event_id == event_id,
                Booking.status != BookingStatus.CANCELLED
            )
        )).scalars().all()

        booked = set()
        for seats in rows:
            if seats:
                booked.update(seats)
        return sorted(booked)

    async def get_seat_layout(self, event_id: UUID) -> Dict[str, Any]:
        """Venue grid for an event together with the booked seats."""
        event = await self._get_event(event_id)
        capacity = event.seat_capacity
        columns = self.settings.seat_columns
        return {
            "event_id": event.id,
            "capacity": capacity,
            "columns": columns,
            "rows": layout(capacity, columns) if capacity else [],
            "booked_seats": await self.get_booked_seats(event_id),
        }

    async def get_booking(self, booking_id: UUID) -> Booking:
        return await self._get_booking(booking_id)

    async def get_user_bookings(self, user_id: UUID, include_cancelled: bool = True) -> List[Booking]:
        """Get a user's bookings, newest first."""
        query = select(Booking).where(Booking.user_id == user_id)
        if not include_cancelled:
            query = query.where(Booking.status != BookingStatus.CANCELLED)
        query = query.options(selectinload(Booking.ticket_type)).order_by(Booking.created_at.desc())
        return list((await self.session.execute(query)).scalars().all())

    # Private helper methods

    async def _get_event(self, event_id: UUID) -> Event:
        """Get event by ID."""
        event = (await self.session.execute(
            select(Event).where(Event.id == event_id)
        )).scalar_one_or_none()
        if event is None:
            raise EventNotFoundError(str(event_id))
        return event

    async def _get_booking(self, booking_id: UUID) -> Booking:
        """Get booking with its ticket type."""
        booking = (await self.session.execute(
            select(Booking)
            .where(Booking.id == booking_id)
            .options(selectinload(Booking.ticket_type))
        )).scalar_one_or_none()
        if booking is None:
            raise BookingNotFoundError(str(booking_id))
        return booking

    def _resolve_ticket_type(self, event: Event, ticket_type_id: Optional[UUID]) -> Optional[TicketType]:
        """Check the ticket type choice fits the event."""
        if not event.is_active:
            raise ValidationError("This event is not open for booking")

        if ticket_type_id is None:
            if event.has_ticket_types:
                raise ValidationError(
                    "A ticket type must be selected for this event",
                    field_errors={"ticketTypeId": ["required for this event"]}
                )
            return None

        ticket_type = event.get_ticket_type(ticket_type_id)
        if ticket_type is None:
            raise TicketTypeNotFoundError(str(ticket_type_id), str(event.id))
        return ticket_type

    async def _check_user_limit(self, user_id: UUID, event_id: UUID, quantity: int, limit: int) -> None:
        """Enforce the per-user ticket limit across the user's active bookings."""
        held = (await self.session.execute(
            select(func.coalesce(func.sum(Booking.quantity), 0)).where(
                Booking.user_id == user_id,
                Booking.event_id == event_id,
                Booking.status != BookingStatus.CANCELLED
            )
        )).scalar_one()
        if held + quantity > limit:
            raise ValidationError(
                f"You can book at most {limit} tickets for this event (you already hold {held})",
                field_errors={"quantity": [f"must be <= {limit - held}"]}
            )

    async def _persist_booking(
        self,
        user_id: UUID,
        ticket_type: Optional[TicketType],
        token: ReservationToken,
        seats: Optional[List[int]]
    ) -> Booking:
        """Insert the booking row for a reservation."""
        price = ticket_type.price if ticket_type else Decimal("0.00")
        booking = Booking(
            reference=generate_booking_reference(),
            user_id=user_id,
            event_id=token.event_id,
            ticket_type_id=token.ticket_type_id,
            ticket_type=ticket_type,
            reservation_id=token.reservation_id,
            quantity=token.quantity,
            total_amount=price * token.quantity,
            seats=sorted(seats) if seats else None,
            ticket_ids=generate_ticket_ids(token.quantity),
            status=BookingStatus.CONFIRMED
        )
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def _offer_to_waitlist(self, booking: Booking) -> None:
        """Offer a cancelled booking's units to the waitlist."""
        ticket_type = booking.ticket_type.name if booking.ticket_type else DEFAULT_TICKET_TYPE
        try:
            await self.waitlist.on_capacity_freed(booking.event_id, ticket_type, booking.quantity)
        except SQLAlchemyError as e:
            logger.error(f"Waitlist promotion failed after cancelling booking {booking.id}: {e}")
