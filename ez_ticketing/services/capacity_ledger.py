"""
Capacity ledger: the only code path that changes an event's counters.

Every reservation is a compare-and-decrement done in a single UPDATE whose
WHERE clause requires enough units, so two concurrent callers can never both
take the last unit. Each decrement is recorded as a ``Reservation`` row and
released at most once.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.event import Event, TicketType
from ..models.reservation import Reservation
from ..utils.exceptions import (
    EventNotFoundError,
    InsufficientCapacityError,
    NotFoundError,
    TicketTypeNotFoundError,
    ValidationError,
)
from ..utils.timeutils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReservationToken:
    """Handle for one ledger decrement."""
    reservation_id: UUID
    event_id: UUID
    ticket_type_id: Optional[UUID]
    quantity: int


class CapacityLedger:
    """Atomic reserve/release over event and ticket type counters.

    The ledger works inside the caller's transaction; it flushes but never
    commits, so a rollback of the enclosing transaction also undoes any
    reservation taken in it.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def reserve(
        self,
        event_id: UUID,
        ticket_type_id: Optional[UUID],
        quantity: int
    ) -> ReservationToken:
        """
        Take ``quantity`` units from the event or one of its ticket types.

        Args:
            event_id: ID of the event
            ticket_type_id: Ticket type to draw from; required when the event
                sells ticket types, must be None for flat capacity events
            quantity: Number of units

        Returns:
            ReservationToken identifying the decrement

        Raises:
            ValidationError: If quantity is not positive or the ticket type
                choice does not fit the event's capacity model
            EventNotFoundError: If the event doesn't exist
            TicketTypeNotFoundError: If the ticket type isn't part of the event
            InsufficientCapacityError: If fewer than ``quantity`` units remain
        """
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", field_errors={"quantity": ["must be >= 1"]})

        event = await self._get_event(event_id)

        if ticket_type_id is None:
            if event.has_ticket_types:
                raise ValidationError(
                    "A ticket type must be selected for this event",
                    field_errors={"ticketTypeId": ["required for this event"]}
                )
            if event.capacity is None:
                # Unlimited event: nothing to decrement
                await self._lock_event(event_id)
            else:
                await self._decrement_event(event_id, quantity)
        else:
            if event.get_ticket_type(ticket_type_id) is None:
                raise TicketTypeNotFoundError(str(ticket_type_id), str(event_id))
            await self._lock_event(event_id)
            await self._decrement_ticket_type(event_id, ticket_type_id, quantity)

        reservation = Reservation(
            event_id=event_id,
            ticket_type_id=ticket_type_id,
            quantity=quantity
        )
        self.session.add(reservation)
        await self.session.flush()

        logger.debug(
            f"Reserved {quantity} units on event {event_id} "
            f"(ticket type {ticket_type_id}) as {reservation.id}"
        )

        return ReservationToken(
            reservation_id=reservation.id,
            event_id=event_id,
            ticket_type_id=ticket_type_id,
            quantity=quantity
        )

    async def release(self, token: Union[ReservationToken, UUID]) -> bool:
        """
        Give a reservation's units back.

        Releasing a token twice is a no-op. The released flag is flipped with
        a conditional update, and units are credited only by the caller that
        won that update.

        Args:
            token: ReservationToken or reservation id

        Returns:
            True if units were credited, False if already released

        Raises:
            NotFoundError: If the reservation doesn't exist
        """
        reservation_id = token.reservation_id if isinstance(token, ReservationToken) else token

        row = (await self.session.execute(
            select(Reservation.event_id, Reservation.ticket_type_id, Reservation.quantity)
            .where(Reservation.id == reservation_id)
        )).one_or_none()
        if row is None:
            raise NotFoundError(
                f"Reservation {reservation_id} not found",
                resource_type="reservation",
                resource_id=str(reservation_id)
            )

        result = await self.session.execute(
            update(Reservation)
            .where(
                Reservation.id == reservation_id,
                Reservation.released_at.is_(None)
            )
            .values(released_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.debug(f"Reservation {reservation_id} already released")
            return False

        event_id, ticket_type_id, quantity = row
        if ticket_type_id is None:
            # NULL available (unlimited event) stays NULL
            await self.session.execute(
                update(Event)
                .where(Event.id == event_id)
                .values(available=Event.available + quantity, version=Event.version + 1)
                .execution_options(synchronize_session=False)
            )
        else:
            await self._lock_event(event_id)
            await self.session.execute(
                update(TicketType)
                .where(TicketType.id == ticket_type_id)
                .values(available=TicketType.available + quantity)
                .execution_options(synchronize_session=False)
            )

        logger.debug(f"Released {quantity} units on event {event_id} from {reservation_id}")
        return True

    async def available_units(self, event_id: UUID, ticket_type_id: Optional[UUID] = None) -> Optional[int]:
        """
        Read the units currently available.

        Args:
            event_id: ID of the event
            ticket_type_id: Optional ticket type; when omitted for an event
                with ticket types, the sum over all types is returned

        Returns:
            Available units, or None for an unlimited event
        """
        if ticket_type_id is not None:
            available = (await self.session.execute(
                select(TicketType.available).where(
                    TicketType.id == ticket_type_id,
                    TicketType.event_id == event_id
                )
            )).scalar_one_or_none()
            if available is None:
                raise TicketTypeNotFoundError(str(ticket_type_id), str(event_id))
            return available

        row = (await self.session.execute(
            select(Event.capacity, Event.available).where(Event.id == event_id)
        )).one_or_none()
        if row is None:
            raise EventNotFoundError(str(event_id))

        type_count, type_available = (await self.session.execute(
            select(func.count(TicketType.id), func.coalesce(func.sum(TicketType.available), 0))
            .where(TicketType.event_id == event_id)
        )).one()
        if type_count:
            return int(type_available)

        capacity, available = row
        if capacity is None:
            return None
        return available

    # Private helper methods

    async def _get_event(self, event_id: UUID) -> Event:
        """Load the event with its ticket types."""
        event = (await self.session.execute(
            select(Event).where(Event.id == event_id)
        )).scalar_one_or_none()
        if event is None:
            raise EventNotFoundError(str(event_id))
        return event

    async def _lock_event(self, event_id: UUID) -> None:
        """Bump the event version, holding its row lock until commit."""
        await self.session.execute(
            update(Event)
            .where(Event.id == event_id)
            .values(version=Event.version + 1)
            .execution_options(synchronize_session=False)
        )

    async def _decrement_event(self, event_id: UUID, quantity: int) -> None:
        """Compare-and-decrement the flat capacity counter."""
        result = await self.session.execute(
            update(Event)
            .where(Event.id == event_id, Event.available >= quantity)
            .values(available=Event.available - quantity, version=Event.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            available = (await self.session.execute(
                select(Event.available).where(Event.id == event_id)
            )).scalar_one_or_none()
            raise InsufficientCapacityError(quantity, available or 0, str(event_id))

    async def _decrement_ticket_type(self, event_id: UUID, ticket_type_id: UUID, quantity: int) -> None:
        """Compare-and-decrement a ticket type counter."""
        result = await self.session.execute(
            update(TicketType)
            .where(
                TicketType.id == ticket_type_id,
                TicketType.event_id == event_id,
                TicketType.available >= quantity
            )
            .values(available=TicketType.available - quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            available = (await self.session.execute(
                select(TicketType.available).where(TicketType.id == ticket_type_id)
            )).scalar_one_or_none()
            raise InsufficientCapacityError(quantity, available or 0, str(event_id))
