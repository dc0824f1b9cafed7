import asyncio
import re
import uuid
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from ez_ticketing.models import Booking, BookingStatus, Reservation
from ez_ticketing.services.booking_service import BookingService
from ez_ticketing.utils.exceptions import (
    AuthorizationError,
    EventNotFoundError,
    InsufficientCapacityError,
    PersistenceFailureError,
    SeatConflictError,
    ValidationError,
)
from tests.helpers import available, book, cancel, confirmed_quantity

pytestmark = pytest.mark.asyncio


async def test_booking_is_confirmed_with_ticket_ids(session_factory, users, make_event, notifier):
    event = await make_event(capacity=10)

    booking = await book(session_factory, users.alice, event, quantity=3, notifier=notifier)

    assert booking.status == BookingStatus.CONFIRMED
    assert re.fullmatch(r"BK-\d{8}-[0-9A-Z]{5}", booking.reference)
    assert len(booking.ticket_ids) == 3
    assert len(set(booking.ticket_ids)) == 3
    assert all(re.fullmatch(r"[0-9A-Z]{8}", ticket_id) for ticket_id in booking.ticket_ids)
    assert booking.total_amount == Decimal("0.00")
    assert await available(session_factory, event) == 7


async def test_typed_booking_is_priced(session_factory, users, make_event, notifier):
    event = await make_event(ticket_types=[("VIP", 4, "99.50"), ("Standard", 10, 20)])
    vip = event.ticket_types[0]

    booking = await book(session_factory, users.alice, event, quantity=2, ticket_type_id=vip.id, notifier=notifier)

    assert booking.ticket_type_id == vip.id
    assert booking.ticket_type.name == "VIP"
    assert booking.total_amount == Decimal("199.00")
    assert await available(session_factory, event, vip.id) == 2


async def test_missing_ticket_type_is_rejected(session_factory, users, make_event, notifier):
    event = await make_event(ticket_types=[("VIP", 4, 50)])

    with pytest.raises(ValidationError):
        await book(session_factory, users.alice, event, notifier=notifier)


async def test_unknown_event(session_factory, users, notifier):
    event = SimpleNamespace(id=uuid.uuid4())

    with pytest.raises(EventNotFoundError):
        await book(session_factory, users.alice, event, notifier=notifier)


async def test_quantity_and_per_user_limit(session_factory, users, make_event, notifier):
    event = await make_event(capacity=20)

    with pytest.raises(ValidationError):
        await book(session_factory, users.alice, event, quantity=0, notifier=notifier)

    await book(session_factory, users.alice, event, quantity=2, notifier=notifier, max_per_user=3)
    with pytest.raises(ValidationError):
        await book(session_factory, users.alice, event, quantity=2, notifier=notifier, max_per_user=3)

    assert await available(session_factory, event) == 18


async def test_insufficient_capacity(session_factory, users, make_event, notifier):
    event = await make_event(capacity=2)
    await book(session_factory, users.alice, event, quantity=2, notifier=notifier)

    with pytest.raises(InsufficientCapacityError):
        await book(session_factory, users.bob, event, quantity=1, notifier=notifier)


async def test_concurrent_bookings_never_oversell(session_factory, users, make_event, notifier):
    event = await make_event(capacity=3)

    async def attempt():
        try:
            await book(session_factory, users.alice, event, notifier=notifier)
            return "booked"
        except InsufficientCapacityError:
            return "sold_out"

    results = await asyncio.gather(*(attempt() for _ in range(8)))

    assert results.count("booked") == 3
    assert results.count("sold_out") == 5
    assert await available(session_factory, event) == 0
    assert await confirmed_quantity(session_factory, event) == 3


async def test_concurrent_typed_bookings_never_oversell(session_factory, users, make_event, notifier):
    event = await make_event(ticket_types=[("VIP", 3, 150), ("Standard", 10, 40)])
    vip, standard = event.ticket_types

    async def attempt():
        try:
            return await book(session_factory, users.alice, event, ticket_type_id=vip.id, notifier=notifier)
        except InsufficientCapacityError:
            return None

    results = await asyncio.gather(*(attempt() for _ in range(8)))
    booked = [booking for booking in results if booking is not None]

    assert len(booked) == 3
    assert await available(session_factory, event, vip.id) == 0
    assert await confirmed_quantity(session_factory, event, vip.id) == 3
    assert await available(session_factory, event, standard.id) == 10

    await cancel(session_factory, booked[0], notifier=notifier)
    await cancel(session_factory, booked[1], notifier=notifier)

    for ticket_type in (vip, standard):
        held = await confirmed_quantity(session_factory, event, ticket_type.id)
        assert held + await available(session_factory, event, ticket_type.id) == ticket_type.quantity
    assert await available(session_factory, event, vip.id) == 2


async def test_concurrent_bookings_respect_per_user_limit(session_factory, users, make_event, notifier):
    event = await make_event(capacity=10)

    async def attempt():
        try:
            await book(session_factory, users.alice, event, notifier=notifier, max_per_user=2)
            return "booked"
        except ValidationError:
            return "over_limit"

    results = await asyncio.gather(*(attempt() for _ in range(5)))

    assert results.count("booked") == 2
    assert results.count("over_limit") == 3
    assert await available(session_factory, event) == 8


async def test_concurrent_requests_for_same_seat(session_factory, users, make_event, notifier):
    event = await make_event(capacity=10)
    bookers = [users.alice, users.bob, users.carol, users.staff]

    async def attempt(user):
        try:
            await book(session_factory, user, event, seats=[5], notifier=notifier)
            return "booked"
        except SeatConflictError as e:
            assert e.seat == 5
            return "conflict"

    results = await asyncio.gather(*(attempt(user) for user in bookers))

    assert results.count("booked") == 1
    assert results.count("conflict") == 3
    # Only the winner holds units
    assert await available(session_factory, event) == 9


async def test_seats_of_active_bookings_are_disjoint(session_factory, users, make_event, notifier):
    event = await make_event(capacity=10)
    first = await book(session_factory, users.alice, event, quantity=2, seats=[1, 2], notifier=notifier)
    await book(session_factory, users.bob, event, quantity=2, seats=[3, 4], notifier=notifier)

    with pytest.raises(SeatConflictError):
        await book(session_factory, users.carol, event, quantity=2, seats=[4, 5], notifier=notifier)

    await cancel(session_factory, first, notifier=notifier)
    await book(session_factory, users.carol, event, quantity=2, seats=[1, 2], notifier=notifier)

    async with session_factory() as session:
        service = BookingService(session)
        assert await service.get_booked_seats(event.id) == [1, 2, 3, 4]
        seat_sets = (await session.execute(
            select(Booking.seats).where(Booking.event_id == event.id, Booking.status != BookingStatus.CANCELLED)
        )).scalars().all()
    flat = [seat for seats in seat_sets for seat in seats]
    assert len(flat) == len(set(flat))


async def test_seat_selection_is_validated(session_factory, users, make_event, notifier):
    event = await make_event(capacity=5)
    unlimited = await make_event(title="Open Air")

    with pytest.raises(ValidationError):
        await book(session_factory, users.alice, event, quantity=2, seats=[1], notifier=notifier)
    with pytest.raises(ValidationError):
        await book(session_factory, users.alice, event, quantity=1, seats=[6], notifier=notifier)
    with pytest.raises(ValidationError):
        await book(session_factory, users.alice, unlimited, quantity=1, seats=[1], notifier=notifier)

    assert await available(session_factory, event) == 5


async def test_persistence_failure_rolls_back_reservation(session_factory, users, make_event, notifier, monkeypatch):
    event = await make_event(capacity=2)

    async def failing_persist(self, user_id, ticket_type, token, seats):
        raise OperationalError("INSERT INTO bookings", {}, Exception("disk I/O error"))

    monkeypatch.setattr(BookingService, "_persist_booking", failing_persist)

    with pytest.raises(PersistenceFailureError):
        await book(session_factory, users.alice, event, notifier=notifier)

    assert await available(session_factory, event) == 2
    async with session_factory() as session:
        reservations = (await session.execute(select(func.count(Reservation.id)))).scalar_one()
        bookings = (await session.execute(select(func.count(Booking.id)))).scalar_one()
    assert reservations == 0
    assert bookings == 0


async def test_cancel_is_idempotent(session_factory, users, make_event, notifier):
    event = await make_event(capacity=4)
    booking = await book(session_factory, users.alice, event, quantity=3, notifier=notifier)

    cancelled = await cancel(session_factory, booking, requested_by=users.alice, notifier=notifier)
    again = await cancel(session_factory, booking, requested_by=users.alice, notifier=notifier)

    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.cancelled_at is not None
    assert again.status == BookingStatus.CANCELLED
    assert await available(session_factory, event) == 4


async def test_only_owner_or_admin_may_cancel(session_factory, users, make_event, notifier):
    event = await make_event(capacity=4)
    booking = await book(session_factory, users.alice, event, notifier=notifier)

    with pytest.raises(AuthorizationError):
        await cancel(session_factory, booking, requested_by=users.bob, notifier=notifier)

    cancelled = await cancel(session_factory, booking, requested_by=users.admin, notifier=notifier)
    assert cancelled.status == BookingStatus.CANCELLED


async def test_capacity_invariant_holds_through_bookings_and_cancellations(session_factory, users, make_event, notifier):
    event = await make_event(capacity=10)
    bookings = [
        await book(session_factory, users.alice, event, quantity=2, notifier=notifier),
        await book(session_factory, users.bob, event, quantity=3, notifier=notifier),
        await book(session_factory, users.carol, event, quantity=4, notifier=notifier),
    ]

    for booking in bookings[:2]:
        await cancel(session_factory, booking, notifier=notifier)
        assert await confirmed_quantity(session_factory, event) + await available(session_factory, event) == 10

    await book(session_factory, users.alice, event, quantity=5, notifier=notifier)
    assert await confirmed_quantity(session_factory, event) + await available(session_factory, event) == 10


async def test_seat_layout(session_factory, users, make_event, notifier):
    event = await make_event(ticket_types=[("VIP", 3, 80), ("Standard", 20, 25)])
    await book(session_factory, users.alice, event, quantity=2, seats=[22, 23],
               ticket_type_id=event.ticket_types[1].id, notifier=notifier)

    async with session_factory() as session:
        seat_layout = await BookingService(session).get_seat_layout(event.id)

    assert seat_layout["capacity"] == 23
    assert seat_layout["rows"][-1] == [21, 22, 23]
    assert seat_layout["booked_seats"] == [22, 23]
