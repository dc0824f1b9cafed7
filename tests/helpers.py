from sqlalchemy import func, select

from ez_ticketing.models import Booking, BookingStatus, Event, TicketType
from ez_ticketing.services.booking_service import BookingService
from ez_ticketing.services.capacity_ledger import CapacityLedger
from ez_ticketing.services.email_service import EmailService
from ez_ticketing.services.waitlist_service import WaitlistNotifier, WaitlistService


class RecordingNotifier(WaitlistNotifier):
    """Collects waitlist notices instead of queueing Celery tasks."""

    def __init__(self):
        self.joined = []
        self.promoted = []

    def entry_joined(self, entry, position):
        self.joined.append((entry.id, position))

    def entry_promoted(self, entry):
        self.promoted.append(entry.id)


class FakeEmailService(EmailService):
    """Records deliveries; addresses in ``failing`` return False, in ``raising`` blow up."""

    def __init__(self, failing=(), raising=()):
        super().__init__()
        self.failing = set(failing)
        self.raising = set(raising)
        self.sent = []

    async def send_notification_email(self, to, subject, title, html_content, message_type="custom", recipient_name=None):
        if to in self.raising:
            raise RuntimeError("transport exploded")
        if to in self.failing:
            return False
        self.sent.append(to)
        return True


async def book(session_factory, user, event, quantity=1, seats=None, ticket_type_id=None, notifier=None, **kwargs):
    async with session_factory() as session:
        service = BookingService(session, waitlist_notifier=notifier)
        return await service.create_booking(user.id, event.id, ticket_type_id, quantity, seats=seats, **kwargs)


async def cancel(session_factory, booking, requested_by=None, notifier=None):
    async with session_factory() as session:
        service = BookingService(session, waitlist_notifier=notifier)
        return await service.cancel_booking(booking.id, requested_by=requested_by)


async def join(session_factory, user, event, ticket_type=None, quantity=1, notifier=None):
    async with session_factory() as session:
        return await WaitlistService(session, notifier=notifier).join(user.id, event.id, ticket_type, quantity)


async def available(session_factory, event, ticket_type_id=None):
    async with session_factory() as session:
        return await CapacityLedger(session).available_units(event.id, ticket_type_id)


async def confirmed_quantity(session_factory, event, ticket_type_id=None):
    async with session_factory() as session:
        query = select(func.coalesce(func.sum(Booking.quantity), 0)).where(
            Booking.event_id == event.id,
            Booking.status == BookingStatus.CONFIRMED
        )
        if ticket_type_id is not None:
            query = query.where(Booking.ticket_type_id == ticket_type_id)
        return (await session.execute(query)).scalar_one()


async def event_version(session_factory, event):
    async with session_factory() as session:
        return (await session.execute(select(Event.version).where(Event.id == event.id))).scalar_one()


async def ticket_type_available(session_factory, ticket_type):
    async with session_factory() as session:
        return (await session.execute(
            select(TicketType.available).where(TicketType.id == ticket_type.id)
        )).scalar_one()
