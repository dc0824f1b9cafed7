"""
Waitlist promotion engine.

Entries move ``waiting -> notified -> converted | expired``. Queue order is
strictly FIFO by creation time and a user's position is computed on read.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..database import transaction
from ..models.event import DEFAULT_TICKET_TYPE, Event, TicketType
from ..models.waitlist import ACTIVE_WAITLIST_STATUSES, WaitlistEntry, WaitlistStatus
from ..utils.exceptions import (
    AlreadyOnWaitlistError,
    AuthorizationError,
    EventNotFoundError,
    InvalidWaitlistStateError,
    ValidationError,
    WaitlistEntryNotFoundError,
)
from ..utils.logging_config import log_business_event
from ..utils.timeutils import as_utc, utcnow
from .capacity_ledger import CapacityLedger

logger = logging.getLogger(__name__)

EntryWithPosition = Tuple[WaitlistEntry, Optional[int]]


class WaitlistNotifier:
    """Queues waitlist emails on the Celery worker."""

    def entry_joined(self, entry: WaitlistEntry, position: Optional[int]) -> None:
        try:
            from ..tasks.waitlist_tasks import send_waitlist_confirmation_task
            send_waitlist_confirmation_task.delay(str(entry.id), position)
            logger.info(f"Waitlist confirmation queued for {entry.id}")
        except Exception as e:
            logger.warning(f"Failed to queue waitlist confirmation for {entry.id}: {e}")

    def entry_promoted(self, entry: WaitlistEntry) -> None:
        try:
            from ..tasks.waitlist_tasks import send_waitlist_availability_task
            send_waitlist_availability_task.delay(str(entry.id))
            logger.info(f"Waitlist availability notice queued for {entry.id}")
        except Exception as e:
            logger.warning(f"Failed to queue waitlist availability notice for {entry.id}: {e}")


class WaitlistService:
    """Service for managing waitlist entries and promotions."""

    def __init__(self, session: AsyncSession, notifier: Optional[WaitlistNotifier] = None):
        self.session = session
        self.notifier = notifier or WaitlistNotifier()
        self.ledger = CapacityLedger(session)
        self.settings = get_settings()

    async def join(
        self,
        user_id: UUID,
        event_id: UUID,
        ticket_type: Optional[str],
        quantity: int
    ) -> WaitlistEntry:
        """
        Add a user to the queue for an event's ticket type.

        Capacity is not checked here; callers offer the waitlist once the
        ledger reports nothing left.

        Args:
            user_id: ID of the user joining
            event_id: ID of the event
            ticket_type: Ticket type name; defaults to ``General`` for flat
                capacity events
            quantity: Number of tickets wanted

        Returns:
            The new waiting entry

        Raises:
            EventNotFoundError: If the event doesn't exist
            ValidationError: For past events, unknown ticket types or a bad quantity
            AlreadyOnWaitlistError: If the user already has an active entry
        """
        logger.info(f"User {user_id} joining waitlist for event {event_id} ({ticket_type}), quantity {quantity}")

        if quantity < 1 or quantity > self.settings.max_tickets_per_user:
            raise ValidationError(
                f"Quantity must be between 1 and {self.settings.max_tickets_per_user}",
                field_errors={"quantity": ["out of range"]}
            )

        async with transaction(self.session):
            event = await self._get_event(event_id)

            if as_utc(event.event_date) < utcnow():
                raise ValidationError("Cannot join waitlist for past events")

            ticket_type = self._resolve_ticket_type_name(event, ticket_type)

            existing = (await self.session.execute(
                select(WaitlistEntry.id).where(
                    and_(
                        WaitlistEntry.user_id == user_id,
                        WaitlistEntry.event_id == event_id,
                        WaitlistEntry.ticket_type == ticket_type,
                        WaitlistEntry.status.in_(ACTIVE_WAITLIST_STATUSES)
                    )
                )
            )).first()
            if existing:
                raise AlreadyOnWaitlistError(str(event_id), ticket_type)

            entry = WaitlistEntry(
                user_id=user_id,
                event_id=event_id,
                ticket_type=ticket_type,
                quantity=quantity,
                status=WaitlistStatus.WAITING
            )
            self.session.add(entry)
            await self.session.flush()

            position = await self.position(entry)

        logger.info(f"User {user_id} added to waitlist for event {event_id} at position {position}")
        self.notifier.entry_joined(entry, position)
        return entry

    async def leave(self, entry_id: UUID, user_id: UUID) -> None:
        """
        Remove a user's entry without promoting anyone.

        Raises:
            WaitlistEntryNotFoundError: If the entry doesn't exist
            AuthorizationError: If the entry belongs to someone else
            InvalidWaitlistStateError: If the entry was already converted
        """
        async with transaction(self.session):
            entry = await self.session.get(WaitlistEntry, entry_id)
            if entry is None:
                raise WaitlistEntryNotFoundError(str(entry_id))
            if entry.user_id != user_id:
                raise AuthorizationError("You can only leave your own waitlist entries")
            if entry.status == WaitlistStatus.CONVERTED:
                raise InvalidWaitlistStateError(
                    str(entry_id),
                    entry.status.value,
                    "Cannot leave waitlist - already converted to booking"
                )

            await self.session.execute(
                delete(WaitlistEntry).where(WaitlistEntry.id == entry_id)
            )

        logger.info(f"User {user_id} left waitlist entry {entry_id}")

    async def on_capacity_freed(
        self,
        event_id: UUID,
        ticket_type: str,
        freed_quantity: int
    ) -> Optional[WaitlistEntry]:
        """
        Promote the oldest waiting entry whose request fits in ``freed_quantity``.

        The promoted entry gets ``expires_at = now + 48h`` and an availability
        email. Units are not held for it; anything left over is offered again
        on the next release or sweep.

        Args:
            event_id: ID of the event
            ticket_type: Ticket type name the units were freed from
            freed_quantity: Number of units that became available

        Returns:
            The promoted entry, or None if nobody fits
        """
        if freed_quantity <= 0:
            return None

        async with transaction(self.session):
            while True:
                candidate = (await self.session.execute(
                    select(WaitlistEntry)
                    .where(
                        and_(
                            WaitlistEntry.event_id == event_id,
                            WaitlistEntry.ticket_type == ticket_type,
                            WaitlistEntry.status == WaitlistStatus.WAITING,
                            WaitlistEntry.quantity <= freed_quantity
                        )
                    )
                    .order_by(WaitlistEntry.created_at, WaitlistEntry.id)
                    .limit(1)
                )).scalar_one_or_none()
                if candidate is None:
                    logger.debug(f"No waiting entry fits {freed_quantity} units for event {event_id} ({ticket_type})")
                    return None

                now = utcnow()
                result = await self.session.execute(
                    update(WaitlistEntry)
                    .where(
                        WaitlistEntry.id == candidate.id,
                        WaitlistEntry.status == WaitlistStatus.WAITING
                    )
                    .values(
                        status=WaitlistStatus.NOTIFIED,
                        notified_at=now,
                        expires_at=now + timedelta(hours=self.settings.waitlist_notification_expiry_hours)
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    break
                # Promoted or removed concurrently; look again

            await self.session.refresh(candidate, attribute_names=["status", "notified_at", "expires_at", "updated_at"])

        log_business_event(
            "waitlist_promoted",
            {"entry_id": str(candidate.id), "event_id": str(event_id), "ticket_type": ticket_type},
            user_id=str(candidate.user_id)
        )
        self.notifier.entry_promoted(candidate)
        return candidate

    async def notify_next(
        self,
        event_id: UUID,
        ticket_type: Optional[str],
        quantity: int
    ) -> Optional[WaitlistEntry]:
        """
        Offer ``quantity`` units to the queue on an admin's request.

        Raises:
            EventNotFoundError: If the event doesn't exist
            ValidationError: For unknown ticket types or a bad quantity
        """
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", field_errors={"quantity": ["must be >= 1"]})

        async with transaction(self.session):
            event = await self._get_event(event_id)
            ticket_type = self._resolve_ticket_type_name(event, ticket_type)

        return await self.on_capacity_freed(event_id, ticket_type, quantity)

    async def sweep_expired(self) -> List[WaitlistEntry]:
        """
        Expire notified entries whose window has passed, then offer every
        queue the available units not already covered by a live offer.

        Safe to call repeatedly; an entry is expired by exactly one caller.

        Returns:
            Entries expired by this call
        """
        now = utcnow()
        expired: List[WaitlistEntry] = []

        async with transaction(self.session):
            stale = (await self.session.execute(
                select(WaitlistEntry).where(
                    and_(
                        WaitlistEntry.status == WaitlistStatus.NOTIFIED,
                        WaitlistEntry.expires_at <= now
                    )
                )
            )).scalars().all()

            for entry in stale:
                result = await self.session.execute(
                    update(WaitlistEntry)
                    .where(
                        WaitlistEntry.id == entry.id,
                        WaitlistEntry.status == WaitlistStatus.NOTIFIED
                    )
                    .values(status=WaitlistStatus.EXPIRED)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    await self.session.refresh(entry, attribute_names=["status", "updated_at"])
                    expired.append(entry)

        if expired:
            logger.info(f"Expired {len(expired)} waitlist notifications")

        async with transaction(self.session):
            queues = (await self.session.execute(
                select(WaitlistEntry.event_id, WaitlistEntry.ticket_type)
                .where(WaitlistEntry.status == WaitlistStatus.WAITING)
                .distinct()
            )).all()

        for event_id, ticket_type in queues:
            while True:
                async with transaction(self.session):
                    headroom = await self._unoffered_units(event_id, ticket_type, now)
                if headroom is None or headroom <= 0:
                    break
                if await self.on_capacity_freed(event_id, ticket_type, headroom) is None:
                    break

        return expired

    async def position(self, entry: WaitlistEntry) -> Optional[int]:
        """
        1 + number of waiting entries queued ahead of ``entry``.

        Returns:
            The position, or None when the entry is no longer waiting
        """
        if entry.status != WaitlistStatus.WAITING:
            return None

        ahead = (await self.session.execute(
            select(func.count(WaitlistEntry.id)).where(
                and_(
                    WaitlistEntry.event_id == entry.event_id,
                    WaitlistEntry.ticket_type == entry.ticket_type,
                    WaitlistEntry.status == WaitlistStatus.WAITING,
                    or_(
                        WaitlistEntry.created_at < entry.created_at,
                        and_(
                            WaitlistEntry.created_at == entry.created_at,
                            WaitlistEntry.id < entry.id
                        )
                    )
                )
            )
        )).scalar_one()
        return ahead + 1

    async def get_position(self, entry_id: UUID) -> Optional[int]:
        """Position of an entry by id."""
        entry = await self.session.get(WaitlistEntry, entry_id)
        if entry is None:
            raise WaitlistEntryNotFoundError(str(entry_id))
        return await self.position(entry)

    async def get_user_entries(
        self,
        user_id: UUID,
        statuses: Optional[Sequence[WaitlistStatus]] = None
    ) -> List[EntryWithPosition]:
        """
        Get a user's entries, newest first, with their current positions.

        Lapsed notifications are expired first so the statuses read back are
        current.
        """
        await self.sweep_expired()

        query = select(WaitlistEntry).where(WaitlistEntry.user_id == user_id)
        if statuses:
            query = query.where(WaitlistEntry.status.in_(statuses))
        query = query.order_by(WaitlistEntry.created_at.desc())

        entries = (await self.session.execute(query)).scalars().all()
        return [(entry, await self.position(entry)) for entry in entries]

    async def get_event_waitlist(self, event_id: UUID) -> Dict[str, List[EntryWithPosition]]:
        """Entries for an event grouped by ticket type, in queue order."""
        await self._get_event(event_id)

        entries = (await self.session.execute(
            select(WaitlistEntry)
            .where(WaitlistEntry.event_id == event_id)
            .order_by(WaitlistEntry.ticket_type, WaitlistEntry.created_at, WaitlistEntry.id)
        )).scalars().all()

        grouped: Dict[str, List[EntryWithPosition]] = defaultdict(list)
        for entry in entries:
            grouped[entry.ticket_type].append((entry, await self.position(entry)))
        return dict(grouped)

    async def get_analytics(self, event_id: UUID) -> Dict[str, float]:
        """Status counts and conversion rate for an event's waitlist."""
        await self._get_event(event_id)

        rows = (await self.session.execute(
            select(WaitlistEntry.status, func.count(WaitlistEntry.id))
            .where(WaitlistEntry.event_id == event_id)
            .group_by(WaitlistEntry.status)
        )).all()
        counts = {status: count for status, count in rows}

        notified_total = (
            counts.get(WaitlistStatus.NOTIFIED, 0)
            + counts.get(WaitlistStatus.CONVERTED, 0)
            + counts.get(WaitlistStatus.EXPIRED, 0)
        )
        converted = counts.get(WaitlistStatus.CONVERTED, 0)

        return {
            "total": sum(counts.values()),
            "waiting": counts.get(WaitlistStatus.WAITING, 0),
            "notified": counts.get(WaitlistStatus.NOTIFIED, 0),
            "converted": converted,
            "expired": counts.get(WaitlistStatus.EXPIRED, 0),
            "conversion_rate": round(converted / notified_total * 100, 2) if notified_total else 0.0,
        }

    async def convert_for_booking(
        self,
        user_id: UUID,
        event_id: UUID,
        ticket_type: str,
        now: Optional[datetime] = None
    ) -> int:
        """
        Mark the user's live notification for this event and type as converted.

        Runs inside the caller's transaction.

        Returns:
            Number of entries converted (0 or 1)
        """
        now = now or utcnow()
        result = await self.session.execute(
            update(WaitlistEntry)
            .where(
                WaitlistEntry.user_id == user_id,
                WaitlistEntry.event_id == event_id,
                WaitlistEntry.ticket_type == ticket_type,
                WaitlistEntry.status == WaitlistStatus.NOTIFIED,
                WaitlistEntry.expires_at > now
            )
            .values(status=WaitlistStatus.CONVERTED)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(f"Waitlist entry for user {user_id} on event {event_id} converted to booking")
        return result.rowcount

    # Private helper methods

    async def _get_event(self, event_id: UUID) -> Event:
        """Get event by ID."""
        event = (await self.session.execute(
            select(Event).where(Event.id == event_id)
        )).scalar_one_or_none()
        if event is None:
            raise EventNotFoundError(str(event_id))
        return event

    def _resolve_ticket_type_name(self, event: Event, ticket_type: Optional[str]) -> str:
        """Validate the requested ticket type name against the event."""
        if event.has_ticket_types:
            if not ticket_type or event.get_ticket_type_by_name(ticket_type) is None:
                raise ValidationError(
                    "Invalid ticket type",
                    field_errors={"ticketType": [f"unknown ticket type {ticket_type!r}"]}
                )
            return ticket_type
        if ticket_type and ticket_type != DEFAULT_TICKET_TYPE:
            raise ValidationError(
                "Invalid ticket type",
                field_errors={"ticketType": [f"this event only sells {DEFAULT_TICKET_TYPE} tickets"]}
            )
        return DEFAULT_TICKET_TYPE

    async def _available_for(self, event_id: UUID, ticket_type: str) -> Optional[int]:
        """Units available for a ticket type name."""
        ticket_type_id = (await self.session.execute(
            select(TicketType.id).where(
                TicketType.event_id == event_id,
                TicketType.name == ticket_type
            )
        )).scalar_one_or_none()
        return await self.ledger.available_units(event_id, ticket_type_id)

    async def _unoffered_units(self, event_id: UUID, ticket_type: str, now: datetime) -> Optional[int]:
        """Available units not already covered by a live offer."""
        available = await self._available_for(event_id, ticket_type)
        if available is None:
            return None
        offered = (await self.session.execute(
            select(func.coalesce(func.sum(WaitlistEntry.quantity), 0)).where(
                WaitlistEntry.event_id == event_id,
                WaitlistEntry.ticket_type == ticket_type,
                WaitlistEntry.status == WaitlistStatus.NOTIFIED,
                WaitlistEntry.expires_at > now
            )
        )).scalar_one()
        return available - offered
