"""
Celery tasks for the waitlist: expiry sweep and emails.
"""

import asyncio
import logging
from typing import Any, Coroutine, Dict, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from .celery_app import celery_app
from ..config import get_settings
from ..database import task_session
from ..models.waitlist import WaitlistEntry
from ..services.email_service import EmailService
from ..services.waitlist_service import WaitlistService

logger = logging.getLogger(__name__)


def run_async(coro: Coroutine) -> Any:
    """Run a task body in a fresh event loop."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def booking_link(entry: WaitlistEntry) -> str:
    """Frontend URL where a promoted user completes their booking."""
    return f"{get_settings().frontend_url}/events/{entry.event_id}?waitlist={entry.id}"


async def _load_entry(session, entry_id: str) -> Optional[WaitlistEntry]:
    return (await session.execute(
        select(WaitlistEntry)
        .where(WaitlistEntry.id == UUID(entry_id))
        .options(selectinload(WaitlistEntry.user), selectinload(WaitlistEntry.event))
    )).scalar_one_or_none()


@celery_app.task(name="sweep_expired_waitlist")
def sweep_expired_waitlist() -> Dict[str, Any]:
    """
    Periodic task: expire lapsed waitlist notifications and promote the next entries.
    """
    async def _sweep():
        async with task_session() as session:
            expired = await WaitlistService(session).sweep_expired()
            return {"expired": len(expired)}

    result = run_async(_sweep())
    logger.info(f"Waitlist sweep finished: {result['expired']} entries expired")
    return result


@celery_app.task(name="send_waitlist_confirmation")
def send_waitlist_confirmation_task(entry_id: str, position: Optional[int]) -> Dict[str, Any]:
    """
    Email a user confirming they joined the waitlist.

    Args:
        entry_id: ID of the waitlist entry
        position: Queue position at the time of joining
    """
    async def _send():
        async with task_session() as session:
            entry = await _load_entry(session, entry_id)
            if entry is None:
                logger.warning(f"Waitlist entry {entry_id} no longer exists, confirmation skipped")
                return {"entry_id": entry_id, "status": "missing"}

            sent = await EmailService().send_waitlist_confirmation_email(
                to=entry.user.email,
                recipient_name=entry.user.full_name,
                event_title=entry.event.title,
                ticket_type=entry.ticket_type,
                quantity=entry.quantity,
                position=position
            )
            return {"entry_id": entry_id, "status": "sent" if sent else "failed"}

    result = run_async(_send())
    logger.info(f"Waitlist confirmation for {entry_id}: {result['status']}")
    return result


@celery_app.task(name="send_waitlist_availability")
def send_waitlist_availability_task(entry_id: str) -> Dict[str, Any]:
    """
    Email a promoted user that tickets are available, with the booking link
    and the time the offer expires.

    Args:
        entry_id: ID of the notified waitlist entry
    """
    async def _send():
        async with task_session() as session:
            entry = await _load_entry(session, entry_id)
            if entry is None or entry.expires_at is None:
                logger.warning(f"Waitlist entry {entry_id} is not notified, availability email skipped")
                return {"entry_id": entry_id, "status": "skipped"}

            sent = await EmailService().send_waitlist_availability_email(
                to=entry.user.email,
                recipient_name=entry.user.full_name,
                event_title=entry.event.title,
                ticket_type=entry.ticket_type,
                quantity=entry.quantity,
                expires_at=entry.expires_at,
                booking_url=booking_link(entry)
            )
            return {"entry_id": entry_id, "status": "sent" if sent else "failed"}

    result = run_async(_send())
    logger.info(f"Waitlist availability notice for {entry_id}: {result['status']}")
    return result
