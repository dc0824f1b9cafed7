from datetime import timedelta

import pytest
from sqlalchemy import func, select, update

from ez_ticketing.models import MessageType, Notification, NotificationStatus, RecipientType, User, UserRole
from ez_ticketing.services.notification_service import NotificationService, compute_dedup_key
from ez_ticketing.utils.exceptions import DuplicateRecentError
from ez_ticketing.utils.timeutils import utcnow
from tests.helpers import FakeEmailService, book

pytestmark = pytest.mark.asyncio


class FakeCache:
    """In-memory stand-in for the Redis claim."""

    def __init__(self):
        self.keys = set()

    async def claim(self, key, ttl):
        if key in self.keys:
            return False
        self.keys.add(key)
        return True

    async def delete(self, key):
        self.keys.discard(key)
        return True


async def broadcast(session_factory, email_service, recipient_type=RecipientType.ALL, cache=None, admin=None, **content):
    content.setdefault("subject", "Doors open at 7")
    content.setdefault("title", "Schedule update")
    content.setdefault("html", "<p>See you there</p>")
    async with session_factory() as session:
        service = NotificationService(session, email_service=email_service, cache=cache)
        return await service.broadcast(
            message_type=MessageType.UPDATE,
            recipient_type=recipient_type,
            admin=admin,
            **content
        )


async def count_notifications(session_factory):
    async with session_factory() as session:
        return (await session.execute(select(func.count(Notification.id)))).scalar_one()


async def recipients(session_factory, recipient_type):
    async with session_factory() as session:
        users = await NotificationService(session).resolve_recipients(recipient_type)
    return sorted(user.email for user in users)


async def test_dedup_key_covers_all_content():
    base = compute_dedup_key("s", "t", "<p>h</p>", RecipientType.ALL)

    assert base == compute_dedup_key("s", "t", "<p>h</p>", RecipientType.ALL)
    assert len(base) == 64
    assert base != compute_dedup_key("s", "t", "<p>h</p>", RecipientType.STAFF)
    assert base != compute_dedup_key("s", "t2", "<p>h</p>", RecipientType.ALL)
    assert base != compute_dedup_key("s", "t", "<p>x</p>", RecipientType.ALL)


async def test_broadcast_reaches_every_active_user(session_factory, users, email_service):
    result = await broadcast(session_factory, email_service, admin=users.admin)

    assert result.sent == 5
    assert result.failed == 0
    assert "gone@example.com" not in email_service.sent
    notification = result.notification
    assert notification.status == NotificationStatus.SENT
    assert notification.sent_count == 5
    assert notification.admin_email == "admin@example.com"
    assert notification.admin_name == "Ada Tester"
    assert notification.dedup_key == compute_dedup_key(
        "Doors open at 7", "Schedule update", "<p>See you there</p>", RecipientType.ALL
    )


async def test_duplicate_within_window_is_rejected(session_factory, users, email_service):
    await broadcast(session_factory, email_service)

    with pytest.raises(DuplicateRecentError):
        await broadcast(session_factory, email_service)

    assert await count_notifications(session_factory) == 1
    assert len(email_service.sent) == 5

    # Same content to another cohort is a different broadcast
    await broadcast(session_factory, email_service, recipient_type=RecipientType.STAFF)
    assert await count_notifications(session_factory) == 2


async def test_resend_allowed_after_window(session_factory, users, email_service):
    await broadcast(session_factory, email_service)

    async with session_factory() as session:
        async with session.begin():
            await session.execute(update(Notification).values(created_at=utcnow() - timedelta(minutes=31)))

    result = await broadcast(session_factory, email_service)
    assert result.notification.status == NotificationStatus.SENT
    assert await count_notifications(session_factory) == 2


async def test_cache_claim_rejects_simultaneous_submission(session_factory, users, email_service):
    cache = FakeCache()
    await broadcast(session_factory, email_service, cache=cache)

    # A second claim on the same key loses before touching the database
    with pytest.raises(DuplicateRecentError):
        await broadcast(session_factory, email_service, cache=cache)

    assert await count_notifications(session_factory) == 1


async def test_partial_failures_are_counted(session_factory, users):
    email_service = FakeEmailService(failing={"bob@example.com"}, raising={"carol@example.com"})

    result = await broadcast(session_factory, email_service)

    assert result.sent == 3
    assert result.failed == 2
    assert result.notification.status == NotificationStatus.FAILED
    assert result.notification.sent_count == 3
    assert result.notification.error == "2 failures"

    async with session_factory() as session:
        stored = await session.get(Notification, result.notification.id)
    assert stored.status == NotificationStatus.FAILED
    assert stored.sent_count == 3


async def test_cohorts(session_factory, users, make_event, notifier):
    event = await make_event(capacity=10)
    await book(session_factory, users.alice, event, notifier=notifier)
    await book(session_factory, users.alice, event, notifier=notifier)
    await book(session_factory, users.staff, event, notifier=notifier)

    async with session_factory() as session:
        async with session.begin():
            session.add(User(email="org@example.com", first_name="Olga", role=UserRole.ORGANIZER))

    assert await recipients(session_factory, RecipientType.ALL) == [
        "admin@example.com", "alice@example.com", "bob@example.com",
        "carol@example.com", "org@example.com", "staff@example.com",
    ]
    assert await recipients(session_factory, RecipientType.REGISTERED) == [
        "alice@example.com", "bob@example.com", "carol@example.com",
    ]
    assert await recipients(session_factory, RecipientType.STAFF) == ["admin@example.com", "staff@example.com"]
    assert await recipients(session_factory, RecipientType.PARTICIPANTS) == ["alice@example.com", "staff@example.com"]


async def test_recipients_deduplicated_by_email(session_factory, users, email_service):
    async with session_factory() as session:
        async with session.begin():
            session.add(User(email="ALICE@example.com", first_name="Alice", role=UserRole.USER))

    assert len(await recipients(session_factory, RecipientType.REGISTERED)) == 3

    result = await broadcast(session_factory, email_service, recipient_type=RecipientType.REGISTERED)
    assert result.sent == 3


async def test_templates(session_factory, users):
    async with session_factory() as session:
        service = NotificationService(session)
        await service.save_template(
            name="Reminder",
            subject="Tomorrow",
            title="See you tomorrow",
            html="<p>Bring your ticket</p>",
            admin=users.admin
        )

    async with session_factory() as session:
        templates = await NotificationService(session).list_templates()

    assert [t.name for t in templates] == ["Reminder"]
    assert templates[0].message_type == MessageType.CUSTOM
    assert templates[0].created_by == users.admin.id


async def test_history_is_newest_first(session_factory, users, email_service):
    for subject in ("first", "second", "third"):
        await broadcast(session_factory, email_service, subject=subject)

    async with session_factory() as session:
        history = await NotificationService(session).list_notifications(limit=2)

    assert [n.subject for n in history] == ["third", "second"]
