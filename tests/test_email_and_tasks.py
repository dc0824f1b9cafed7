import uuid
from datetime import datetime
from types import SimpleNamespace

import pytest

from ez_ticketing.services.email_service import EmailService
from ez_ticketing.services.waitlist_service import WaitlistNotifier
from ez_ticketing.tasks import waitlist_tasks
from ez_ticketing.tasks.celery_app import celery_app


def configured_service(monkeypatch):
    service = EmailService()
    monkeypatch.setattr(service.settings, "smtp_server", "smtp.example.com")
    monkeypatch.setattr(service.settings, "smtp_username", "mailer@example.com")
    delivered = []
    monkeypatch.setattr(service, "_deliver", lambda *args: delivered.append(args))
    return service, delivered


@pytest.mark.asyncio
async def test_unconfigured_smtp_reports_failure(monkeypatch):
    service = EmailService()
    monkeypatch.setattr(service.settings, "smtp_server", None)

    assert await service.send_notification_email("a@example.com", "s", "t", "<p>x</p>") is False


@pytest.mark.asyncio
async def test_notification_email_is_wrapped_in_layout(monkeypatch):
    service, delivered = configured_service(monkeypatch)

    ok = await service.send_notification_email(
        "a@example.com", "Sale", "Big <sale>", "<p>50% off</p>", message_type="offer", recipient_name="Alice"
    )

    assert ok is True
    to, subject, document, text = delivered[0]
    assert (to, subject, text) == ("a@example.com", "Sale", "Big <sale>")
    assert "Big &lt;sale&gt;" in document
    assert "<p>50% off</p>" in document
    assert "Hi Alice," in document
    assert "#E91E63" in document


@pytest.mark.asyncio
async def test_waitlist_emails(monkeypatch):
    service, delivered = configured_service(monkeypatch)

    await service.send_waitlist_confirmation_email("a@example.com", "Alice", "Gala", "VIP", 2, 3)
    await service.send_waitlist_availability_email(
        "a@example.com", "Alice", "Gala", "VIP", 2,
        expires_at=datetime(2026, 3, 1, 18, 30),
        booking_url="http://localhost:5173/events/1?waitlist=2"
    )

    assert delivered[0][1] == "You're on the Waitlist! - Gala"
    assert "#3" in delivered[0][2]
    assert delivered[1][1] == "Tickets Available - Gala"
    assert "March 01, 2026 at 18:30 UTC" in delivered[1][2]
    assert "waitlist=2" in delivered[1][2]


def test_booking_link():
    entry = SimpleNamespace(id=uuid.uuid4(), event_id=uuid.uuid4())

    link = waitlist_tasks.booking_link(entry)

    assert link.endswith(f"/events/{entry.event_id}?waitlist={entry.id}")


def test_notifier_queues_tasks(monkeypatch):
    queued = []
    monkeypatch.setattr(
        waitlist_tasks.send_waitlist_confirmation_task, "delay", lambda *args: queued.append(("joined", args))
    )
    monkeypatch.setattr(
        waitlist_tasks.send_waitlist_availability_task, "delay", lambda *args: queued.append(("promoted", args))
    )
    entry = SimpleNamespace(id=uuid.uuid4())

    notifier = WaitlistNotifier()
    notifier.entry_joined(entry, 4)
    notifier.entry_promoted(entry)

    assert queued == [("joined", (str(entry.id), 4)), ("promoted", (str(entry.id),))]


def test_notifier_survives_broker_errors(monkeypatch):
    def broken(*args):
        raise ConnectionError("broker down")

    monkeypatch.setattr(waitlist_tasks.send_waitlist_availability_task, "delay", broken)

    WaitlistNotifier().entry_promoted(SimpleNamespace(id=uuid.uuid4()))


def test_sweep_is_scheduled():
    schedule = celery_app.conf.beat_schedule

    assert schedule["sweep-expired-waitlist"]["task"] == "sweep_expired_waitlist"
    assert "sweep_expired_waitlist" in celery_app.tasks
