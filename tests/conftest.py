from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import event as sa_event
from sqlalchemy.ext.asyncio import create_async_engine

from ez_ticketing.database import create_session_factory, create_tables, get_db
from ez_ticketing.main import app
from ez_ticketing.models import Event, TicketType, User, UserRole
from ez_ticketing.utils.dependencies import get_current_user, get_email_service, get_waitlist_notifier
from ez_ticketing.utils.exceptions import AuthenticationError
from ez_ticketing.utils.timeutils import utcnow
from tests.helpers import FakeEmailService, RecordingNotifier


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ticketing.db'}",
        connect_args={"timeout": 30}
    )

    # Take the write lock at BEGIN so concurrent transactions serialize
    # the way row locks serialize them on PostgreSQL
    @sa_event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @sa_event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture(scope="function")
async def users(session_factory):
    specs = {
        "alice": ("alice@example.com", "Alice", UserRole.USER, True),
        "bob": ("bob@example.com", "Bob", UserRole.USER, True),
        "carol": ("carol@example.com", "Carol", UserRole.USER, True),
        "admin": ("admin@example.com", "Ada", UserRole.ADMIN, True),
        "staff": ("staff@example.com", "Sam", UserRole.STAFF, True),
        "inactive": ("gone@example.com", "Gone", UserRole.USER, False),
    }
    created = {}
    async with session_factory() as session:
        async with session.begin():
            for key, (email, first_name, role, is_active) in specs.items():
                user = User(email=email, first_name=first_name, last_name="Tester", role=role, is_active=is_active)
                session.add(user)
                created[key] = user
    return SimpleNamespace(**created)


@pytest.fixture
def make_event(session_factory):
    """Create an event; ``ticket_types`` is a list of (name, quantity, price)."""

    async def _make(capacity=None, ticket_types=None, days_ahead=30, title="Launch Party"):
        async with session_factory() as session:
            async with session.begin():
                event = Event(
                    title=title,
                    venue="Main Hall",
                    event_date=utcnow() + timedelta(days=days_ahead),
                    capacity=capacity,
                    available=capacity,
                    ticket_types=[
                        TicketType(name=name, quantity=quantity, available=quantity, price=Decimal(str(price)))
                        for name, quantity, price in (ticket_types or [])
                    ]
                )
                session.add(event)
        return event

    return _make


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def email_service():
    return FakeEmailService()


@pytest.fixture
def auth():
    """Holds the user the API client is signed in as."""
    return SimpleNamespace(user=None)


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, auth, notifier, email_service):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def override_get_current_user():
        if auth.user is None:
            raise AuthenticationError("Not authenticated")
        return auth.user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_waitlist_notifier] = lambda: notifier
    app.dependency_overrides[get_email_service] = lambda: email_service

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test", timeout=10.0) as c:
        yield c

    app.dependency_overrides.clear()
