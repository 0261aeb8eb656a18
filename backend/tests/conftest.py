"""
Pytest fixtures for test database, client, realtime sockets and authentication.

Each test gets its own SQLite database file, so committed state never
leaks between tests. The broadcaster and per-event locks are replaced
with fresh instances per test through dependency overrides.
"""

import asyncio
import os

os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import datetime, timezone, timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from eventhub.main import app
from eventhub.api.deps import get_broadcaster, get_event_locks
from eventhub.db.base import Base
from eventhub.db.session import get_db
from eventhub.core.security import create_access_token, hash_password
from eventhub.models.user import User
from eventhub.models.event import Event
from eventhub.services.attendance_service import EventLocks
from eventhub.services.realtime import ConnectionManager


class FakeWebSocket:
    """Stands in for a client socket; records what the server sends."""

    def __init__(self, fail: bool = False, delay: float = 0):
        self.fail = fail
        self.delay = delay
        self.accepted = False
        self.sent: list[dict] = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def of_type(self, message_type: str) -> list[dict]:
        return [m for m in self.sent if m.get("type") == message_type]


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'eventhub_test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def broadcaster() -> ConnectionManager:
    return ConnectionManager()


@pytest.fixture
def event_locks() -> EventLocks:
    return EventLocks()


@pytest_asyncio.fixture(scope="function")
async def client(
    db_session: AsyncSession,
    broadcaster: ConnectionManager,
    event_locks: EventLocks,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with the DB session, broadcaster and locks overridden."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_broadcaster] = lambda: broadcaster
    app.dependency_overrides[get_event_locks] = lambda: event_locks

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_socket(broadcaster: ConnectionManager):
    """Register a fake client socket, optionally subscribed to an event room."""

    async def _make(room: int = None, fail: bool = False, delay: float = 0) -> FakeWebSocket:
        socket = FakeWebSocket(fail=fail, delay=delay)
        connection_id = await broadcaster.connect(socket)
        socket.connection_id = connection_id
        if room is not None:
            await broadcaster.join_room(connection_id, room)
        return socket

    return _make


async def _create_user(db: AsyncSession, username: str, email: str, is_guest: bool = False) -> User:
    user = User(
        email=email,
        username=username,
        hashed_password=hash_password("testpassword123"),
        is_guest=is_guest,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


def _headers_for(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.username)}"}


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    return await _create_user(db_session, "testuser", "test@example.com")


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> User:
    return await _create_user(db_session, "bob", "bob@example.com")


@pytest_asyncio.fixture
async def guest_user(db_session: AsyncSession) -> User:
    return await _create_user(db_session, "guest", "guest@example.com", is_guest=True)


@pytest_asyncio.fixture
async def auth_token(test_user: User) -> str:
    return create_access_token(test_user.id, test_user.username)


@pytest_asyncio.fixture
async def auth_headers(auth_token: str) -> dict:
    return {"Authorization": f"Bearer {auth_token}"}


@pytest_asyncio.fixture
async def other_headers(other_user: User) -> dict:
    return _headers_for(other_user)


@pytest_asyncio.fixture
async def guest_headers(guest_user: User) -> dict:
    return _headers_for(guest_user)


@pytest_asyncio.fixture
async def test_event(db_session: AsyncSession, test_user: User) -> Event:
    """An upcoming event created by test_user with no attendees."""
    event = Event(
        name="Test Meetup",
        description="A test event",
        date=datetime.now(timezone.utc) + timedelta(days=30),
        location="Test Venue",
        creator_id=test_user.id,
    )
    db_session.add(event)
    await db_session.commit()
    await db_session.refresh(event)
    return event
