"""
Service-level tests for AttendanceManager: concurrent joins, version
conflict retries, per-event locks and broadcast failure isolation.
"""

import asyncio

import pytest
from fastapi import HTTPException
from sqlalchemy import select, func
from sqlalchemy.sql.dml import Update

from eventhub.core.exceptions import AlreadyMemberError, NotMemberError, EventNotFoundError
from eventhub.models.attendee import EventAttendee
from eventhub.models.event import Event
from eventhub.schemas.event import EventDetail
from eventhub.services.attendance_service import AttendanceManager, EventLocks
from eventhub.services.realtime import ConnectionManager


class _StaleResult:
    rowcount = 0


class ConflictingSession:
    """Session proxy whose first `conflicts` version claims match no row."""

    def __init__(self, db, conflicts: int):
        self._db = db
        self.conflicts = conflicts

    async def execute(self, statement, *args, **kwargs):
        if isinstance(statement, Update) and self.conflicts > 0:
            self.conflicts -= 1
            return _StaleResult()
        return await self._db.execute(statement, *args, **kwargs)

    def __getattr__(self, name):
        return getattr(self._db, name)


class ExplodingBroadcaster(ConnectionManager):
    async def publish(self, message_type, data, room=None):
        raise RuntimeError("broker down")


async def _attendee_count(session_factory, event_id: int) -> int:
    async with session_factory() as session:
        result = await session.execute(
            select(func.count()).select_from(EventAttendee).where(EventAttendee.event_id == event_id)
        )
        return result.scalar_one()


@pytest.mark.asyncio
async def test_concurrent_duplicate_join(session_factory, broadcaster, event_locks, test_event, other_user):
    """Two simultaneous joins by one user: one succeeds, one is rejected."""
    manager = AttendanceManager(broadcaster, event_locks)

    async def attempt():
        async with session_factory() as session:
            return await manager.join(session, test_event.id, other_user.id)

    results = await asyncio.gather(attempt(), attempt(), return_exceptions=True)

    successes = [r for r in results if isinstance(r, EventDetail)]
    rejections = [r for r in results if isinstance(r, AlreadyMemberError)]
    assert len(successes) == 1
    assert len(rejections) == 1
    assert await _attendee_count(session_factory, test_event.id) == 1


@pytest.mark.asyncio
async def test_concurrent_joins_by_different_users(
    session_factory, broadcaster, event_locks, test_event, test_user, other_user
):
    manager = AttendanceManager(broadcaster, event_locks)

    async def attempt(user_id):
        async with session_factory() as session:
            return await manager.join(session, test_event.id, user_id)

    results = await asyncio.gather(attempt(test_user.id), attempt(other_user.id))

    assert all(isinstance(r, EventDetail) for r in results)
    assert max(r.attendees_count for r in results) == 2
    assert await _attendee_count(session_factory, test_event.id) == 2


@pytest.mark.asyncio
async def test_version_bumped_on_each_change(db_session, broadcaster, event_locks, test_event, other_user):
    manager = AttendanceManager(broadcaster, event_locks)
    start = test_event.version

    await manager.join(db_session, test_event.id, other_user.id)
    await manager.leave(db_session, test_event.id, other_user.id)

    version = (await db_session.execute(select(Event.version).where(Event.id == test_event.id))).scalar_one()
    assert version == start + 2


@pytest.mark.asyncio
async def test_version_conflict_is_retried(db_session, broadcaster, event_locks, test_event, other_user):
    manager = AttendanceManager(broadcaster, event_locks, max_retries=3)
    session = ConflictingSession(db_session, conflicts=2)

    detail = await manager.join(session, test_event.id, other_user.id)

    assert detail.attendees_count == 1
    assert session.conflicts == 0


@pytest.mark.asyncio
async def test_version_conflict_exhausts_retries(
    db_session, session_factory, broadcaster, event_locks, test_event, other_user, make_socket
):
    event_id = test_event.id
    watcher = await make_socket(room=event_id)
    manager = AttendanceManager(broadcaster, event_locks, max_retries=3)
    session = ConflictingSession(db_session, conflicts=3)

    with pytest.raises(HTTPException) as exc_info:
        await manager.join(session, event_id, other_user.id)

    assert exc_info.value.status_code == 409
    assert watcher.sent == []
    assert await _attendee_count(session_factory, event_id) == 0


@pytest.mark.asyncio
async def test_leave_not_member(db_session, broadcaster, event_locks, test_event, other_user):
    manager = AttendanceManager(broadcaster, event_locks)
    with pytest.raises(NotMemberError):
        await manager.leave(db_session, test_event.id, other_user.id)


@pytest.mark.asyncio
async def test_join_missing_event(db_session, broadcaster, event_locks, other_user):
    manager = AttendanceManager(broadcaster, event_locks)
    with pytest.raises(EventNotFoundError):
        await manager.join(db_session, 424242, other_user.id)


@pytest.mark.asyncio
async def test_broadcast_failure_does_not_fail_join(db_session, event_locks, test_event, other_user):
    manager = AttendanceManager(ExplodingBroadcaster(), event_locks)

    detail = await manager.join(db_session, test_event.id, other_user.id)

    assert [a.username for a in detail.attendees] == ["bob"]


@pytest.mark.asyncio
async def test_lock_released_after_rejection(db_session, broadcaster, event_locks, test_event, other_user):
    manager = AttendanceManager(broadcaster, event_locks)
    with pytest.raises(NotMemberError):
        await manager.leave(db_session, test_event.id, other_user.id)

    assert not event_locks.locked(test_event.id)
    assert len(event_locks) == 0
    detail = await manager.join(db_session, test_event.id, other_user.id)
    assert detail.attendees_count == 1


@pytest.mark.asyncio
async def test_missing_events_leave_no_locks(db_session, broadcaster, event_locks, other_user):
    manager = AttendanceManager(broadcaster, event_locks)
    for event_id in range(100000, 100050):
        with pytest.raises(EventNotFoundError):
            await manager.join(db_session, event_id, other_user.id)

    assert len(event_locks) == 0


@pytest.mark.asyncio
async def test_event_locks_serialize_same_event():
    locks = EventLocks()
    order = []

    async def worker(name):
        async with locks.hold(1):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert order == ["a-in", "a-out", "b-in", "b-out"]
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_event_lock_kept_while_waiters_remain():
    locks = EventLocks()
    first_in = asyncio.Event()
    release_first = asyncio.Event()

    async def first():
        async with locks.hold(1):
            first_in.set()
            await release_first.wait()

    async def second():
        async with locks.hold(1):
            pass

    t1 = asyncio.create_task(first())
    await first_in.wait()
    t2 = asyncio.create_task(second())
    await asyncio.sleep(0)

    assert locks.locked(1)
    assert len(locks) == 1

    release_first.set()
    await asyncio.gather(t1, t2)
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_different_events_do_not_block():
    locks = EventLocks()
    async with locks.hold(1):
        async def other():
            async with locks.hold(2):
                return True

        assert await asyncio.wait_for(other(), timeout=1)
        assert len(locks) == 1
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_event_lock_dropped_on_error():
    locks = EventLocks()
    with pytest.raises(RuntimeError):
        async with locks.hold(7):
            raise RuntimeError("boom")
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_slow_subscriber_does_not_delay_join(
    db_session, broadcaster, event_locks, test_event, other_user, make_socket
):
    broadcaster.send_timeout = 0.05
    event_id = test_event.id
    stalled = await make_socket(room=event_id, delay=30)
    watcher = await make_socket(room=event_id)
    manager = AttendanceManager(broadcaster, event_locks)

    loop = asyncio.get_running_loop()
    started = loop.time()
    detail = await manager.join(db_session, event_id, other_user.id)
    elapsed = loop.time() - started

    assert detail.attendees_count == 1
    assert elapsed < 5
    assert len(watcher.of_type("attendee_changed")) == 1
    assert stalled.connection_id not in broadcaster.active_connections
