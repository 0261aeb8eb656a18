"""
Attendance service: join/leave an event's attendee set, then broadcast.

CONCURRENCY STRATEGY: Per-event Lock + Optimistic Version Check
=================================================================

Problem:
  Join is check-then-act. Two concurrent joins by the same user both read
  "not attending", both insert, and the user is listed twice.

Solution (three layers, innermost last):

  1. In-process: every join/leave for an event id runs inside that event's
     asyncio.Lock (EventLocks). Different event ids never share a lock, so
     unrelated events proceed in parallel.

  2. Cross-process: the membership change bumps the event's `version`
     with a conditional UPDATE

       UPDATE events SET version = version + 1
       WHERE id = :event_id AND version = :seen_version

     rows_affected == 0 means another worker changed the attendee set
     between our read and our write -> rollback, re-read, retry.

  3. Storage: UNIQUE (event_id, user_id) on event_attendees. An
     IntegrityError on insert is reported as AlreadyMember.

The write is committed before the lock is released and before any
AttendeeChanged message is published.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import HTTPException, status
from sqlalchemy import select, update, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from eventhub.core.config import get_settings
from eventhub.core.exceptions import AlreadyMemberError, EventNotFoundError, NotMemberError
from eventhub.core.logging import get_logger
from eventhub.core.metrics import attendance_retries, record_attendance
from eventhub.models.attendee import EventAttendee
from eventhub.models.event import Event
from eventhub.schemas.attendance import AttendeeChanged
from eventhub.schemas.event import EventDetail
from eventhub.services.event_service import get_event_detail
from eventhub.services.realtime import ConnectionManager, notify

logger = get_logger(__name__)

JOIN = "join"
LEAVE = "leave"

ATTENDEE_CHANGED = "attendee_changed"


class EventLocks:
    """
    asyncio.Lock per event id, kept only while a request holds or waits on it.

    The entry is dropped when its last holder releases, so ids that never
    resolve to an event (404s) leave nothing behind.
    """

    def __init__(self):
        self._locks: dict[int, asyncio.Lock] = {}
        self._holders: dict[int, int] = {}

    @asynccontextmanager
    async def hold(self, event_id: int) -> AsyncIterator[None]:
        lock = self._locks.get(event_id)
        if lock is None:
            lock = self._locks[event_id] = asyncio.Lock()
        self._holders[event_id] = self._holders.get(event_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[event_id] -= 1
            if not self._holders[event_id]:
                del self._holders[event_id]
                del self._locks[event_id]

    def locked(self, event_id: int) -> bool:
        lock = self._locks.get(event_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


class AttendanceManager:
    """
    Applies join/leave to an event's attendee set.

    Constructed per request from the shared EventLocks and the injected
    broadcaster.
    """

    def __init__(self, broadcaster: ConnectionManager, locks: EventLocks, max_retries: Optional[int] = None):
        self.broadcaster = broadcaster
        self.locks = locks
        self.max_retries = max_retries or get_settings().ATTENDANCE_MAX_RETRIES

    async def join(self, db: AsyncSession, event_id: int, user_id: int) -> EventDetail:
        """Add `user_id` to the event's attendees. Raises AlreadyMemberError if present."""
        async with self.locks.hold(event_id):
            detail = await self._apply(db, JOIN, event_id, user_id)
        await self._notify(detail)
        return detail

    async def leave(self, db: AsyncSession, event_id: int, user_id: int) -> EventDetail:
        """Remove `user_id` from the event's attendees. Raises NotMemberError if absent."""
        async with self.locks.hold(event_id):
            detail = await self._apply(db, LEAVE, event_id, user_id)
        await self._notify(detail)
        return detail

    async def _apply(self, db: AsyncSession, action: str, event_id: int, user_id: int) -> EventDetail:
        for attempt in range(1, self.max_retries + 1):
            # Step 1: Read current version and membership
            seen_version = (
                await db.execute(select(Event.version).where(Event.id == event_id))
            ).scalar_one_or_none()
            if seen_version is None:
                record_attendance(action, "not_found")
                raise EventNotFoundError(event_id)

            is_member = (
                await db.execute(
                    select(EventAttendee.id).where(
                        EventAttendee.event_id == event_id,
                        EventAttendee.user_id == user_id,
                    )
                )
            ).first() is not None

            if action == JOIN and is_member:
                record_attendance(action, "already_member")
                logger.info("attendee_join_rejected", event_id=event_id, user_id=user_id)
                raise AlreadyMemberError()
            if action == LEAVE and not is_member:
                record_attendance(action, "not_member")
                logger.info("attendee_leave_rejected", event_id=event_id, user_id=user_id)
                raise NotMemberError()

            # Step 2: Optimistic lock - claim the next version
            claimed = await db.execute(
                update(Event)
                .where(Event.id == event_id, Event.version == seen_version)
                .values(version=Event.version + 1)
            )
            if claimed.rowcount == 0:
                logger.info(
                    "attendance_retry",
                    event_id=event_id,
                    action=action,
                    attempt=attempt,
                    reason="version_conflict",
                )
                attendance_retries.inc()
                await db.rollback()
                if attempt == self.max_retries:
                    record_attendance(action, "conflict")
                    raise HTTPException(
                        status_code=status.HTTP_409_CONFLICT,
                        detail="Attendance update failed due to concurrent changes. Please try again.",
                    )
                continue

            # Step 3: Mutate the attendee set and commit
            if action == JOIN:
                db.add(EventAttendee(event_id=event_id, user_id=user_id))
                try:
                    await db.flush()
                except IntegrityError:
                    await db.rollback()
                    record_attendance(action, "already_member")
                    raise AlreadyMemberError() from None
            else:
                await db.execute(
                    delete(EventAttendee).where(
                        EventAttendee.event_id == event_id,
                        EventAttendee.user_id == user_id,
                    )
                )
            await db.commit()

            record_attendance(action, "success")
            logger.info(
                "attendee_joined" if action == JOIN else "attendee_left",
                event_id=event_id,
                user_id=user_id,
                attempt=attempt,
            )
            return await get_event_detail(db, event_id)

        # Unreachable: the last attempt either returns or raises
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Attendance update failed unexpectedly",
        )

    async def _notify(self, detail: EventDetail) -> None:
        payload = AttendeeChanged(
            event_id=detail.id,
            attendees=detail.attendees,
            attendees_count=detail.attendees_count,
        )
        await notify(self.broadcaster, ATTENDEE_CHANGED, payload.model_dump(mode="json"), room=detail.id)
