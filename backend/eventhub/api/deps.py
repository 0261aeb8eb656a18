"""
Request-scoped dependencies for the realtime broadcaster and attendance manager.

Both the broadcaster and the per-event locks are created once on `app.state`
and handed to handlers through these functions, so tests can override them.
"""

from fastapi import Depends
from starlette.requests import HTTPConnection

from eventhub.services.attendance_service import AttendanceManager, EventLocks
from eventhub.services.realtime import ConnectionManager


def get_broadcaster(connection: HTTPConnection) -> ConnectionManager:
    return connection.app.state.broadcaster


def get_event_locks(connection: HTTPConnection) -> EventLocks:
    return connection.app.state.event_locks


def get_attendance_manager(
    broadcaster: ConnectionManager = Depends(get_broadcaster),
    locks: EventLocks = Depends(get_event_locks),
) -> AttendanceManager:
    return AttendanceManager(broadcaster, locks)
