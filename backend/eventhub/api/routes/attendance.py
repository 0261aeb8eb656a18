"""
Join/leave endpoints for an event's attendee list.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from eventhub.api.deps import get_attendance_manager
from eventhub.db.session import get_db
from eventhub.schemas.attendance import AttendanceResponse
from eventhub.services.attendance_service import AttendanceManager
from eventhub.services.cache_service import invalidate_event_cache
from eventhub.core.security import get_current_user_id

router = APIRouter(prefix="/events", tags=["Attendance"])


@router.post("/{event_id}/attend", response_model=AttendanceResponse)
async def join_event(
    event_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    attendance: AttendanceManager = Depends(get_attendance_manager),
):
    """
    Join an event as an attendee.

    400 if already attending, 404 if the event does not exist.
    Room subscribers of the event receive an `attendee_changed` message.
    """
    event = await attendance.join(db, event_id, user_id)
    await invalidate_event_cache()
    return AttendanceResponse(message="You have joined the event!", event=event)


@router.delete("/{event_id}/attend", response_model=AttendanceResponse)
async def leave_event(
    event_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    attendance: AttendanceManager = Depends(get_attendance_manager),
):
    """Leave an event. 400 if not attending, 404 if the event does not exist."""
    event = await attendance.leave(db, event_id, user_id)
    await invalidate_event_cache()
    return AttendanceResponse(message="You have left the event!", event=event)
