"""
Schemas for join/leave responses and the realtime attendee payload.
"""

from pydantic import BaseModel

from eventhub.schemas.event import EventDetail
from eventhub.schemas.user import UserPublic


class AttendeeChanged(BaseModel):
    event_id: int
    attendees: list[UserPublic]
    attendees_count: int


class AttendanceResponse(BaseModel):
    message: str
    event: EventDetail
