from eventhub.models.user import User
from eventhub.models.event import Event
from eventhub.models.attendee import EventAttendee

__all__ = ["User", "Event", "EventAttendee"]
