from eventhub.schemas.user import UserCreate, UserResponse, UserLogin, UserPublic, Token, MessageResponse
from eventhub.schemas.event import EventCreate, EventUpdate, EventSummary, EventDetail, EventListResponse
from eventhub.schemas.attendance import AttendeeChanged, AttendanceResponse

__all__ = [
    "UserCreate", "UserResponse", "UserLogin", "UserPublic", "Token", "MessageResponse",
    "EventCreate", "EventUpdate", "EventSummary", "EventDetail", "EventListResponse",
    "AttendeeChanged", "AttendanceResponse",
]
