"""
Pydantic schemas for event-related request/response validation.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from eventhub.schemas.user import UserPublic


class EventCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1, max_length=2000)
    date: datetime
    location: str = Field(..., min_length=1, max_length=255)


class EventUpdate(BaseModel):
    """Partial update; omitted fields keep their current value."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, min_length=1, max_length=2000)
    date: Optional[datetime] = None
    location: Optional[str] = Field(None, min_length=1, max_length=255)


class EventSummary(BaseModel):
    id: int
    name: str
    description: str
    date: datetime
    location: str
    creator: str
    attendees_count: int


class EventDetail(BaseModel):
    id: int
    name: str
    description: str
    date: datetime
    location: str
    creator: UserPublic
    attendees: list[UserPublic]
    attendees_count: int
    created_at: datetime
    updated_at: datetime


class EventListResponse(BaseModel):
    events: list[EventSummary]
    total: int
    page: int
    page_size: int
    cached: bool = False
