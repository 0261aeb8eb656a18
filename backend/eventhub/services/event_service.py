"""
Event service handling CRUD operations and response assembly.
"""

from datetime import datetime, timezone
from fastapi import HTTPException, status
from sqlalchemy import select, func, delete
from sqlalchemy.ext.asyncio import AsyncSession

from eventhub.models.attendee import EventAttendee
from eventhub.models.event import Event
from eventhub.models.user import User
from eventhub.schemas.event import EventCreate, EventUpdate, EventDetail, EventSummary
from eventhub.schemas.user import UserPublic
from eventhub.core.exceptions import (
    EventNotFoundError,
    GuestForbiddenError,
    NotEventCreatorError,
)
from eventhub.core.logging import get_logger

logger = get_logger(__name__)


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are taken to be UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _require_future(value: datetime) -> None:
    if _as_utc(value) <= datetime.now(timezone.utc):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Event date must be in the future",
        )


async def _load_event(db: AsyncSession, event_id: int) -> Event:
    result = await db.execute(
        select(Event).where(Event.id == event_id).execution_options(populate_existing=True)
    )
    event = result.scalar_one_or_none()
    if not event:
        raise EventNotFoundError(event_id)
    return event


async def build_event_details(db: AsyncSession, events: list[Event]) -> list[EventDetail]:
    """
    Assemble creator and ordered attendee lists for a batch of events.
    Two queries regardless of batch size.
    """
    if not events:
        return []

    event_ids = [e.id for e in events]
    creator_ids = {e.creator_id for e in events}

    creators_result = await db.execute(select(User).where(User.id.in_(creator_ids)))
    creators = {u.id: UserPublic.model_validate(u) for u in creators_result.scalars().all()}

    attendees_result = await db.execute(
        select(EventAttendee.event_id, User)
        .join(User, User.id == EventAttendee.user_id)
        .where(EventAttendee.event_id.in_(event_ids))
        .order_by(EventAttendee.id.asc())
    )
    attendees: dict[int, list[UserPublic]] = {event_id: [] for event_id in event_ids}
    for event_id, user in attendees_result.all():
        attendees[event_id].append(UserPublic.model_validate(user))

    return [
        EventDetail(
            id=e.id,
            name=e.name,
            description=e.description,
            date=e.date,
            location=e.location,
            creator=creators[e.creator_id],
            attendees=attendees[e.id],
            attendees_count=len(attendees[e.id]),
            created_at=e.created_at,
            updated_at=e.updated_at,
        )
        for e in events
    ]


async def get_event_detail(db: AsyncSession, event_id: int) -> EventDetail:
    """Get a single event with creator and attendees."""
    event = await _load_event(db, event_id)
    return (await build_event_details(db, [event]))[0]


async def create_event(db: AsyncSession, event_data: EventCreate, creator_id: int) -> EventDetail:
    """
    Create a new event owned by `creator_id`.
    Guests may not create events; a creator may not reuse a name at the same date.
    """
    creator = (await db.execute(select(User).where(User.id == creator_id))).scalar_one_or_none()
    if creator is None or not creator.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Inactive or missing user",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if creator.is_guest:
        logger.warning("event_create_rejected", reason="guest", user_id=creator_id)
        raise GuestForbiddenError()

    _require_future(event_data.date)

    existing = await db.execute(
        select(Event.id).where(
            Event.creator_id == creator_id,
            Event.name == event_data.name,
            Event.date == event_data.date,
        )
    )
    if existing.first() is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You already have an event with this name at the same date & time",
        )

    event = Event(
        name=event_data.name,
        description=event_data.description,
        date=event_data.date,
        location=event_data.location,
        creator_id=creator_id,
    )
    db.add(event)
    await db.commit()
    await db.refresh(event)

    logger.info("event_created", event_id=event.id, name=event.name, creator_id=creator_id)
    return (await build_event_details(db, [event]))[0]


async def list_events(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[EventSummary], int]:
    """
    List events ordered by date, each with creator username and attendee count.
    Uses the ix_events_date index for ordering.
    """
    total = (await db.execute(select(func.count(Event.id)))).scalar() or 0

    counts = (
        select(EventAttendee.event_id, func.count(EventAttendee.id).label("attendees_count"))
        .group_by(EventAttendee.event_id)
        .subquery()
    )
    result = await db.execute(
        select(Event, User.username, func.coalesce(counts.c.attendees_count, 0))
        .join(User, User.id == Event.creator_id)
        .outerjoin(counts, counts.c.event_id == Event.id)
        .order_by(Event.date.asc(), Event.id.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    summaries = [
        EventSummary(
            id=event.id,
            name=event.name,
            description=event.description,
            date=event.date,
            location=event.location,
            creator=username,
            attendees_count=count,
        )
        for event, username, count in result.all()
    ]
    return summaries, total


async def list_created_events(db: AsyncSession, user_id: int) -> list[EventDetail]:
    """Events created by `user_id`, with their attendees."""
    result = await db.execute(
        select(Event).where(Event.creator_id == user_id).order_by(Event.date.asc())
    )
    return await build_event_details(db, list(result.scalars().all()))


async def list_registered_events(db: AsyncSession, user_id: int) -> list[EventDetail]:
    """Events `user_id` is attending."""
    result = await db.execute(
        select(Event)
        .join(EventAttendee, EventAttendee.event_id == Event.id)
        .where(EventAttendee.user_id == user_id)
        .order_by(Event.date.asc())
    )
    return await build_event_details(db, list(result.scalars().all()))


async def update_event(
    db: AsyncSession,
    event_id: int,
    event_data: EventUpdate,
    user_id: int,
) -> EventDetail:
    """Apply a partial update. Only the creator may edit."""
    event = await _load_event(db, event_id)
    if event.creator_id != user_id:
        logger.warning("event_update_rejected", event_id=event_id, user_id=user_id)
        raise NotEventCreatorError()

    changes = event_data.model_dump(exclude_unset=True, exclude_none=True)
    if "date" in changes:
        _require_future(changes["date"])

    for field, value in changes.items():
        setattr(event, field, value)

    await db.commit()
    await db.refresh(event)

    logger.info("event_updated", event_id=event_id, fields=sorted(changes))
    return (await build_event_details(db, [event]))[0]


async def delete_event(db: AsyncSession, event_id: int, user_id: int) -> None:
    """Delete an event and its attendee rows. Only the creator may delete."""
    event = await _load_event(db, event_id)
    if event.creator_id != user_id:
        logger.warning("event_delete_rejected", event_id=event_id, user_id=user_id)
        raise NotEventCreatorError()

    await db.execute(delete(EventAttendee).where(EventAttendee.event_id == event_id))
    await db.delete(event)
    await db.commit()

    logger.info("event_deleted", event_id=event_id, user_id=user_id)
