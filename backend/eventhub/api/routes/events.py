"""
Event endpoints with Redis caching on the public listing.

Every mutation commits, invalidates the listing cache, then broadcasts.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from eventhub.api.deps import get_broadcaster
from eventhub.db.session import get_db
from eventhub.schemas.event import EventCreate, EventUpdate, EventDetail, EventListResponse
from eventhub.schemas.user import MessageResponse
from eventhub.services.event_service import (
    create_event,
    delete_event,
    get_event_detail,
    list_created_events,
    list_events,
    list_registered_events,
    update_event,
)
from eventhub.services.cache_service import get_cached_events, set_cached_events, invalidate_event_cache
from eventhub.services.realtime import ConnectionManager, notify
from eventhub.core.security import get_current_user_id
from eventhub.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/events", tags=["Events"])

EVENT_CREATED = "event_created"
EVENT_UPDATED = "event_updated"
EVENT_DELETED = "event_deleted"


@router.post("", response_model=EventDetail, status_code=status.HTTP_201_CREATED)
async def create_event_endpoint(
    event_data: EventCreate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    broadcaster: ConnectionManager = Depends(get_broadcaster),
):
    """Create a new event. Requires a non-guest account."""
    event = await create_event(db, event_data, user_id)
    await invalidate_event_cache()
    await notify(broadcaster, EVENT_CREATED, event.model_dump(mode="json"))
    return event


@router.get("", response_model=EventListResponse)
async def list_events_endpoint(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """
    List events with creator username and attendee count.
    Results are cached in Redis; any event or attendance change invalidates the cache.
    """
    cached = await get_cached_events(page, page_size)
    if cached:
        logger.info("events_list_cache_hit", page=page)
        cached["cached"] = True
        return EventListResponse(**cached)

    events, total = await list_events(db, page, page_size)

    response_data = {
        "events": [e.model_dump(mode="json") for e in events],
        "total": total,
        "page": page,
        "page_size": page_size,
        "cached": False,
    }

    await set_cached_events(page, page_size, response_data)

    return EventListResponse(**response_data)


@router.get("/mine", response_model=list[EventDetail])
async def list_my_events_endpoint(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Events created by the caller."""
    return await list_created_events(db, user_id)


@router.get("/registrations", response_model=list[EventDetail])
async def list_my_registrations_endpoint(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Events the caller is attending."""
    return await list_registered_events(db, user_id)


@router.get("/{event_id}", response_model=EventDetail)
async def get_event_endpoint(
    event_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get a single event with its live attendee list. Not cached."""
    return await get_event_detail(db, event_id)


@router.put("/{event_id}", response_model=EventDetail)
async def update_event_endpoint(
    event_id: int,
    event_data: EventUpdate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    broadcaster: ConnectionManager = Depends(get_broadcaster),
):
    """Edit name/description/date/location. Creator only."""
    event = await update_event(db, event_id, event_data, user_id)
    await invalidate_event_cache()
    await notify(broadcaster, EVENT_UPDATED, event.model_dump(mode="json"))
    return event


@router.delete("/{event_id}", response_model=MessageResponse)
async def delete_event_endpoint(
    event_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    broadcaster: ConnectionManager = Depends(get_broadcaster),
):
    """Delete an event and its attendee list. Creator only."""
    await delete_event(db, event_id, user_id)
    await invalidate_event_cache()
    await notify(broadcaster, EVENT_DELETED, {"event_id": event_id})
    return MessageResponse(message="Event deleted successfully")
