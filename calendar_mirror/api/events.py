"""Event API endpoints: the merged mirror view and local CRUD."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from calendar_mirror.auth.session import User, get_current_user
from calendar_mirror.sync.errors import NotFoundError, ValidationError
from calendar_mirror.sync.events import (
    create_local_event,
    delete_local_event,
    get_event,
    list_events,
    list_upcoming_events,
    update_local_event,
)
from calendar_mirror.sync.propagation import on_create, on_delete, on_update

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/events", tags=["events"])


class EventCreateRequest(BaseModel):
    """New local event."""
    title: str
    start_time: str
    end_time: Optional[str] = None
    all_day: bool = False
    description: Optional[str] = None
    location: Optional[str] = None
    attendees: Optional[str] = None
    status: Optional[str] = None
    flag: Optional[str] = None
    color: Optional[str] = None
    calendar_id: Optional[str] = None


class EventUpdateRequest(BaseModel):
    """Partial event update; omitted fields are kept."""
    title: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    all_day: Optional[bool] = None
    description: Optional[str] = None
    location: Optional[str] = None
    attendees: Optional[str] = None
    status: Optional[str] = None
    flag: Optional[str] = None
    color: Optional[str] = None


class EventResponse(BaseModel):
    """Event as returned to clients."""
    id: int
    external_id: Optional[str] = None
    external_calendar_id: Optional[str] = None
    title: str
    description: str = ""
    start_time: str
    end_time: str
    all_day: bool = False
    location: str = ""
    attendees: str = ""
    status: str = "confirmed"
    source: str
    flag: Optional[str] = None
    color: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


def _event_response(event) -> EventResponse:
    data = event.model_dump(exclude={"local_id", "user_id"})
    return EventResponse(id=event.local_id, **data)


def _not_found(e: NotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


def _invalid(e: ValidationError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


@router.get("")
async def get_events(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    user: User = Depends(get_current_user),
):
    """Merged local and remote events, de-duplicated and sorted by start."""
    events = await list_events(user.id, start=start, end=end)
    return {
        "events": [_event_response(e) for e in events],
        "count": len(events),
    }


@router.get("/upcoming")
async def get_upcoming_events(
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(get_current_user),
):
    """Next events starting from now."""
    events = await list_upcoming_events(user.id, limit=limit)
    return {"events": [_event_response(e) for e in events]}


@router.get("/{event_id}", response_model=EventResponse)
async def get_single_event(event_id: int, user: User = Depends(get_current_user)):
    """Get one event."""
    try:
        event = await get_event(user.id, event_id)
    except NotFoundError as e:
        raise _not_found(e)
    return _event_response(event)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_event(request: EventCreateRequest, user: User = Depends(get_current_user)):
    """
    Create a local event and push it to Google Calendar.

    The event is committed locally even when the push fails; the outcome of
    the push is reported in `remote_sync`.
    """
    try:
        event = await create_local_event(user.id, request.model_dump())
    except ValidationError as e:
        raise _invalid(e)

    remote = await on_create(event, calendar_id=request.calendar_id)
    if remote.status == "synced":
        event = event.model_copy(update={
            "external_id": remote.external_id,
            "external_calendar_id": remote.external_calendar_id,
        })

    return {
        "event": _event_response(event),
        "remote_sync": remote,
    }


@router.put("/{event_id}")
async def update_event(
    event_id: int,
    request: EventUpdateRequest,
    user: User = Depends(get_current_user),
):
    """Update an event locally and patch its Google copy if it has one."""
    try:
        event = await update_local_event(user.id, event_id, request.model_dump(exclude_unset=True))
    except NotFoundError as e:
        raise _not_found(e)
    except ValidationError as e:
        raise _invalid(e)

    remote = await on_update(event)
    return {
        "event": _event_response(event),
        "remote_sync": remote,
    }


@router.delete("/{event_id}")
async def delete_event(event_id: int, user: User = Depends(get_current_user)):
    """Delete an event locally and remove its Google copy if it has one."""
    try:
        event = await delete_local_event(user.id, event_id)
    except NotFoundError as e:
        raise _not_found(e)

    remote = await on_delete(event)
    return {
        "success": True,
        "event": _event_response(event),
        "remote_sync": remote,
    }
