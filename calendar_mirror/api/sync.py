"""Sync control and status API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from calendar_mirror.auth.session import User, get_current_user
from calendar_mirror.database import list_sync_log
from calendar_mirror.limits import limiter, sync_rate_limit
from calendar_mirror.sync.errors import AuthExpired, CalendarListError, CredentialNotFound
from calendar_mirror.sync.events import count_events
from calendar_mirror.sync.orchestrator import request_sync, run_sync
from calendar_mirror.sync.tokens import get_credential

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["sync"])


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CalendarResultResponse(CamelModel):
    """Outcome of one calendar in a sync run."""
    calendar_id: str
    calendar_name: str
    event_count: int
    success: bool
    error: Optional[str] = None


class SyncResponse(CamelModel):
    """Result of a full sync."""
    success: bool
    message: str
    total_events: int
    calendars_count: int
    per_calendar_results: list[CalendarResultResponse]
    started_at: str
    completed_at: Optional[str] = None


class SyncStatusResponse(CamelModel):
    """Calendar connection and mirror state for a user."""
    connected: bool
    is_valid: bool = False
    last_sync_at: Optional[str] = None
    local_events: int = 0
    remote_events: int = 0


class SyncLogEntry(BaseModel):
    """Sync log entry."""
    id: int
    calendar_id: Optional[str] = None
    action: str
    status: str
    details: Optional[str] = None
    created_at: str


class SyncLogResponse(BaseModel):
    """Sync log response."""
    entries: list[SyncLogEntry]
    total: int
    page: int
    page_size: int


@router.post("", response_model=SyncResponse)
@limiter.limit(sync_rate_limit)
async def sync_now(request: Request, user: User = Depends(get_current_user)):
    """Run a full sync of every calendar and report per-calendar outcomes."""
    try:
        run = await run_sync(user.id)
    except CredentialNotFound:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Google Calendar not connected"
        )
    except AuthExpired:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Google Calendar authorization expired, please reconnect"
        )
    except CalendarListError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Could not list calendars: {e}"
        )

    message = f"Synced {run.total_synced} events from {run.calendars_count} calendars"
    if run.failed_calendars:
        message += f" ({len(run.failed_calendars)} failed)"

    return SyncResponse(
        success=True,
        message=message,
        total_events=run.total_synced,
        calendars_count=run.calendars_count,
        per_calendar_results=[
            CalendarResultResponse(**result.model_dump())
            for result in run.per_calendar_results
        ],
        started_at=run.started_at.isoformat(),
        completed_at=run.completed_at.isoformat() if run.completed_at else None,
    )


@router.post("/request", status_code=status.HTTP_202_ACCEPTED)
async def sync_request(user: User = Depends(get_current_user)):
    """Schedule a debounced sync; bursts of requests collapse into one run."""
    if await get_credential(user.id) is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Google Calendar not connected"
        )

    request_sync(user.id)
    return {"status": "accepted", "message": "Sync scheduled"}


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(user: User = Depends(get_current_user)):
    """Get the calendar connection state for current user."""
    credential = await get_credential(user.id)
    counts = await count_events(user.id)

    if credential is None:
        return SyncStatusResponse(
            connected=False,
            local_events=counts["local"],
            remote_events=counts["remote"],
        )

    return SyncStatusResponse(
        connected=True,
        is_valid=credential.is_valid,
        last_sync_at=credential.last_sync_at.isoformat() if credential.last_sync_at else None,
        local_events=counts["local"],
        remote_events=counts["remote"],
    )


@router.get("/log", response_model=SyncLogResponse)
async def sync_log(
    user: User = Depends(get_current_user),
    page: int = 1,
    page_size: int = 50,
    status_filter: Optional[str] = None,
):
    """Get sync activity log for current user."""
    page = max(page, 1)
    page_size = min(max(page_size, 1), 200)

    rows, total = await list_sync_log(
        user.id,
        limit=page_size,
        offset=(page - 1) * page_size,
        status=status_filter,
    )

    return SyncLogResponse(
        entries=[SyncLogEntry(**row) for row in rows],
        total=total,
        page=page,
        page_size=page_size,
    )
