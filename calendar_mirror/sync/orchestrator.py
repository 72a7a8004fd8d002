"""Full sync runs: refresh, enumerate, then fetch and reconcile every calendar."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Optional

from calendar_mirror.config import get_settings
from calendar_mirror.database import write_sync_log
from calendar_mirror.sync.calendars import list_calendars, store_calendar_metadata
from calendar_mirror.sync.errors import (
    AuthExpired,
    CalendarListError,
    CredentialNotFound,
    PerCalendarSyncError,
    SyncError,
)
from calendar_mirror.sync.fetcher import fetch_events, sync_window
from calendar_mirror.sync.models import CalendarSyncResult, Credential, RemoteCalendar, SyncRun
from calendar_mirror.sync.normalizer import normalize_batch
from calendar_mirror.sync.reconcile import replace_calendar_events
from calendar_mirror.sync.tokens import CALENDAR_SERVICE, ensure_fresh, get_credential, touch_last_sync
from calendar_mirror.utils.tasks import create_background_task

logger = logging.getLogger(__name__)

# One run per user at a time; later callers join the running one.
_inflight_runs: dict[str, asyncio.Task] = {}
# Debounced sync requests waiting for their window to close.
_pending_requests: dict[str, asyncio.Task] = {}


def _forget_run(user_id: str, task: asyncio.Task) -> None:
    if _inflight_runs.get(user_id) is task:
        del _inflight_runs[user_id]


async def run_sync(user_id: str) -> SyncRun:
    """
    Run a full sync for a user, or join the one already running.

    The run is shielded: a caller that goes away does not cancel it for
    the others. Raises CredentialNotFound, AuthExpired or CalendarListError
    when the run cannot proceed; per-calendar failures are reported in the
    returned SyncRun.
    """
    task = _inflight_runs.get(user_id)
    if task is None or task.done():
        task = asyncio.create_task(_run_sync(user_id), name=f"sync:{user_id}")
        _inflight_runs[user_id] = task
        task.add_done_callback(lambda t: _forget_run(user_id, t))
    else:
        logger.info(f"Sync already in progress for user {user_id}, joining it")

    return await asyncio.shield(task)


async def _run_sync(user_id: str) -> SyncRun:
    settings = get_settings()
    started_at = datetime.now(timezone.utc)

    credential = await get_credential(user_id)
    if credential is None:
        raise CredentialNotFound(user_id, CALENDAR_SERVICE)

    try:
        credential = await ensure_fresh(credential)
        calendars = await list_calendars(credential)
    except (AuthExpired, CalendarListError) as e:
        await write_sync_log(user_id, "sync_run", "failed", str(e))
        raise

    logger.info(f"Syncing {len(calendars)} calendars for user {user_id}")

    try:
        await store_calendar_metadata(user_id, calendars)
    except Exception as e:
        logger.error(f"Failed to store calendar metadata for user {user_id}: {e}")

    window_start, window_end = sync_window(started_at)
    semaphore = asyncio.Semaphore(settings.sync_max_concurrency)

    async def _bounded(calendar: RemoteCalendar) -> CalendarSyncResult:
        async with semaphore:
            return await sync_calendar(credential, calendar, window_start, window_end)

    results = await asyncio.gather(*(_bounded(calendar) for calendar in calendars))

    run = SyncRun(
        user_id=user_id,
        started_at=started_at,
        per_calendar_results=list(results),
        total_synced=sum(r.event_count for r in results if r.success),
        completed_at=datetime.now(timezone.utc),
    )

    for result in results:
        await write_sync_log(
            user_id,
            "sync_calendar",
            "success" if result.success else "failed",
            json.dumps({
                "calendar_name": result.calendar_name,
                "event_count": result.event_count,
                "error": result.error,
            }),
            calendar_id=result.calendar_id,
        )
    await touch_last_sync(user_id, when=run.completed_at)

    logger.info(
        f"Sync completed for user {user_id}: {run.total_synced} events from "
        f"{run.calendars_count} calendars, {len(run.failed_calendars)} failed"
    )
    return run


async def sync_calendar(
    credential: Credential,
    calendar: RemoteCalendar,
    window_start: datetime,
    window_end: datetime,
) -> CalendarSyncResult:
    """Fetch, normalize and reconcile one calendar. Failures are returned, never raised."""
    user_id = credential.user_id
    try:
        raw_events = await fetch_events(credential, calendar.external_id, window_start, window_end)
        events = normalize_batch(raw_events, calendar, user_id)
        outcome = await replace_calendar_events(user_id, calendar.external_id, events)
        if outcome.error:
            raise PerCalendarSyncError(calendar.external_id, outcome.error)
    except Exception as e:
        error = e if isinstance(e, PerCalendarSyncError) else PerCalendarSyncError(calendar.external_id, str(e))
        logger.error(f"Error syncing calendar {calendar.external_id} for user {user_id}: {error}")
        return CalendarSyncResult(
            calendar_id=calendar.external_id,
            calendar_name=calendar.display_name,
            success=False,
            error=str(error),
        )

    return CalendarSyncResult(
        calendar_id=calendar.external_id,
        calendar_name=calendar.display_name,
        event_count=outcome.inserted,
        success=True,
    )


def request_sync(user_id: str, delay: Optional[float] = None) -> asyncio.Task:
    """
    Ask for a sync after a quiet period.

    Requests arriving inside the window restart it, so a burst of requests
    results in a single run.
    """
    if delay is None:
        delay = get_settings().sync_debounce_ms / 1000

    pending = _pending_requests.get(user_id)
    if pending is not None and not pending.done():
        pending.cancel()

    task = create_background_task(_debounced_sync(user_id, delay), f"debounced_sync:{user_id}")
    _pending_requests[user_id] = task
    return task


async def _debounced_sync(user_id: str, delay: float) -> None:
    await asyncio.sleep(delay)
    _pending_requests.pop(user_id, None)

    try:
        await run_sync(user_id)
    except SyncError as e:
        logger.warning(f"Requested sync for user {user_id} failed: {e}")


def reset_orchestrator() -> None:
    """Cancel pending requests and forget running syncs."""
    for task in _pending_requests.values():
        task.cancel()
    _pending_requests.clear()
    _inflight_runs.clear()
