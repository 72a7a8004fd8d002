"""Time-windowed event fetch for a single calendar."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from dateutil.relativedelta import relativedelta

from calendar_mirror.config import get_settings
from calendar_mirror.sync.google_calendar import GoogleCalendarClient
from calendar_mirror.sync.models import Credential

logger = logging.getLogger(__name__)


def shift_months(moment: datetime, months: int) -> datetime:
    """Move a datetime by whole calendar months, clamping the day to the target month."""
    return moment + relativedelta(months=months)


def sync_window(now: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """
    Fetch window for a sync run: [now - past months, now + future months].

    Recomputed on every run; there is no delta cursor.
    """
    settings = get_settings()
    now = now or datetime.now(timezone.utc)
    return (
        shift_months(now, -settings.sync_window_past_months),
        shift_months(now, settings.sync_window_future_months),
    )


async def fetch_events(
    credential: Credential,
    calendar_id: str,
    window_start: datetime,
    window_end: datetime,
    max_results: Optional[int] = None,
) -> list[dict]:
    """Fetch raw provider events of one calendar, single page capped at max_results."""
    if max_results is None:
        max_results = get_settings().sync_max_results

    client = GoogleCalendarClient(credential.access_token)
    events = await asyncio.to_thread(
        client.list_events, calendar_id, window_start, window_end, max_results
    )
    logger.info(f"Fetched {len(events)} events from calendar {calendar_id}")
    return events
