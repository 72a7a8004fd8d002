"""Conversion between provider events and the canonical event shape."""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from calendar_mirror.config import get_settings
from calendar_mirror.sync.models import CanonicalEvent, RemoteCalendar

logger = logging.getLogger(__name__)

UNTITLED_EVENT = "Untitled Event"
DEFAULT_STATUS = "confirmed"

# All-day events span the whole covered days, end of day inclusive.
DAY_START = "T00:00:00"
DAY_END = "T23:59:59"


def parse_instant(value: str) -> datetime:
    """Parse a stored start/end value; naive values are read as UTC."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def all_day_bounds(first_day: date, last_day: date) -> tuple[str, str]:
    """Canonical start/end strings for an all-day span of inclusive days."""
    if last_day < first_day:
        last_day = first_day
    return first_day.isoformat() + DAY_START, last_day.isoformat() + DAY_END


def attendees_csv(attendees: Optional[list[dict]]) -> str:
    """Collapse provider attendees to their addresses; response status and role are dropped."""
    if not attendees:
        return ""
    return ", ".join(a["email"] for a in attendees if a.get("email"))


def _event_bounds(raw_event: dict) -> tuple[str, str, bool]:
    start = raw_event.get("start") or {}
    end = raw_event.get("end") or {}

    if start.get("date") and not start.get("dateTime"):
        first_day = date.fromisoformat(start["date"])
        # Provider end dates are exclusive
        last_day = first_day
        if end.get("date"):
            last_day = date.fromisoformat(end["date"]) - timedelta(days=1)
        start_time, end_time = all_day_bounds(first_day, last_day)
        return start_time, end_time, True

    if start.get("dateTime"):
        start_time = start["dateTime"]
        return start_time, end.get("dateTime") or start_time, False

    logger.warning(f"Event {raw_event.get('id')} has no start, using current time")
    now = datetime.now(timezone.utc).isoformat()
    return now, now, False


def normalize(raw_event: dict, calendar: RemoteCalendar, user_id: str) -> CanonicalEvent:
    """Convert a raw provider event from `calendar` into a remote-origin canonical event."""
    start_time, end_time, all_day = _event_bounds(raw_event)

    return CanonicalEvent(
        user_id=user_id,
        external_id=raw_event["id"],
        external_calendar_id=calendar.external_id,
        title=raw_event.get("summary") or UNTITLED_EVENT,
        description=raw_event.get("description") or "",
        start_time=start_time,
        end_time=end_time,
        all_day=all_day,
        location=raw_event.get("location") or "",
        attendees=attendees_csv(raw_event.get("attendees")),
        status=raw_event.get("status") or DEFAULT_STATUS,
        source="remote",
        flag=calendar.display_name,
        color=calendar.color_hex,
        created_at=raw_event.get("created"),
        updated_at=raw_event.get("updated"),
    )


def normalize_batch(raw_events: list[dict], calendar: RemoteCalendar, user_id: str) -> list[CanonicalEvent]:
    return [normalize(raw_event, calendar, user_id) for raw_event in raw_events]


def canonical_bounds(start: str, end: Optional[str], all_day: bool) -> tuple[str, str]:
    """
    Canonicalize user-supplied start/end values.

    All-day input takes the date part of each value (the end day is
    inclusive); timed input keeps the values and defaults end to start.
    Raises ValueError for unparseable values or an end before the start.
    """
    end = end or start

    if all_day:
        return all_day_bounds(
            date.fromisoformat(start[:10]),
            date.fromisoformat(end[:10]),
        )

    if parse_instant(end) < parse_instant(start):
        raise ValueError("end_time is before start_time")
    return start, end


def to_remote_event(event: CanonicalEvent) -> dict:
    """Provider representation of a canonical event, for insert and patch calls."""
    settings = get_settings()

    body = {
        "summary": event.title,
        "description": event.description or "",
        "location": event.location or "",
        "attendees": [
            {"email": email.strip()}
            for email in event.attendees.split(",")
            if email.strip()
        ],
        "reminders": {
            "useDefault": False,
            "overrides": [{"method": "popup", "minutes": settings.default_reminder_minutes}],
        },
    }

    if event.all_day:
        first_day = date.fromisoformat(event.start_time[:10])
        last_day = date.fromisoformat(event.end_time[:10])
        body["start"] = {"date": first_day.isoformat()}
        body["end"] = {"date": (max(first_day, last_day) + timedelta(days=1)).isoformat()}
    else:
        body["start"] = {"dateTime": event.start_time, "timeZone": settings.default_timezone}
        body["end"] = {"dateTime": event.end_time, "timeZone": settings.default_timezone}

    return body
