"""Remote calendar enumeration and the stored calendar metadata."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from calendar_mirror.database import get_database
from calendar_mirror.sync.errors import CalendarListError
from calendar_mirror.sync.google_calendar import GoogleCalendarClient
from calendar_mirror.sync.models import Credential, RemoteCalendar

logger = logging.getLogger(__name__)

# Google Calendar's fixed calendar palette, keyed by colorId
GOOGLE_CALENDAR_COLORS = {
    "1": "#a4bdfc",  # Lavender
    "2": "#7ae7bf",  # Sage
    "3": "#dbadff",  # Grape
    "4": "#ff887c",  # Flamingo
    "5": "#fbd75b",  # Banana
    "6": "#ffb878",  # Tangerine
    "7": "#46d6db",  # Peacock
    "8": "#e1e1e1",  # Graphite
    "9": "#5484ed",  # Blueberry
    "10": "#51b749",  # Basil
    "11": "#dc2127",  # Tomato
}
DEFAULT_CALENDAR_COLOR = "#1a73e8"

UPDATABLE_SETTINGS = ("is_visible", "is_selected", "color_override")


def calendar_color(raw_calendar: dict) -> str:
    """Resolve a calendar's display color: palette id, then background color, then default."""
    color_id = raw_calendar.get("colorId")
    if color_id and color_id in GOOGLE_CALENDAR_COLORS:
        return GOOGLE_CALENDAR_COLORS[color_id]
    if raw_calendar.get("backgroundColor"):
        return raw_calendar["backgroundColor"]
    return DEFAULT_CALENDAR_COLOR


def to_remote_calendar(raw_calendar: dict) -> RemoteCalendar:
    color = calendar_color(raw_calendar)
    return RemoteCalendar(
        external_id=raw_calendar["id"],
        display_name=raw_calendar.get("summaryOverride") or raw_calendar.get("summary") or "Untitled Calendar",
        color_hex=color,
        access_role=raw_calendar.get("accessRole") or "reader",
        is_primary=bool(raw_calendar.get("primary")),
        description=raw_calendar.get("description") or "",
        background_color=raw_calendar.get("backgroundColor") or color,
        foreground_color=raw_calendar.get("foregroundColor") or "#000000",
        time_zone=raw_calendar.get("timeZone") or "UTC",
    )


async def list_calendars(credential: Credential) -> list[RemoteCalendar]:
    """
    List the user's remote calendars in provider order.

    Any failure raises CalendarListError: without the calendar universe no
    partial sync is meaningful.
    """
    try:
        client = GoogleCalendarClient(credential.access_token)
        raw_calendars = await asyncio.to_thread(client.list_calendars)
    except Exception as e:
        logger.error(f"Failed to list calendars for user {credential.user_id}: {e}")
        raise CalendarListError(f"Failed to list calendars: {e}") from e

    return [to_remote_calendar(c) for c in raw_calendars if c.get("id")]


async def store_calendar_metadata(user_id: str, calendars: list[RemoteCalendar]) -> None:
    """Upsert the enumerated calendars, keeping the user's display preferences."""
    db = await get_database()
    now = datetime.now(timezone.utc).isoformat()

    for calendar in calendars:
        await db.execute(
            """INSERT INTO calendars
               (user_id, external_id, name, description, color, background_color,
                foreground_color, is_primary, access_role, timezone, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(user_id, external_id) DO UPDATE SET
               name = excluded.name,
               description = excluded.description,
               color = excluded.color,
               background_color = excluded.background_color,
               foreground_color = excluded.foreground_color,
               is_primary = excluded.is_primary,
               access_role = excluded.access_role,
               timezone = excluded.timezone,
               updated_at = excluded.updated_at""",
            (
                user_id,
                calendar.external_id,
                calendar.display_name,
                calendar.description,
                calendar.color_hex,
                calendar.background_color,
                calendar.foreground_color,
                calendar.is_primary,
                calendar.access_role,
                calendar.time_zone,
                now,
            )
        )
    await db.commit()


async def list_stored_calendars(user_id: str) -> list[dict]:
    """Stored calendars for a user, primary first and then by name."""
    db = await get_database()
    cursor = await db.execute(
        """SELECT * FROM calendars WHERE user_id = ?
           ORDER BY is_primary DESC, name ASC""",
        (user_id,)
    )
    return [dict(row) for row in await cursor.fetchall()]


async def update_calendar_settings(user_id: str, external_id: str, updates: dict) -> Optional[dict]:
    """Apply display preferences to a stored calendar. Returns None if it does not exist."""
    fields = {k: v for k, v in updates.items() if k in UPDATABLE_SETTINGS}

    db = await get_database()
    if fields:
        assignments = ", ".join(f"{name} = ?" for name in fields)
        await db.execute(
            f"UPDATE calendars SET {assignments}, updated_at = ? WHERE user_id = ? AND external_id = ?",
            (*fields.values(), datetime.now(timezone.utc).isoformat(), user_id, external_id)
        )
        await db.commit()

    cursor = await db.execute(
        "SELECT * FROM calendars WHERE user_id = ? AND external_id = ?",
        (user_id, external_id)
    )
    row = await cursor.fetchone()
    return dict(row) if row else None


async def delete_stored_calendars(user_id: str) -> int:
    """Forget the stored calendars of a user (calendar disconnect)."""
    db = await get_database()
    cursor = await db.execute("DELETE FROM calendars WHERE user_id = ?", (user_id,))
    await db.commit()
    return cursor.rowcount
