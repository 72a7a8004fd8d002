"""Local event store: user CRUD and the merged read path of the mirror."""

import logging
from datetime import datetime, timezone
from typing import Optional

from calendar_mirror.config import get_settings
from calendar_mirror.database import get_database
from calendar_mirror.sync.errors import NotFoundError, ValidationError
from calendar_mirror.sync.locks import get_user_lock
from calendar_mirror.sync.models import CanonicalEvent
from calendar_mirror.sync.normalizer import canonical_bounds, parse_instant
from calendar_mirror.sync.reconcile import INSERT_EVENT_SQL, event_params

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "title",
    "description",
    "start_time",
    "end_time",
    "all_day",
    "location",
    "attendees",
    "status",
    "flag",
    "color",
)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


async def get_event(user_id: str, event_id: int) -> CanonicalEvent:
    """Get one of the user's events. Raises NotFoundError if missing."""
    db = await get_database()
    cursor = await db.execute(
        "SELECT * FROM calendar_events WHERE id = ? AND user_id = ?",
        (event_id, user_id)
    )
    row = await cursor.fetchone()
    if not row:
        raise NotFoundError(event_id)
    return CanonicalEvent.from_row(row)


def _validated(event_data: dict) -> dict:
    title = (event_data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required")
    if not event_data.get("start_time"):
        raise ValidationError("start_time is required")

    all_day = bool(event_data.get("all_day"))
    try:
        start_time, end_time = canonical_bounds(
            event_data["start_time"], event_data.get("end_time"), all_day
        )
    except ValueError as e:
        raise ValidationError(str(e)) from e

    return {
        **event_data,
        "title": title,
        "start_time": start_time,
        "end_time": end_time,
        "all_day": all_day,
    }


async def create_local_event(user_id: str, event_data: dict) -> CanonicalEvent:
    """Commit a new local-origin event. External identifiers stay empty until a push succeeds."""
    settings = get_settings()
    data = _validated(event_data)
    now = _utcnow()

    event = CanonicalEvent(
        user_id=user_id,
        title=data["title"],
        description=data.get("description") or "",
        start_time=data["start_time"],
        end_time=data["end_time"],
        all_day=data["all_day"],
        location=data.get("location") or "",
        attendees=data.get("attendees") or "",
        status=data.get("status") or "confirmed",
        source="local",
        flag=data.get("flag") or settings.default_event_flag,
        color=data.get("color") or settings.default_event_color,
        created_at=now,
        updated_at=now,
    )

    db = await get_database()
    lock = await get_user_lock(user_id)
    async with lock:
        cursor = await db.execute(INSERT_EVENT_SQL, event_params(event, now))
        await db.commit()
        event_id = cursor.lastrowid

    logger.info(f"Created local event {event_id} for user {user_id}")
    return event.model_copy(update={"local_id": event_id})


async def update_local_event(user_id: str, event_id: int, changes: dict) -> CanonicalEvent:
    """
    Apply a partial update to an event.

    Remote-origin rows can be edited too; the edit lasts until the next sync
    replaces the calendar's rows, unless the change is pushed to the provider.
    """
    current = await get_event(user_id, event_id)

    fields = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS and v is not None}
    if not fields:
        return current

    merged = {**current.model_dump(), **fields}
    if any(k in fields for k in ("title", "start_time", "end_time", "all_day")):
        merged = _validated(merged)
        for key in ("title", "start_time", "end_time", "all_day"):
            fields[key] = merged[key]

    fields["updated_at"] = _utcnow()
    assignments = ", ".join(f"{name} = ?" for name in fields)

    db = await get_database()
    lock = await get_user_lock(user_id)
    async with lock:
        cursor = await db.execute(
            f"UPDATE calendar_events SET {assignments} WHERE id = ? AND user_id = ?",
            (*fields.values(), event_id, user_id)
        )
        await db.commit()

    # A sync may have replaced the row between the read and the write
    if cursor.rowcount == 0:
        raise NotFoundError(event_id)

    logger.info(f"Updated event {event_id} for user {user_id}")
    return current.model_copy(update=fields)


async def delete_local_event(user_id: str, event_id: int) -> CanonicalEvent:
    """
    Delete an event and any other copy of it sharing the same external id.

    Returns the deleted event so the caller can propagate the removal.
    """
    event = await get_event(user_id, event_id)

    db = await get_database()
    lock = await get_user_lock(user_id)
    async with lock:
        if event.external_id:
            await db.execute(
                "DELETE FROM calendar_events WHERE user_id = ? AND (id = ? OR external_id = ?)",
                (user_id, event_id, event.external_id)
            )
        else:
            await db.execute(
                "DELETE FROM calendar_events WHERE user_id = ? AND id = ?",
                (user_id, event_id)
            )
        await db.commit()

    logger.info(f"Deleted event {event_id} for user {user_id}")
    return event


async def attach_external_ids(
    user_id: str,
    event_id: int,
    external_id: str,
    external_calendar_id: str,
) -> bool:
    """Record the provider identity of a pushed local event. Returns False if the row is gone."""
    db = await get_database()
    lock = await get_user_lock(user_id)
    async with lock:
        cursor = await db.execute(
            """UPDATE calendar_events
               SET external_id = ?, external_calendar_id = ?, updated_at = ?
               WHERE id = ? AND user_id = ?""",
            (external_id, external_calendar_id, _utcnow(), event_id, user_id)
        )
        await db.commit()
    return cursor.rowcount > 0


def merge_events(events: list[CanonicalEvent]) -> list[CanonicalEvent]:
    """
    Collapse rows sharing an external id, preferring the remote-origin copy,
    and sort by start instant.
    """
    merged: list[CanonicalEvent] = []
    by_external_id: dict[str, int] = {}

    for event in events:
        if not event.external_id:
            merged.append(event)
            continue

        index = by_external_id.get(event.external_id)
        if index is None:
            by_external_id[event.external_id] = len(merged)
            merged.append(event)
        elif merged[index].source == "local" and event.source == "remote":
            merged[index] = event

    merged.sort(key=lambda e: (parse_instant(e.start_time), e.local_id or 0))
    return merged


async def list_events(
    user_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> list[CanonicalEvent]:
    """
    Merged view of the user's mirror: local and remote rows, de-duplicated by
    external id and time-sorted. With `start`/`end`, only events overlapping
    that range are returned.
    """
    db = await get_database()
    cursor = await db.execute(
        "SELECT * FROM calendar_events WHERE user_id = ?",
        (user_id,)
    )
    events = merge_events([CanonicalEvent.from_row(row) for row in await cursor.fetchall()])

    if start is not None:
        start = start if start.tzinfo else start.replace(tzinfo=timezone.utc)
        events = [e for e in events if parse_instant(e.end_time) >= start]
    if end is not None:
        end = end if end.tzinfo else end.replace(tzinfo=timezone.utc)
        events = [e for e in events if parse_instant(e.start_time) <= end]

    return events


async def list_upcoming_events(user_id: str, limit: int = 10) -> list[CanonicalEvent]:
    """The next events starting from now."""
    now = datetime.now(timezone.utc)
    events = await list_events(user_id)
    return [e for e in events if parse_instant(e.start_time) >= now][:limit]


async def delete_remote_events(user_id: str) -> int:
    """Remove every remote-origin row of a user (calendar disconnect)."""
    db = await get_database()
    lock = await get_user_lock(user_id)
    async with lock:
        cursor = await db.execute(
            "DELETE FROM calendar_events WHERE user_id = ? AND source = 'remote'",
            (user_id,)
        )
        await db.commit()
    return cursor.rowcount


async def count_events(user_id: str) -> dict:
    """Row counts of the user's mirror by origin."""
    db = await get_database()
    cursor = await db.execute(
        """SELECT source, COUNT(*) as count FROM calendar_events
           WHERE user_id = ? GROUP BY source""",
        (user_id,)
    )
    counts = {"local": 0, "remote": 0}
    for row in await cursor.fetchall():
        counts[row["source"]] = row["count"]
    return counts
