"""Replace a calendar's remote-origin partition of the local mirror."""

import logging
from datetime import datetime, timezone

from calendar_mirror.database import get_database
from calendar_mirror.sync.locks import get_user_lock
from calendar_mirror.sync.models import CanonicalEvent, ReconcileResult

logger = logging.getLogger(__name__)

INSERT_EVENT_SQL = """INSERT INTO calendar_events
   (user_id, external_id, external_calendar_id, title, description,
    start_time, end_time, all_day, location, attendees, status, source,
    flag, color, created_at, updated_at)
   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"""


def event_params(event: CanonicalEvent, now: str) -> tuple:
    """Positional parameters for INSERT_EVENT_SQL."""
    return (
        event.user_id,
        event.external_id,
        event.external_calendar_id,
        event.title,
        event.description,
        event.start_time,
        event.end_time,
        event.all_day,
        event.location,
        event.attendees,
        event.status,
        event.source,
        event.flag,
        event.color,
        event.created_at or now,
        event.updated_at or now,
    )


async def replace_calendar_events(
    user_id: str,
    calendar_id: str,
    events: list[CanonicalEvent],
) -> ReconcileResult:
    """
    Make the remote-origin rows of (user, calendar) equal to `events`.

    Delete and insert are committed separately. Local-origin rows and other
    calendars are untouched. Errors are reported in the result rather than
    raised so one calendar cannot abort a run.
    """
    db = await get_database()
    now = datetime.now(timezone.utc).isoformat()
    lock = await get_user_lock(user_id)

    async with lock:
        try:
            cursor = await db.execute(
                """DELETE FROM calendar_events
                   WHERE user_id = ? AND source = 'remote' AND external_calendar_id = ?""",
                (user_id, calendar_id)
            )
            deleted = cursor.rowcount
            await db.commit()
        except Exception as e:
            logger.error(f"Reconcile delete failed for calendar {calendar_id} of user {user_id}: {e}")
            return ReconcileResult(error=str(e))

        # A failure past this point leaves the partition empty until the next run
        rows = [
            event_params(event, now)
            for event in events
            if event.source == "remote"
            and event.user_id == user_id
            and event.external_calendar_id == calendar_id
        ]
        if len(rows) != len(events):
            logger.warning(
                f"Dropped {len(events) - len(rows)} events not belonging to "
                f"calendar {calendar_id} of user {user_id}"
            )

        # A failed insert rolls back the shared connection, which also drops
        # any other user's write that is executed but not yet committed
        try:
            if rows:
                await db.executemany(INSERT_EVENT_SQL, rows)
            await db.commit()
        except Exception as e:
            logger.error(f"Reconcile insert failed for calendar {calendar_id} of user {user_id}: {e}")
            await db.rollback()
            return ReconcileResult(deleted=deleted, error=str(e))

    logger.info(
        f"Replaced events of calendar {calendar_id} for user {user_id}: "
        f"{deleted} removed, {len(rows)} inserted"
    )
    return ReconcileResult(inserted=len(rows), deleted=deleted)
