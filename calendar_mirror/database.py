"""Database connection and schema management."""

import asyncio
import logging
from typing import Optional

import aiosqlite

from calendar_mirror.config import get_settings

logger = logging.getLogger(__name__)

# Global database connection
_db_connection: Optional[aiosqlite.Connection] = None
_db_lock = asyncio.Lock()


SCHEMA = """
-- OAuth credentials per (user, service), encrypted at rest
CREATE TABLE IF NOT EXISTS oauth_credentials (
    id INTEGER PRIMARY KEY,
    user_id TEXT NOT NULL,
    service TEXT NOT NULL,
    access_token_encrypted BLOB NOT NULL,
    refresh_token_encrypted BLOB,
    token_expiry TIMESTAMP,
    last_sync_at TIMESTAMP,
    is_valid BOOLEAN DEFAULT TRUE,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP,
    UNIQUE(user_id, service)
);

-- Last enumerated remote calendars plus per-user display preferences
CREATE TABLE IF NOT EXISTS calendars (
    id INTEGER PRIMARY KEY,
    user_id TEXT NOT NULL,
    external_id TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT DEFAULT '',
    color TEXT,
    background_color TEXT,
    foreground_color TEXT,
    is_primary BOOLEAN DEFAULT FALSE,
    access_role TEXT DEFAULT 'reader',
    timezone TEXT DEFAULT 'UTC',
    is_visible BOOLEAN DEFAULT TRUE,
    is_selected BOOLEAN DEFAULT TRUE,
    color_override TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP,
    UNIQUE(user_id, external_id)
);

-- The local mirror: remote-origin rows are replaced per calendar on every sync,
-- local-origin rows only change by user action
CREATE TABLE IF NOT EXISTS calendar_events (
    id INTEGER PRIMARY KEY,
    user_id TEXT NOT NULL,
    external_id TEXT,
    external_calendar_id TEXT,
    title TEXT NOT NULL,
    description TEXT DEFAULT '',
    start_time TEXT NOT NULL,
    end_time TEXT NOT NULL,
    all_day BOOLEAN DEFAULT FALSE,
    location TEXT DEFAULT '',
    attendees TEXT DEFAULT '',
    status TEXT DEFAULT 'confirmed',
    source TEXT NOT NULL CHECK (source IN ('local', 'remote')),
    flag TEXT,
    color TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_calendar_events_partition
    ON calendar_events(user_id, source, external_calendar_id);
CREATE INDEX IF NOT EXISTS idx_calendar_events_external
    ON calendar_events(user_id, external_id);
CREATE INDEX IF NOT EXISTS idx_calendar_events_start
    ON calendar_events(user_id, start_time);

-- Audit log
CREATE TABLE IF NOT EXISTS sync_log (
    id INTEGER PRIMARY KEY,
    user_id TEXT NOT NULL,
    calendar_id TEXT,
    action TEXT NOT NULL,
    status TEXT NOT NULL,
    details TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_sync_log_user ON sync_log(user_id, created_at);

-- One-time OAuth state carrying the user identity through the consent redirect
CREATE TABLE IF NOT EXISTS oauth_states (
    state TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    service TEXT NOT NULL,
    next_url TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    expires_at TIMESTAMP NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_oauth_states_expiry ON oauth_states(expires_at);
"""


async def get_database() -> aiosqlite.Connection:
    """
    Get the database connection, creating it if necessary.

    The connection is shared by every request and user, so a commit or a
    rollback applies to all writes pending on it. Per-user locks do not
    isolate users from each other here. Writers commit right after each
    statement; a rollback after a failed reconcile insert can still discard
    another user's uncommitted write.
    """
    global _db_connection

    async with _db_lock:
        if _db_connection is None:
            settings = get_settings()
            _db_connection = await aiosqlite.connect(settings.database_path)
            _db_connection.row_factory = aiosqlite.Row
            await _db_connection.execute("PRAGMA journal_mode = WAL")
            await init_schema(_db_connection)
        return _db_connection


async def init_schema(db: aiosqlite.Connection) -> None:
    """Initialize database schema."""
    await db.executescript(SCHEMA)
    await db.commit()
    logger.info("Database schema initialized")


async def close_database() -> None:
    """Close the database connection."""
    global _db_connection

    async with _db_lock:
        if _db_connection is not None:
            await _db_connection.close()
            _db_connection = None
            logger.info("Database connection closed")


async def write_sync_log(
    user_id: str,
    action: str,
    status: str,
    details: Optional[str] = None,
    calendar_id: Optional[str] = None,
) -> None:
    """Append an entry to the sync audit log."""
    db = await get_database()
    await db.execute(
        """INSERT INTO sync_log (user_id, calendar_id, action, status, details)
           VALUES (?, ?, ?, ?, ?)""",
        (user_id, calendar_id, action, status, details)
    )
    await db.commit()


async def list_sync_log(
    user_id: str,
    limit: int = 50,
    offset: int = 0,
    status: Optional[str] = None,
) -> tuple[list[dict], int]:
    """Newest-first audit entries of a user and the total matching count."""
    db = await get_database()

    where = "WHERE user_id = ?"
    params: list = [user_id]
    if status:
        where += " AND status = ?"
        params.append(status)

    cursor = await db.execute(f"SELECT COUNT(*) FROM sync_log {where}", params)
    total = (await cursor.fetchone())[0]

    cursor = await db.execute(
        f"SELECT * FROM sync_log {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
        [*params, limit, offset]
    )
    return [dict(row) for row in await cursor.fetchall()], total
