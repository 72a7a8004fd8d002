"""Calendar connection routes: OAuth consent, callback and disconnect."""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import RedirectResponse

from calendar_mirror.auth.google import (
    CALENDAR_SCOPES,
    build_auth_url,
    exchange_code_for_tokens,
    get_oauth_client,
)
from calendar_mirror.auth.session import User, get_current_user
from calendar_mirror.config import get_redirect_uri, get_settings
from calendar_mirror.database import get_database, write_sync_log
from calendar_mirror.sync.calendars import delete_stored_calendars
from calendar_mirror.sync.errors import SyncError
from calendar_mirror.sync.events import delete_remote_events
from calendar_mirror.sync.orchestrator import run_sync
from calendar_mirror.sync.tokens import CALENDAR_SERVICE, delete_credential, upsert_credential

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/oauth", tags=["oauth"])


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def store_oauth_state(
    state: str,
    user_id: str,
    service: str = CALENDAR_SERVICE,
    next_url: Optional[str] = None,
    ttl_minutes: Optional[int] = None,
) -> None:
    """Store a one-time OAuth state bound to a user."""
    if ttl_minutes is None:
        ttl_minutes = get_settings().oauth_state_ttl_minutes

    db = await get_database()
    expires_at = (datetime.now(timezone.utc) + timedelta(minutes=ttl_minutes)).isoformat()
    await db.execute(
        """INSERT INTO oauth_states (state, user_id, service, next_url, expires_at)
           VALUES (?, ?, ?, ?, ?)""",
        (state, user_id, service, next_url, expires_at)
    )
    await db.commit()


async def pop_oauth_state(state: Optional[str]) -> Optional[dict]:
    """Retrieve and delete an unexpired OAuth state."""
    if not state:
        return None

    db = await get_database()
    cursor = await db.execute(
        """SELECT user_id, service, next_url FROM oauth_states
           WHERE state = ? AND expires_at > ?""",
        (state, _utcnow_iso())
    )
    row = await cursor.fetchone()

    # One-time use, expired or not
    await db.execute("DELETE FROM oauth_states WHERE state = ?", (state,))
    await db.commit()

    if row:
        return {
            "user_id": row["user_id"],
            "service": row["service"],
            "next": row["next_url"],
        }
    return None


async def cleanup_expired_oauth_states() -> None:
    """Clean up expired OAuth states."""
    db = await get_database()
    await db.execute(
        "DELETE FROM oauth_states WHERE expires_at < ?",
        (_utcnow_iso(),)
    )
    await db.commit()


def _app_redirect(path: str) -> RedirectResponse:
    settings = get_settings()
    return RedirectResponse(
        url=f"{settings.public_url.rstrip('/')}{path}",
        status_code=status.HTTP_302_FOUND,
    )


def _local_path(next_url: Optional[str]) -> Optional[str]:
    """Keep only app-relative paths as post-consent redirect targets."""
    if next_url and next_url.startswith("/") and not next_url.startswith("//"):
        return next_url
    return None


@router.get("/authorize")
async def authorize(
    next: Optional[str] = None,
    user: User = Depends(get_current_user),
):
    """Start the calendar consent flow. Returns the Google authorization URL."""
    try:
        client_id, _ = get_oauth_client()
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="OAuth credentials not configured"
        )

    state = secrets.token_urlsafe(32)
    await store_oauth_state(state, user.id, next_url=_local_path(next))
    await cleanup_expired_oauth_states()

    auth_url = build_auth_url(
        client_id=client_id,
        redirect_uri=get_redirect_uri(),
        scopes=CALENDAR_SCOPES,
        state=state,
        prompt="consent",
    )
    return {"authUrl": auth_url}


@router.get("/callback")
async def oauth_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
):
    """
    Complete the consent flow.

    The user is identified by the state issued by /oauth/authorize and by
    nothing else. The credential is stored and one sync is run before
    redirecting back to the app.
    """
    if error:
        logger.error(f"OAuth error: {error} - {error_description}")
        return _app_redirect(f"/profile?error={error}")

    state_data = await pop_oauth_state(state)
    if not state_data:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired state parameter"
        )

    if not code:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing authorization code"
        )

    user_id = state_data["user_id"]

    try:
        tokens = await exchange_code_for_tokens(code)
        await upsert_credential(user_id, state_data["service"], tokens)
    except Exception as e:
        logger.exception(f"OAuth callback error for user {user_id}: {e}")
        return _app_redirect("/profile?error=calendar_auth_failed")

    if not tokens.get("refresh_token"):
        logger.warning(f"No refresh token received for user {user_id}")

    await write_sync_log(user_id, "calendar_connected", "success")

    try:
        run = await run_sync(user_id)
    except SyncError as e:
        logger.error(f"Initial sync failed for user {user_id}: {e}")
        return _app_redirect("/profile?success=calendar_connected&sync=failed")

    next_path = _local_path(state_data["next"]) or "/calendar"
    separator = "&" if "?" in next_path else "?"
    return _app_redirect(
        f"{next_path}{separator}success=calendar_connected&synced={run.total_synced}"
        f"&calendars={run.calendars_count}"
    )


@router.post("/disconnect")
async def disconnect(user: User = Depends(get_current_user)):
    """Remove the calendar credential along with the mirrored remote events."""
    removed = await delete_credential(user.id)
    events_deleted = await delete_remote_events(user.id)
    calendars_deleted = await delete_stored_calendars(user.id)

    await write_sync_log(
        user.id,
        "calendar_disconnected",
        "success",
        f"{events_deleted} events, {calendars_deleted} calendars removed",
    )
    logger.info(f"Disconnected calendar for user {user.id}")

    return {
        "success": True,
        "connected": False,
        "credentialRemoved": removed,
        "eventsDeleted": events_deleted,
        "calendarsDeleted": calendars_deleted,
    }
