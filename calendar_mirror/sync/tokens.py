"""Persisted OAuth credentials with refresh-on-demand."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx

from calendar_mirror.auth.google import (
    OAuthNotConfiguredError,
    TokenRejectedError,
    get_oauth_client,
    refresh_access_token,
)
from calendar_mirror.config import get_settings
from calendar_mirror.database import get_database
from calendar_mirror.encryption import decrypt_value, encrypt_value
from calendar_mirror.sync.errors import AuthExpired
from calendar_mirror.sync.models import Credential

logger = logging.getLogger(__name__)

CALENDAR_SERVICE = "calendar"
MAX_REFRESH_ATTEMPTS = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _row_to_credential(row) -> Credential:
    return Credential(
        user_id=row["user_id"],
        service=row["service"],
        access_token=decrypt_value(row["access_token_encrypted"]),
        refresh_token=decrypt_value(row["refresh_token_encrypted"]),
        expires_at=_parse_timestamp(row["token_expiry"]),
        last_sync_at=_parse_timestamp(row["last_sync_at"]),
        is_valid=bool(row["is_valid"]),
    )


async def get_credential(user_id: str, service: str = CALENDAR_SERVICE) -> Optional[Credential]:
    """Get the stored credential for a user's service, or None if not connected."""
    db = await get_database()
    cursor = await db.execute(
        "SELECT * FROM oauth_credentials WHERE user_id = ? AND service = ?",
        (user_id, service)
    )
    row = await cursor.fetchone()
    if row:
        return _row_to_credential(row)
    return None


async def upsert_credential(user_id: str, service: str, token_set: dict) -> Credential:
    """
    Store a token set for (user, service), replacing any previous one.

    Google omits the refresh token on some re-consents and on every refresh
    response, so a missing refresh token keeps the stored one.
    """
    db = await get_database()
    now = _utcnow()

    expiry = None
    if token_set.get("expires_in"):
        expiry = (now + timedelta(seconds=int(token_set["expires_in"]))).isoformat()

    refresh_token = token_set.get("refresh_token")
    refresh_encrypted = encrypt_value(refresh_token) if refresh_token else None

    await db.execute(
        """INSERT INTO oauth_credentials
           (user_id, service, access_token_encrypted, refresh_token_encrypted,
            token_expiry, is_valid, updated_at)
           VALUES (?, ?, ?, ?, ?, TRUE, ?)
           ON CONFLICT(user_id, service) DO UPDATE SET
           access_token_encrypted = excluded.access_token_encrypted,
           refresh_token_encrypted = COALESCE(
               excluded.refresh_token_encrypted, oauth_credentials.refresh_token_encrypted),
           token_expiry = excluded.token_expiry,
           is_valid = TRUE,
           updated_at = excluded.updated_at""",
        (
            user_id,
            service,
            encrypt_value(token_set["access_token"]),
            refresh_encrypted,
            expiry,
            now.isoformat(),
        )
    )
    await db.commit()

    return await get_credential(user_id, service)


async def mark_invalid(user_id: str, service: str = CALENDAR_SERVICE) -> None:
    """Flag a credential as rejected so no further refreshes are attempted."""
    db = await get_database()
    await db.execute(
        """UPDATE oauth_credentials SET is_valid = FALSE, updated_at = ?
           WHERE user_id = ? AND service = ?""",
        (_utcnow().isoformat(), user_id, service)
    )
    await db.commit()


async def touch_last_sync(
    user_id: str,
    service: str = CALENDAR_SERVICE,
    when: Optional[datetime] = None,
) -> None:
    """Record the completion time of a sync run."""
    db = await get_database()
    await db.execute(
        "UPDATE oauth_credentials SET last_sync_at = ? WHERE user_id = ? AND service = ?",
        ((when or _utcnow()).isoformat(), user_id, service)
    )
    await db.commit()


async def delete_credential(user_id: str, service: str = CALENDAR_SERVICE) -> bool:
    """Remove a credential. Returns True if one existed."""
    db = await get_database()
    cursor = await db.execute(
        "DELETE FROM oauth_credentials WHERE user_id = ? AND service = ?",
        (user_id, service)
    )
    await db.commit()
    return cursor.rowcount > 0


def needs_refresh(credential: Credential, now: Optional[datetime] = None) -> bool:
    """True when the access token is expired or inside the refresh skew window."""
    if credential.expires_at is None:
        return False
    skew = timedelta(minutes=get_settings().token_refresh_skew_minutes)
    return (now or _utcnow()) >= credential.expires_at - skew


async def ensure_fresh(credential: Credential) -> Credential:
    """
    Return a credential whose access token is usable right now.

    Refreshes inside the skew window. A refused refresh marks the credential
    invalid and raises AuthExpired; transient failures are retried a bounded
    number of times before giving up with AuthExpired.
    """
    user_id = credential.user_id

    if not credential.is_valid:
        raise AuthExpired(user_id, "re-consent required")

    if not needs_refresh(credential):
        return credential

    if not credential.refresh_token:
        await mark_invalid(user_id, credential.service)
        raise AuthExpired(user_id, "no refresh token stored")

    # Configuration errors are not retried
    try:
        get_oauth_client()
    except OAuthNotConfiguredError as e:
        logger.error(f"Cannot refresh token for user {user_id}: {e}")
        raise AuthExpired(user_id, str(e)) from e

    logger.info(f"Refreshing {credential.service} token for user {user_id}")

    for attempt in range(MAX_REFRESH_ATTEMPTS):
        try:
            new_tokens = await refresh_access_token(credential.refresh_token)
            return await upsert_credential(user_id, credential.service, new_tokens)
        except TokenRejectedError as e:
            logger.error(f"Token refresh rejected for user {user_id}: {e}")
            await mark_invalid(user_id, credential.service)
            raise AuthExpired(user_id, "refresh token rejected") from e
        except (ValueError, httpx.HTTPError) as e:
            if attempt < MAX_REFRESH_ATTEMPTS - 1:
                wait_time = 2 ** attempt
                logger.warning(
                    f"Token refresh attempt {attempt + 1} failed for user {user_id}, "
                    f"retrying in {wait_time}s: {e}"
                )
                await asyncio.sleep(wait_time)
            else:
                logger.error(f"Failed to refresh token after {MAX_REFRESH_ATTEMPTS} attempts: {e}")
                raise AuthExpired(user_id, f"refresh failed: {e}") from e

    raise AuthExpired(user_id, "refresh failed")
