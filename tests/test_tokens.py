"""Tests for the credential store and refresh-on-demand."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from calendar_mirror.auth.google import TokenRejectedError
from calendar_mirror.config import get_settings
from calendar_mirror.sync.errors import AuthExpired
from calendar_mirror.sync.tokens import (
    CALENDAR_SERVICE,
    MAX_REFRESH_ATTEMPTS,
    delete_credential,
    ensure_fresh,
    get_credential,
    needs_refresh,
    touch_last_sync,
    upsert_credential,
)

USER_ID = "user-1"


async def _store(expires_in: int = 3600, refresh_token: str | None = "refresh-1"):
    token_set = {"access_token": "access-1", "expires_in": expires_in}
    if refresh_token:
        token_set["refresh_token"] = refresh_token
    return await upsert_credential(USER_ID, CALENDAR_SERVICE, token_set)


@pytest.fixture
def no_sleep(monkeypatch):
    """Skip retry backoff, recording the requested delays."""
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    monkeypatch.setattr("calendar_mirror.sync.tokens.asyncio.sleep", fake_sleep)
    return delays


@pytest.mark.asyncio
async def test_credential_is_encrypted_at_rest(test_db):
    await _store()

    cursor = await test_db.execute("SELECT access_token_encrypted FROM oauth_credentials")
    row = await cursor.fetchone()
    assert b"access-1" not in row["access_token_encrypted"]

    credential = await get_credential(USER_ID)
    assert credential.access_token == "access-1"
    assert credential.refresh_token == "refresh-1"
    assert credential.is_valid is True


@pytest.mark.asyncio
async def test_missing_credential_is_none(test_db):
    assert await get_credential("nobody") is None


@pytest.mark.asyncio
async def test_upsert_keeps_refresh_token_when_omitted(test_db):
    await _store()
    await upsert_credential(USER_ID, CALENDAR_SERVICE, {"access_token": "access-2", "expires_in": 3600})

    credential = await get_credential(USER_ID)
    assert credential.access_token == "access-2"
    assert credential.refresh_token == "refresh-1"

    cursor = await test_db.execute("SELECT COUNT(*) FROM oauth_credentials")
    assert (await cursor.fetchone())[0] == 1


def test_needs_refresh_inside_skew_window():
    from calendar_mirror.sync.models import Credential

    now = datetime(2025, 1, 10, 12, 0, tzinfo=timezone.utc)
    credential = Credential(
        user_id=USER_ID,
        service=CALENDAR_SERVICE,
        access_token="a",
        expires_at=now + timedelta(minutes=4),
    )

    assert needs_refresh(credential, now) is True
    assert needs_refresh(credential.model_copy(update={"expires_at": now + timedelta(minutes=30)}), now) is False
    assert needs_refresh(credential.model_copy(update={"expires_at": None}), now) is False


@pytest.mark.asyncio
async def test_fresh_credential_is_returned_without_refresh(test_db, monkeypatch):
    credential = await _store(expires_in=3600)

    async def fail_refresh(_token):
        raise AssertionError("refresh should not be called")

    monkeypatch.setattr("calendar_mirror.sync.tokens.refresh_access_token", fail_refresh)

    assert await ensure_fresh(credential) == credential


@pytest.mark.asyncio
async def test_expiring_credential_is_refreshed_and_persisted(test_db, monkeypatch):
    credential = await _store(expires_in=60)

    async def fake_refresh(refresh_token):
        assert refresh_token == "refresh-1"
        return {"access_token": "access-refreshed", "expires_in": 3600}

    monkeypatch.setattr("calendar_mirror.sync.tokens.refresh_access_token", fake_refresh)

    fresh = await ensure_fresh(credential)

    assert fresh.access_token == "access-refreshed"
    assert fresh.refresh_token == "refresh-1"
    assert (await get_credential(USER_ID)).access_token == "access-refreshed"


@pytest.mark.asyncio
async def test_rejected_refresh_marks_credential_invalid(test_db, monkeypatch):
    credential = await _store(expires_in=60)

    async def rejected(_token):
        raise TokenRejectedError("invalid_grant")

    monkeypatch.setattr("calendar_mirror.sync.tokens.refresh_access_token", rejected)

    with pytest.raises(AuthExpired):
        await ensure_fresh(credential)

    stored = await get_credential(USER_ID)
    assert stored.is_valid is False

    # An invalid credential fails fast on the next attempt
    with pytest.raises(AuthExpired):
        await ensure_fresh(stored)


@pytest.mark.asyncio
async def test_transient_refresh_failure_is_retried(test_db, monkeypatch, no_sleep):
    credential = await _store(expires_in=60)
    calls = []

    async def flaky(_token):
        calls.append(1)
        if len(calls) < 3:
            raise httpx.ConnectError("connection reset")
        return {"access_token": "access-after-retry", "expires_in": 3600}

    monkeypatch.setattr("calendar_mirror.sync.tokens.refresh_access_token", flaky)

    fresh = await ensure_fresh(credential)

    assert fresh.access_token == "access-after-retry"
    assert len(calls) == 3
    assert no_sleep == [1, 2]


@pytest.mark.asyncio
async def test_exhausted_retries_raise_auth_expired_without_invalidating(test_db, monkeypatch, no_sleep):
    credential = await _store(expires_in=60)
    calls = []

    async def down(_token):
        calls.append(1)
        raise ValueError("Token refresh failed with status 503")

    monkeypatch.setattr("calendar_mirror.sync.tokens.refresh_access_token", down)

    with pytest.raises(AuthExpired):
        await ensure_fresh(credential)

    assert len(calls) == MAX_REFRESH_ATTEMPTS
    assert (await get_credential(USER_ID)).is_valid is True


@pytest.mark.asyncio
async def test_unconfigured_oauth_client_fails_without_retrying(test_db, monkeypatch, no_sleep):
    credential = await _store(expires_in=60)
    calls = []

    async def refresh(_token):
        calls.append(1)
        return {"access_token": "never"}

    monkeypatch.setattr("calendar_mirror.sync.tokens.refresh_access_token", refresh)
    monkeypatch.setattr(get_settings(), "google_client_secret", "")

    with pytest.raises(AuthExpired, match="not configured"):
        await ensure_fresh(credential)

    assert calls == []
    assert no_sleep == []
    assert (await get_credential(USER_ID)).is_valid is True


@pytest.mark.asyncio
async def test_missing_refresh_token_raises_auth_expired(test_db):
    credential = await _store(expires_in=60, refresh_token=None)

    with pytest.raises(AuthExpired):
        await ensure_fresh(credential)

    assert (await get_credential(USER_ID)).is_valid is False


@pytest.mark.asyncio
async def test_touch_last_sync_and_delete(test_db):
    await _store()
    when = datetime(2025, 1, 10, 12, 0, tzinfo=timezone.utc)

    await touch_last_sync(USER_ID, when=when)
    assert (await get_credential(USER_ID)).last_sync_at == when

    assert await delete_credential(USER_ID) is True
    assert await delete_credential(USER_ID) is False
    assert await get_credential(USER_ID) is None
