"""Best-effort push of local mutations to the remote provider."""

import asyncio
import logging
from typing import Optional

from calendar_mirror.config import get_settings
from calendar_mirror.sync.errors import RemotePropagationError, SyncError
from calendar_mirror.sync.events import attach_external_ids
from calendar_mirror.sync.google_calendar import GoogleCalendarClient
from calendar_mirror.sync.models import CanonicalEvent, PropagationResult
from calendar_mirror.sync.normalizer import to_remote_event
from calendar_mirror.sync.tokens import ensure_fresh, get_credential

logger = logging.getLogger(__name__)


async def _usable_credential(user_id: str):
    """Fresh credential for the user, or None when the calendar is not connected."""
    credential = await get_credential(user_id)
    if credential is None:
        return None
    return await ensure_fresh(credential)


def _failed(operation: str, event: CanonicalEvent, error: Exception) -> PropagationResult:
    if not isinstance(error, SyncError):
        error = RemotePropagationError(operation, str(error), event.external_id)
    logger.warning(f"Remote {operation} of event {event.local_id} for user {event.user_id} failed: {error}")
    if operation == "create":
        return PropagationResult(status="failed", error=str(error))
    return PropagationResult(
        status="failed",
        external_id=event.external_id,
        external_calendar_id=event.external_calendar_id,
        error=str(error),
    )


async def on_create(event: CanonicalEvent, calendar_id: Optional[str] = None) -> PropagationResult:
    """
    Insert a committed local event on the provider and attach the returned
    identifiers to the local row. The local row is kept whatever happens here.

    `calendar_id` picks the target calendar; it is only stored on the row
    once the insert succeeds.
    """
    try:
        credential = await _usable_credential(event.user_id)
        if credential is None:
            return PropagationResult(status="skipped")

        calendar_id = calendar_id or get_settings().default_calendar_id
        client = GoogleCalendarClient(credential.access_token)
        created = await asyncio.to_thread(client.insert_event, calendar_id, to_remote_event(event))
    except Exception as e:
        return _failed("create", event, e)

    external_id = created["id"]
    if event.local_id is not None:
        await attach_external_ids(event.user_id, event.local_id, external_id, calendar_id)

    logger.info(f"Pushed event {event.local_id} to calendar {calendar_id} as {external_id}")
    return PropagationResult(
        status="synced",
        external_id=external_id,
        external_calendar_id=calendar_id,
    )


async def on_update(event: CanonicalEvent) -> PropagationResult:
    """Patch the remote copy of an event that has one."""
    if not event.external_id:
        return PropagationResult(status="skipped")

    calendar_id = event.external_calendar_id or get_settings().default_calendar_id
    try:
        credential = await _usable_credential(event.user_id)
        if credential is None:
            return PropagationResult(status="skipped", external_id=event.external_id)

        client = GoogleCalendarClient(credential.access_token)
        await asyncio.to_thread(
            client.update_event, calendar_id, event.external_id, to_remote_event(event)
        )
    except Exception as e:
        return _failed("update", event, e)

    return PropagationResult(
        status="synced",
        external_id=event.external_id,
        external_calendar_id=calendar_id,
    )


async def on_delete(event: CanonicalEvent) -> PropagationResult:
    """Delete the remote copy of a removed event; an already missing copy counts as deleted."""
    if not event.external_id:
        return PropagationResult(status="skipped")

    calendar_id = event.external_calendar_id or get_settings().default_calendar_id
    try:
        credential = await _usable_credential(event.user_id)
        if credential is None:
            return PropagationResult(status="skipped", external_id=event.external_id)

        client = GoogleCalendarClient(credential.access_token)
        await asyncio.to_thread(client.delete_event, calendar_id, event.external_id)
    except Exception as e:
        return _failed("delete", event, e)

    return PropagationResult(
        status="synced",
        external_id=event.external_id,
        external_calendar_id=calendar_id,
    )

