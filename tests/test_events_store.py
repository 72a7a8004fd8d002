"""Tests for local event CRUD and the merged read path."""

from datetime import datetime, timedelta, timezone

import pytest

from calendar_mirror.sync.errors import NotFoundError, ValidationError
from calendar_mirror.sync.events import (
    attach_external_ids,
    count_events,
    create_local_event,
    delete_local_event,
    delete_remote_events,
    get_event,
    list_events,
    list_upcoming_events,
    update_local_event,
)
from calendar_mirror.sync.models import CanonicalEvent
from calendar_mirror.sync.reconcile import replace_calendar_events

USER_ID = "user-1"


def _remote(external_id: str, start: str, calendar_id: str = "cal-a", title: str = "Remote") -> CanonicalEvent:
    return CanonicalEvent(
        user_id=USER_ID,
        external_id=external_id,
        external_calendar_id=calendar_id,
        title=title,
        start_time=start,
        end_time=start,
        source="remote",
    )


@pytest.mark.asyncio
async def test_create_applies_defaults(test_db):
    event = await create_local_event(USER_ID, {"title": "  Gym  ", "start_time": "2025-01-10T07:00:00Z"})

    assert event.local_id is not None
    assert event.title == "Gym"
    assert event.end_time == "2025-01-10T07:00:00Z"
    assert event.source == "local"
    assert event.external_id is None
    assert event.flag == "personal"
    assert event.color == "#3B82F6"

    assert await get_event(USER_ID, event.local_id) == event


@pytest.mark.asyncio
async def test_create_all_day_canonicalizes_dates(test_db):
    event = await create_local_event(
        USER_ID, {"title": "Trip", "start_time": "2025-01-10", "end_time": "2025-01-12", "all_day": True}
    )

    assert event.start_time == "2025-01-10T00:00:00"
    assert event.end_time == "2025-01-12T23:59:59"


@pytest.mark.parametrize(
    "data",
    [
        {"title": "", "start_time": "2025-01-10T07:00:00Z"},
        {"title": "No start"},
        {"title": "Backwards", "start_time": "2025-01-10T07:00:00Z", "end_time": "2025-01-10T06:00:00Z"},
        {"title": "Garbage", "start_time": "not a date"},
    ],
)
@pytest.mark.asyncio
async def test_create_rejects_invalid_input(test_db, data):
    with pytest.raises(ValidationError):
        await create_local_event(USER_ID, data)

    assert await list_events(USER_ID) == []


@pytest.mark.asyncio
async def test_update_is_partial(test_db):
    event = await create_local_event(
        USER_ID, {"title": "Gym", "start_time": "2025-01-10T07:00:00Z", "location": "Downtown"}
    )

    updated = await update_local_event(USER_ID, event.local_id, {"title": "Pool", "location": None})

    assert updated.title == "Pool"
    assert updated.location == "Downtown"
    stored = await get_event(USER_ID, event.local_id)
    assert stored.title == "Pool"
    assert stored.updated_at == updated.updated_at


@pytest.mark.asyncio
async def test_update_and_delete_missing_event(test_db):
    with pytest.raises(NotFoundError):
        await update_local_event(USER_ID, 999, {"title": "x"})
    with pytest.raises(NotFoundError):
        await delete_local_event(USER_ID, 999)


@pytest.mark.asyncio
async def test_events_are_scoped_to_user(test_db):
    event = await create_local_event("user-2", {"title": "Theirs", "start_time": "2025-01-10T07:00:00Z"})

    with pytest.raises(NotFoundError):
        await get_event(USER_ID, event.local_id)
    assert await list_events(USER_ID) == []


@pytest.mark.asyncio
async def test_merged_view_prefers_remote_copy(test_db):
    """A pushed local row and the remote row for the same event collapse into the remote one."""
    local = await create_local_event(USER_ID, {"title": "Draft", "start_time": "2025-01-10T09:00:00Z"})
    await attach_external_ids(USER_ID, local.local_id, "shared-1", "cal-a")
    await replace_calendar_events(
        USER_ID, "cal-a", [_remote("shared-1", "2025-01-10T09:00:00Z", title="From Google")]
    )

    events = await list_events(USER_ID)

    assert len(events) == 1
    assert events[0].source == "remote"
    assert events[0].title == "From Google"


@pytest.mark.asyncio
async def test_merged_view_is_time_sorted_across_origins(test_db):
    await replace_calendar_events(
        USER_ID,
        "cal-a",
        [_remote("r1", "2025-01-10T15:00:00Z"), _remote("r2", "2025-01-10T08:00:00-05:00")],
    )
    await create_local_event(USER_ID, {"title": "Local", "start_time": "2025-01-10T10:00:00Z"})

    events = await list_events(USER_ID)

    # 08:00-05:00 is 13:00 UTC
    assert [e.external_id or e.title for e in events] == ["Local", "r2", "r1"]


@pytest.mark.asyncio
async def test_range_filter_keeps_overlapping_events(test_db):
    await create_local_event(
        USER_ID, {"title": "Before", "start_time": "2025-01-01T09:00:00Z", "end_time": "2025-01-01T10:00:00Z"}
    )
    await create_local_event(
        USER_ID, {"title": "Spanning", "start_time": "2025-01-04T09:00:00Z", "end_time": "2025-01-06T10:00:00Z"}
    )
    await create_local_event(
        USER_ID, {"title": "Inside", "start_time": "2025-01-07T09:00:00Z", "end_time": "2025-01-07T10:00:00Z"}
    )

    events = await list_events(
        USER_ID,
        start=datetime(2025, 1, 5, tzinfo=timezone.utc),
        end=datetime(2025, 1, 8),
    )

    assert [e.title for e in events] == ["Spanning", "Inside"]


@pytest.mark.asyncio
async def test_upcoming_returns_future_events_only(test_db):
    now = datetime.now(timezone.utc)
    for title, offset in (("Past", -2), ("Soon", 1), ("Later", 3)):
        await create_local_event(
            USER_ID, {"title": title, "start_time": (now + timedelta(days=offset)).isoformat()}
        )

    events = await list_upcoming_events(USER_ID, limit=1)

    assert [e.title for e in events] == ["Soon"]


@pytest.mark.asyncio
async def test_delete_removes_every_copy_of_the_event(test_db):
    local = await create_local_event(USER_ID, {"title": "Draft", "start_time": "2025-01-10T09:00:00Z"})
    await attach_external_ids(USER_ID, local.local_id, "shared-1", "cal-a")
    await replace_calendar_events(USER_ID, "cal-a", [_remote("shared-1", "2025-01-10T09:00:00Z")])

    deleted = await delete_local_event(USER_ID, local.local_id)

    assert deleted.external_id == "shared-1"
    assert await list_events(USER_ID) == []


@pytest.mark.asyncio
async def test_delete_remote_events_keeps_local_rows(test_db):
    await replace_calendar_events(USER_ID, "cal-a", [_remote("r1", "2025-01-10T09:00:00Z")])
    await create_local_event(USER_ID, {"title": "Local", "start_time": "2025-01-10T10:00:00Z"})

    assert await count_events(USER_ID) == {"local": 1, "remote": 1}
    assert await delete_remote_events(USER_ID) == 1
    assert await count_events(USER_ID) == {"local": 1, "remote": 0}
