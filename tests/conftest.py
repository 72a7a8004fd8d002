"""Pytest configuration and fixtures."""

import os
import tempfile

import httpx
import pytest
import pytest_asyncio

# Set test environment variables before imports
os.environ["DATABASE_PATH"] = ":memory:"
os.environ["ENCRYPTION_KEY_FILE"] = os.path.join(tempfile.gettempdir(), "calendar-mirror-test.key")
os.environ["PUBLIC_URL"] = "http://localhost:3000"
os.environ["SESSION_SECRET_KEY"] = "test-session-secret"
os.environ["GOOGLE_CLIENT_ID"] = "test-client-id"
os.environ["GOOGLE_CLIENT_SECRET"] = "test-client-secret"
os.environ["SYNC_RATE_LIMIT_PER_MINUTE"] = "1000"

USER_ID = "user-1"


class FakeGoogleCalendar:
    """In-memory Google Calendar account shared by every client built during a test."""

    def __init__(self):
        self.calendars: list[dict] = []
        self.events: dict[str, list[dict]] = {}
        self.failing_calendars: set[str] = set()
        self.fail_list_calendars = False
        self.fail_writes = False
        self.tokens_seen: list[str] = []
        self.list_calendars_calls = 0
        self.list_events_calls: list[str] = []
        self.inserted: list[tuple[str, dict]] = []
        self.updated: list[tuple[str, str, dict]] = []
        self.deleted: list[tuple[str, str]] = []

    def client_class(self):
        fake = self

        class FakeClient:
            def __init__(self, access_token: str):
                fake.tokens_seen.append(access_token)

            def list_calendars(self):
                fake.list_calendars_calls += 1
                if fake.fail_list_calendars:
                    raise RuntimeError("calendarList.list unavailable")
                return list(fake.calendars)

            def list_events(self, calendar_id, time_min, time_max, max_results=250):
                fake.list_events_calls.append(calendar_id)
                if calendar_id in fake.failing_calendars:
                    raise RuntimeError(f"events.list failed for {calendar_id}")
                return list(fake.events.get(calendar_id, []))[:max_results]

            def insert_event(self, calendar_id, event_data):
                if fake.fail_writes:
                    raise RuntimeError("events.insert failed")
                fake.inserted.append((calendar_id, event_data))
                return {"id": f"remote-{len(fake.inserted)}", **event_data}

            def update_event(self, calendar_id, event_id, event_patch):
                if fake.fail_writes:
                    raise RuntimeError("events.patch failed")
                fake.updated.append((calendar_id, event_id, event_patch))
                return {"id": event_id, **event_patch}

            def delete_event(self, calendar_id, event_id):
                if fake.fail_writes:
                    raise RuntimeError("events.delete failed")
                fake.deleted.append((calendar_id, event_id))
                return True

        return FakeClient


@pytest.fixture(scope="function")
def test_encryption_key():
    """A fresh encryption key for tests."""
    from calendar_mirror.encryption import generate_encryption_key

    return generate_encryption_key()


@pytest_asyncio.fixture
async def test_db(test_encryption_key):
    """Create a test database with a clean engine state."""
    import calendar_mirror.database as db_module
    from calendar_mirror.encryption import init_encryption_manager
    from calendar_mirror.sync.locks import reset_user_locks
    from calendar_mirror.sync.orchestrator import reset_orchestrator

    # Reset the global connection
    db_module._db_connection = None
    init_encryption_manager(test_encryption_key)
    reset_user_locks()
    reset_orchestrator()

    db = await db_module.get_database()

    yield db

    reset_orchestrator()
    await db_module.close_database()
    db_module._db_connection = None


@pytest.fixture
def fake_google(monkeypatch):
    """Replace the Google Calendar client everywhere it is built."""
    fake = FakeGoogleCalendar()
    client_class = fake.client_class()

    for module in (
        "calendar_mirror.sync.calendars",
        "calendar_mirror.sync.fetcher",
        "calendar_mirror.sync.propagation",
    ):
        monkeypatch.setattr(f"{module}.GoogleCalendarClient", client_class)

    return fake


@pytest_asyncio.fixture
async def connected_user(test_db):
    """A user with a valid, unexpired calendar credential."""
    from calendar_mirror.sync.tokens import CALENDAR_SERVICE, upsert_credential

    await upsert_credential(
        USER_ID,
        CALENDAR_SERVICE,
        {"access_token": "access-1", "refresh_token": "refresh-1", "expires_in": 3600},
    )
    return USER_ID


@pytest.fixture
def auth_headers():
    """Bearer header for the default test user."""
    from calendar_mirror.auth.session import create_session_token

    return {"Authorization": f"Bearer {create_session_token(USER_ID)}"}


@pytest_asyncio.fixture
async def async_client(test_db):
    """Create an async test client."""
    from calendar_mirror.main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
