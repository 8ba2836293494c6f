"""Pytest configuration and fixtures."""

import copy
import itertools
import os
import tempfile
from datetime import datetime, timezone
from typing import Optional

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from googleapiclient.errors import HttpError

# Set test environment variables before imports
os.environ["DATABASE_PATH"] = ":memory:"
os.environ["ENCRYPTION_KEY_FILE"] = "/tmp/test_encryption.key"
os.environ["PUBLIC_URL"] = "http://localhost:3000"
os.environ["SESSION_SECRET_KEY"] = "test-session-secret"
os.environ["LOCAL_TIMEZONE"] = "UTC"


@pytest.fixture(scope="function")
def test_encryption_key():
    """Create a temporary encryption key and install it globally."""
    from calsync.encryption import generate_encryption_key, init_encryption_manager
    import calsync.encryption as encryption_module

    key = generate_encryption_key()

    # Write to temp file
    with tempfile.NamedTemporaryFile(mode="wb", delete=False, suffix=".key") as f:
        f.write(key)
        key_path = f.name

    init_encryption_manager(key)

    yield key

    encryption_module._encryption_manager = None
    if os.path.exists(key_path):
        os.remove(key_path)


@pytest_asyncio.fixture
async def test_db():
    """Create a test database."""
    from calsync.database import get_database, close_database, init_schema
    import calsync.database as db_module

    # Reset the global connection
    db_module._db_connection = None

    # Create in-memory database
    db = await get_database()
    await init_schema(db)

    yield db

    await close_database()
    db_module._db_connection = None


@pytest.fixture
def client():
    """Create a test client for the FastAPI app (lifespan not started)."""
    from calsync.main import app

    return TestClient(app)


class FakeResponse:
    def __init__(self, status: int):
        self.status = status
        self.reason = "fake"


def fake_http_error(status: int) -> HttpError:
    return HttpError(FakeResponse(status), b"{}")


class FakeCalendarClient:
    """In-memory stand-in for GoogleCalendarClient with the same sync methods."""

    def __init__(self):
        self.events: dict[str, dict] = {}
        self.calls: list[tuple] = []
        self.fail_on: dict[str, Exception] = {}
        self._ids = itertools.count(1)
        self._clock = itertools.count(1)

    def _stamp(self, event: dict) -> dict:
        tick = next(self._clock)
        event["updated"] = datetime(2030, 1, 1, tzinfo=timezone.utc).replace(
            second=tick % 60, minute=tick // 60 % 60
        ).isoformat().replace("+00:00", "Z")
        event["etag"] = f'"etag-{tick}"'
        event["htmlLink"] = f"https://calendar.example/{event['id']}"
        return event

    def _maybe_fail(self, name: str) -> None:
        if name in self.fail_on:
            raise self.fail_on[name]

    def add_event(self, event: dict, updated: Optional[str] = None) -> dict:
        """Seed an event as if created directly in Google Calendar."""
        event = copy.deepcopy(event)
        event.setdefault("id", f"g-{next(self._ids)}")
        event.setdefault("status", "confirmed")
        self._stamp(event)
        if updated:
            event["updated"] = updated
        self.events[event["id"]] = event
        return copy.deepcopy(event)

    def edit_event(self, event_id: str, updated: Optional[str] = None, **changes) -> dict:
        """Simulate an edit made in Google Calendar."""
        event = self.events[event_id]
        event.update(changes)
        self._stamp(event)
        if updated:
            event["updated"] = updated
        return copy.deepcopy(event)

    def cancel_event(self, event_id: str) -> None:
        self.events[event_id]["status"] = "cancelled"
        self._stamp(self.events[event_id])

    def list_events(self, calendar_id, time_min, time_max, max_results=250):
        self.calls.append(("list_events", calendar_id))
        self._maybe_fail("list_events")
        return [copy.deepcopy(event) for event in self.events.values()]

    def get_event(self, calendar_id, event_id):
        self.calls.append(("get_event", calendar_id, event_id))
        self._maybe_fail("get_event")
        event = self.events.get(event_id)
        return copy.deepcopy(event) if event else None

    def create_event(self, calendar_id, event_data):
        self.calls.append(("create_event", calendar_id))
        self._maybe_fail("create_event")
        event = copy.deepcopy(event_data)
        event["id"] = f"g-{next(self._ids)}"
        event["status"] = "confirmed"
        self.events[event["id"]] = self._stamp(event)
        return copy.deepcopy(event)

    def update_event(self, calendar_id, event_id, event_data):
        self.calls.append(("update_event", calendar_id, event_id))
        self._maybe_fail("update_event")
        if event_id not in self.events:
            raise fake_http_error(404)
        event = copy.deepcopy(event_data)
        event["id"] = event_id
        event["status"] = "confirmed"
        self.events[event_id] = self._stamp(event)
        return copy.deepcopy(event)

    def delete_event(self, calendar_id, event_id):
        self.calls.append(("delete_event", calendar_id, event_id))
        self._maybe_fail("delete_event")
        if event_id in self.events:
            self.cancel_event(event_id)
        return True

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def fake_calendar(monkeypatch):
    """Route every provider lookup to one in-memory calendar."""
    fake = FakeCalendarClient()

    async def fake_get_calendar_client(_user_id: str):
        return fake

    monkeypatch.setattr("calsync.sync.engine.get_calendar_client", fake_get_calendar_client)
    monkeypatch.setattr("calsync.sync.resolution.get_calendar_client", fake_get_calendar_client)
    return fake


@pytest.fixture
def http_error():
    """Factory for googleapiclient HttpError with a given status."""
    return fake_http_error


@pytest.fixture
def mock_google_api(mocker):
    """Mock the discovery-built Calendar service."""
    mock_service = mocker.MagicMock()

    mock_service.events.return_value.list.return_value.execute.return_value = {"items": []}
    mock_service.events.return_value.get.return_value.execute.return_value = {
        "id": "event1",
        "status": "confirmed",
        "summary": "Test Event",
        "start": {"dateTime": "2030-01-01T10:00:00Z"},
        "end": {"dateTime": "2030-01-01T11:00:00Z"},
    }

    mocker.patch(
        "calsync.sync.google_calendar.build",
        return_value=mock_service,
    )

    return mock_service
