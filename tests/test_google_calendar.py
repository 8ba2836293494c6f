"""Tests for the Google Calendar client wrapper and sync window."""

import time
from datetime import datetime, timezone

import pytest

from calsync.auth.google import ReauthorizationRequired
from calsync.sync.google_calendar import (
    GoogleCalendarClient,
    ProviderTimeoutError,
    call_provider,
    compute_sync_window,
    shift_months,
)


# ---------------------------------------------------------------------------
# Sync window
# ---------------------------------------------------------------------------


def test_shift_months_clamps_day():
    assert shift_months(datetime(2024, 1, 31, 12, 0), 1) == datetime(2024, 2, 29, 12, 0)
    assert shift_months(datetime(2025, 1, 31), 1) == datetime(2025, 2, 28)
    assert shift_months(datetime(2025, 3, 15), -3) == datetime(2024, 12, 15)
    assert shift_months(datetime(2025, 11, 30), 3) == datetime(2026, 2, 28)


def test_compute_sync_window_bounds():
    now = datetime(2025, 6, 15, 9, 30, tzinfo=timezone.utc)

    time_min, time_max = compute_sync_window(now, 3, 6, max_months=24)

    assert time_min == datetime(2025, 3, 15, 9, 30, tzinfo=timezone.utc)
    assert time_max == datetime(2025, 12, 15, 9, 30, tzinfo=timezone.utc)
    assert time_min < now < time_max


@pytest.mark.parametrize("back, ahead", [(None, 6), (3, None), (0, 6), (3, -1), (25, 6), (3, 25)])
def test_compute_sync_window_rejects_bad_bounds(back, ahead):
    with pytest.raises(ValueError):
        compute_sync_window(datetime(2025, 6, 15), back, ahead, max_months=24)


def test_compute_sync_window_uses_configured_maximum():
    with pytest.raises(ValueError):
        compute_sync_window(datetime(2025, 6, 15), 3, 1000)


# ---------------------------------------------------------------------------
# Client wrapper
# ---------------------------------------------------------------------------


def test_list_events_follows_pagination(mock_google_api):
    service = mock_google_api
    service.events.return_value.list.return_value.execute.side_effect = [
        {"items": [{"id": "a"}], "nextPageToken": "page-2"},
        {"items": [{"id": "b"}]},
    ]
    client = GoogleCalendarClient("access-token")

    events = client.list_events(
        "primary",
        datetime(2025, 1, 1, tzinfo=timezone.utc),
        datetime(2025, 2, 1, tzinfo=timezone.utc),
    )

    assert [event["id"] for event in events] == ["a", "b"]
    list_calls = service.events.return_value.list.call_args_list
    first_kwargs = list_calls[0].kwargs
    assert first_kwargs["singleEvents"] is True
    assert first_kwargs["showDeleted"] is True
    assert first_kwargs["timeMin"] == "2025-01-01T00:00:00Z"
    assert list_calls[-1].kwargs["pageToken"] == "page-2"


def test_get_event_returns_resource(mock_google_api):
    event = GoogleCalendarClient("access-token").get_event("primary", "event1")

    assert event["summary"] == "Test Event"
    mock_google_api.events.return_value.get.assert_called_with(calendarId="primary", eventId="event1")


def test_get_event_missing_returns_none(mock_google_api, http_error):
    service = mock_google_api
    service.events.return_value.get.return_value.execute.side_effect = http_error(404)

    assert GoogleCalendarClient("access-token").get_event("primary", "gone") is None


def test_delete_event_already_gone_is_success(mock_google_api, http_error):
    service = mock_google_api
    service.events.return_value.delete.return_value.execute.side_effect = http_error(410)

    assert GoogleCalendarClient("access-token").delete_event("primary", "gone") is True


def test_unauthorized_becomes_reauthorization_required(mock_google_api, http_error):
    service = mock_google_api
    service.events.return_value.insert.return_value.execute.side_effect = http_error(401)

    with pytest.raises(ReauthorizationRequired):
        GoogleCalendarClient("access-token").create_event("primary", {"summary": "x"})


def test_other_http_errors_propagate(mock_google_api, http_error):
    service = mock_google_api
    service.events.return_value.update.return_value.execute.side_effect = http_error(500)

    with pytest.raises(Exception) as exc_info:
        GoogleCalendarClient("access-token").update_event("primary", "g-1", {"summary": "x"})
    assert not isinstance(exc_info.value, ReauthorizationRequired)
    assert exc_info.value.resp.status == 500


# ---------------------------------------------------------------------------
# call_provider
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_call_provider_returns_result():
    def add(a, b):
        return a + b

    assert await call_provider(add, 2, b=3) == 5


@pytest.mark.asyncio
async def test_call_provider_times_out(monkeypatch):
    from calsync.config import get_settings

    monkeypatch.setattr(get_settings(), "provider_timeout_seconds", 0.05)

    def slow():
        time.sleep(0.5)

    with pytest.raises(ProviderTimeoutError):
        await call_provider(slow)


@pytest.mark.asyncio
async def test_get_calendar_client_without_token(test_db):
    from calsync.sync.google_calendar import get_calendar_client

    with pytest.raises(ReauthorizationRequired):
        await get_calendar_client("nobody")
