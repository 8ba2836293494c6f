"""Google Calendar API wrapper."""

import asyncio
import functools
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from calsync.auth.google import ReauthorizationRequired
from calsync.config import get_settings

logger = logging.getLogger(__name__)


class ProviderTimeoutError(TimeoutError):
    """A provider call did not finish within the configured timeout."""


def _reraise_unauthorized(func):
    """Turn HTTP 401 responses into ReauthorizationRequired."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except HttpError as e:
            if e.resp.status == 401:
                raise ReauthorizationRequired("Google rejected the access token") from e
            raise
    return wrapper


class GoogleCalendarClient:
    """Wrapper around Google Calendar API."""

    def __init__(self, access_token: str):
        """Initialize with access token."""
        self.credentials = Credentials(token=access_token)
        self.service = build("calendar", "v3", credentials=self.credentials, cache_discovery=False)

    @_reraise_unauthorized
    def list_events(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        max_results: int = 250,
    ) -> list[dict]:
        """
        List events in a time range, following pagination.

        Recurring events are expanded into instances and cancelled events are
        included so deletions on the Google side can be noticed.
        """
        request_params = {
            "calendarId": calendar_id,
            "timeMin": _rfc3339(time_min),
            "timeMax": _rfc3339(time_max),
            "maxResults": max_results,
            "singleEvents": True,
            "showDeleted": True,
            "orderBy": "startTime",
        }

        all_events = []
        page_token = None

        while True:
            if page_token:
                request_params["pageToken"] = page_token

            result = self.service.events().list(**request_params).execute()
            all_events.extend(result.get("items", []))

            page_token = result.get("nextPageToken")
            if not page_token:
                break

        return all_events

    @_reraise_unauthorized
    def get_event(self, calendar_id: str, event_id: str) -> Optional[dict]:
        """Get a single event, or None when it no longer exists."""
        try:
            return self.service.events().get(
                calendarId=calendar_id,
                eventId=event_id,
            ).execute()
        except HttpError as e:
            if e.resp.status in (404, 410):
                return None
            raise

    @_reraise_unauthorized
    def create_event(self, calendar_id: str, event_data: dict) -> dict:
        """Create an event on a calendar."""
        return self.service.events().insert(
            calendarId=calendar_id,
            body=event_data,
        ).execute()

    @_reraise_unauthorized
    def update_event(self, calendar_id: str, event_id: str, event_data: dict) -> dict:
        """Update an event."""
        return self.service.events().update(
            calendarId=calendar_id,
            eventId=event_id,
            body=event_data,
        ).execute()

    @_reraise_unauthorized
    def delete_event(self, calendar_id: str, event_id: str) -> bool:
        """Delete an event."""
        try:
            self.service.events().delete(
                calendarId=calendar_id,
                eventId=event_id,
            ).execute()
            return True
        except HttpError as e:
            if e.resp.status in (404, 410):
                # Already deleted
                return True
            raise


async def call_provider(func, *args, **kwargs):
    """
    Run a blocking client call in a worker thread with a timeout.

    Raises ProviderTimeoutError when ``provider_timeout_seconds`` elapses.
    """
    timeout = get_settings().provider_timeout_seconds
    try:
        return await asyncio.wait_for(asyncio.to_thread(func, *args, **kwargs), timeout=timeout)
    except asyncio.TimeoutError as e:
        name = getattr(func, "__name__", repr(func))
        raise ProviderTimeoutError(f"{name} timed out after {timeout}s") from e


def _rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def shift_months(value: datetime, months: int) -> datetime:
    """Move a datetime by whole calendar months, clamping the day."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    next_month = date(year + month // 12, month % 12 + 1, 1)
    last_day = (next_month - timedelta(days=1)).day
    return value.replace(year=year, month=month, day=min(value.day, last_day))


def compute_sync_window(
    now: datetime,
    months_back: Optional[int],
    months_ahead: Optional[int],
    max_months: Optional[int] = None,
) -> tuple[datetime, datetime]:
    """
    Bounded [time_min, time_max) fetch window around ``now``.

    Both bounds are required, positive, and at most ``max_months``.
    """
    if max_months is None:
        max_months = get_settings().max_sync_window_months

    for name, months in (("months_back", months_back), ("months_ahead", months_ahead)):
        if months is None:
            raise ValueError(f"Sync window {name} is required")
        if months <= 0:
            raise ValueError(f"Sync window {name} must be positive, got {months}")
        if months > max_months:
            raise ValueError(f"Sync window {name} must be at most {max_months}, got {months}")

    return shift_months(now, -months_back), shift_months(now, months_ahead)


async def get_calendar_client(user_id: str) -> GoogleCalendarClient:
    """Build a client for a user, refreshing the stored token if needed."""
    from calsync.auth.google import get_valid_access_token

    access_token = await get_valid_access_token(user_id)
    return GoogleCalendarClient(access_token)
