"""Conversion between local events and Google Calendar event resources.

Both directions are pure and total: malformed date data never raises. The
event degrades to an all-day (or undated) event and a warning is appended to
the optional ``warnings`` list so the caller can log it.
"""

import logging
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from calsync.config import get_settings
from calsync.sync.models import LocalEvent

logger = logging.getLogger(__name__)

DEFAULT_DURATION = timedelta(minutes=60)
UNTITLED_EVENT = "Untitled Event"

EventTimes = tuple[Optional[date], Optional[time], Optional[time]]


def _zone(name: Optional[str]) -> Optional[ZoneInfo]:
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def get_local_timezone() -> tzinfo:
    """The configured timezone for local date + time-of-day values."""
    name = get_settings().local_timezone
    zone = _zone(name)
    if zone is None:
        logger.warning(f"Unknown timezone {name!r}, falling back to UTC")
        return ZoneInfo("UTC")
    return zone


def _tz_name(tz: tzinfo) -> str:
    return getattr(tz, "key", None) or "UTC"


def implied_end_time(start_time: time) -> time:
    """End time-of-day for a timed event that has no explicit end."""
    return (datetime.combine(date(2000, 1, 1), start_time) + DEFAULT_DURATION).time()


def _parse_date(value) -> Optional[date]:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except (TypeError, ValueError):
        return None


def _parse_datetime(value, fallback_tz: tzinfo, target_tz: tzinfo) -> Optional[datetime]:
    """Parse an RFC 3339 value and express it in ``target_tz``."""
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=fallback_tz)
    return parsed.astimezone(target_tz)


def parse_google_times(
    google_event: dict,
    tz: Optional[tzinfo] = None,
    warnings: Optional[list] = None,
) -> EventTimes:
    """
    Extract (date, start time-of-day, end time-of-day) from a Google event.

    All-day events yield null times. Date-times are converted into ``tz``
    (the configured local timezone by default) before being split.
    """
    tz = tz or get_local_timezone()
    event_id = google_event.get("id", "<new>")
    start = google_event.get("start") or {}
    end = google_event.get("end") or {}

    if start.get("date"):
        event_date = _parse_date(start["date"])
        if event_date is None and warnings is not None:
            warnings.append(f"Event {event_id}: unparseable all-day date {start['date']!r}")
        return event_date, None, None

    if start.get("dateTime"):
        source_tz = _zone(start.get("timeZone")) or tz
        start_dt = _parse_datetime(start["dateTime"], source_tz, tz)
        if start_dt is None:
            if warnings is not None:
                warnings.append(
                    f"Event {event_id}: unparseable start {start['dateTime']!r}, treating as all-day"
                )
            return _parse_date(start["dateTime"]), None, None

        end_time = None
        if end.get("dateTime"):
            end_dt = _parse_datetime(end["dateTime"], _zone(end.get("timeZone")) or source_tz, tz)
            if end_dt is None:
                if warnings is not None:
                    warnings.append(f"Event {event_id}: unparseable end {end['dateTime']!r}, using default duration")
            else:
                end_time = end_dt.time().replace(microsecond=0)
        return start_dt.date(), start_dt.time().replace(microsecond=0), end_time

    if warnings is not None:
        warnings.append(f"Event {event_id}: no start date, treating as undated")
    return None, None, None


def participants_from_attendees(attendees) -> list[str]:
    """Attendee list to participant names, preferring email over display name."""
    participants = []
    for attendee in attendees or []:
        if not isinstance(attendee, dict):
            continue
        value = attendee.get("email") or attendee.get("displayName")
        if value:
            participants.append(value)
    return participants


def attendees_from_participants(participants) -> list[dict]:
    attendees = []
    for participant in participants or []:
        if not participant:
            continue
        if "@" in participant:
            attendees.append({"email": participant})
        else:
            attendees.append({"displayName": participant})
    return attendees


def to_google(
    local_event: LocalEvent,
    tz: Optional[tzinfo] = None,
    warnings: Optional[list] = None,
) -> dict:
    """Build a Google event body from a local event."""
    tz = tz or get_local_timezone()

    event = {
        "summary": local_event.title or UNTITLED_EVENT,
        "description": local_event.description or "",
        "location": local_event.location or "",
    }

    event_date = local_event.event_date
    if event_date is None:
        event_date = date.today()
        if warnings is not None:
            warnings.append(f"Local event {local_event.id}: no date, sending as all-day today")

    if local_event.start_time is not None:
        start_dt = datetime.combine(event_date, local_event.start_time, tzinfo=tz)
        if local_event.end_time is not None:
            end_dt = datetime.combine(event_date, local_event.end_time, tzinfo=tz)
            if end_dt <= start_dt:
                # Ends after midnight
                end_dt += timedelta(days=1)
        else:
            end_dt = start_dt + DEFAULT_DURATION

        event["start"] = {"dateTime": start_dt.isoformat(), "timeZone": _tz_name(tz)}
        event["end"] = {"dateTime": end_dt.isoformat(), "timeZone": _tz_name(tz)}
    else:
        # All-day; Google's end date is exclusive
        event["start"] = {"date": event_date.isoformat()}
        event["end"] = {"date": (event_date + timedelta(days=1)).isoformat()}

    attendees = attendees_from_participants(local_event.participants)
    if attendees:
        event["attendees"] = attendees

    return event


def to_local(
    google_event: dict,
    user_id: str,
    tz: Optional[tzinfo] = None,
    warnings: Optional[list] = None,
) -> dict:
    """Build a local event draft from a Google event."""
    event_date, start_time, end_time = parse_google_times(google_event, tz, warnings)

    return {
        "user_id": user_id,
        "title": google_event.get("summary") or UNTITLED_EVENT,
        "description": google_event.get("description") or "",
        "event_date": event_date,
        "start_time": start_time,
        "end_time": end_time,
        "location": google_event.get("location") or "",
        "participants": participants_from_attendees(google_event.get("attendees")),
        "event_type": "other",
        "source": "calendar_sync",
    }
