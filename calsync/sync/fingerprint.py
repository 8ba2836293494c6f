"""Content fingerprints for change detection.

A fingerprint covers only what a person would call the event's content:
title, description, date and times, location and the participant set.
Provider bookkeeping (etag, updated, htmlLink, ids) and local-only tags are
left out, so equal fingerprints mean "no meaningful change".

Local events and Google events are reduced to the same canonical shape, so a
local event materialized from a Google event has that event's fingerprint.
"""

import hashlib
import json
from datetime import time, tzinfo
from typing import Optional, Union

from calsync.sync.models import LocalEvent
from calsync.sync.translation import (
    UNTITLED_EVENT,
    implied_end_time,
    parse_google_times,
    participants_from_attendees,
)

Event = Union[LocalEvent, dict]


def _text(value) -> str:
    return (value or "").strip()


def _time_key(value: Optional[time]) -> Optional[str]:
    return value.strftime("%H:%M:%S") if value is not None else None


def _participant_set(participants) -> list[str]:
    # Order-insensitive; emails compare case-insensitively
    normalized = set()
    for participant in participants or []:
        value = _text(participant)
        if not value:
            continue
        normalized.add(value.lower() if "@" in value else value)
    return sorted(normalized)


def _canonical(title, description, event_date, start_time, end_time, location, participants) -> dict:
    if start_time is None:
        end_time = None
    elif end_time is None:
        end_time = implied_end_time(start_time)

    return {
        "title": _text(title) or UNTITLED_EVENT,
        "description": _text(description),
        "date": event_date.isoformat() if event_date else None,
        "start": _time_key(start_time),
        "end": _time_key(end_time),
        "location": _text(location),
        "participants": _participant_set(participants),
    }


def canonical_form(event: Event, tz: Optional[tzinfo] = None) -> dict:
    """Reduce either event representation to the fingerprinted fields."""
    if isinstance(event, LocalEvent):
        return _canonical(
            event.title,
            event.description,
            event.event_date,
            event.start_time,
            event.end_time,
            event.location,
            event.participants,
        )

    if isinstance(event, dict):
        event_date, start_time, end_time = parse_google_times(event, tz)
        return _canonical(
            event.get("summary"),
            event.get("description"),
            event_date,
            start_time,
            end_time,
            event.get("location"),
            participants_from_attendees(event.get("attendees")),
        )

    raise TypeError(f"Cannot fingerprint {type(event).__name__}")


def fingerprint(event: Event, tz: Optional[tzinfo] = None) -> str:
    """Deterministic content hash of a local or Google event."""
    payload = json.dumps(canonical_form(event, tz), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
