"""Tests for content fingerprints."""

from datetime import date, time

import pytest

from calsync.sync.fingerprint import canonical_form, fingerprint
from calsync.sync.models import LocalEvent
from calsync.sync.translation import to_local


def _local(**overrides) -> LocalEvent:
    data = {
        "id": "evt-1",
        "user_id": "user-1",
        "title": "Soccer practice",
        "description": "Bring cleats",
        "event_date": date(2025, 3, 10),
        "start_time": time(17, 0),
        "end_time": time(18, 30),
        "location": "Field 3",
        "participants": ["Coach Sam", "parent@example.com"],
    }
    data.update(overrides)
    return LocalEvent(**data)


def _google(**overrides) -> dict:
    event = {
        "id": "g-1",
        "summary": "Soccer practice",
        "description": "Bring cleats",
        "location": "Field 3",
        "start": {"dateTime": "2025-03-10T17:00:00Z"},
        "end": {"dateTime": "2025-03-10T18:30:00Z"},
        "attendees": [{"displayName": "Coach Sam"}, {"email": "parent@example.com"}],
        "etag": '"1"',
        "updated": "2025-03-01T10:00:00Z",
        "htmlLink": "https://calendar.example/g-1",
    }
    event.update(overrides)
    return event


def test_fingerprint_is_deterministic():
    assert fingerprint(_local()) == fingerprint(_local())
    assert len(fingerprint(_local())) == 64


def test_participant_order_and_email_case_do_not_matter():
    a = _local(participants=["Coach Sam", "parent@example.com", "Kid"])
    b = _local(participants=["Kid", "PARENT@example.com", "Coach Sam", "Kid"])
    assert fingerprint(a) == fingerprint(b)


def test_local_only_tags_are_ignored():
    a = _local(event_type="sports", source="manual")
    b = _local(event_type="other", source="calendar_sync")
    assert fingerprint(a) == fingerprint(b)


def test_provider_bookkeeping_is_ignored():
    a = _google()
    b = _google(id="g-2", etag='"99"', updated="2030-01-01T00:00:00Z", htmlLink="elsewhere")
    assert fingerprint(a) == fingerprint(b)


@pytest.mark.parametrize(
    "change",
    [
        {"title": "Soccer game"},
        {"description": ""},
        {"location": "Field 4"},
        {"event_date": date(2025, 3, 11)},
        {"start_time": time(17, 30)},
        {"participants": ["Coach Sam"]},
    ],
)
def test_content_changes_change_the_fingerprint(change):
    assert fingerprint(_local(**change)) != fingerprint(_local())


def test_local_and_google_representations_agree():
    assert fingerprint(_local()) == fingerprint(_google())


def test_event_materialized_from_google_keeps_its_fingerprint():
    google_event = _google(summary=None, attendees=[{"email": "A@Example.com"}])
    draft = to_local(google_event, "user-1")
    local = LocalEvent(id="evt-9", **draft)

    assert fingerprint(local) == fingerprint(google_event)


def test_missing_end_means_one_hour():
    no_end = _local(end_time=None)
    explicit = _local(end_time=time(18, 0))
    assert fingerprint(no_end) == fingerprint(explicit)

    google_no_end = _google(end={})
    assert fingerprint(google_no_end) == fingerprint(explicit)


def test_all_day_events_ignore_end_time():
    local = _local(start_time=None, end_time=None)
    google_event = _google(start={"date": "2025-03-10"}, end={"date": "2025-03-11"})

    assert canonical_form(local)["start"] is None
    assert fingerprint(local) == fingerprint(google_event)


def test_text_is_trimmed_and_empty_title_defaults():
    assert fingerprint(_local(title="  Soccer practice ")) == fingerprint(_local())
    assert canonical_form(_local(title="   "))["title"] == "Untitled Event"


def test_unsupported_type_raises():
    with pytest.raises(TypeError):
        fingerprint(["not", "an", "event"])
