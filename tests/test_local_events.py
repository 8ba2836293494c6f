"""Tests for the local event store."""

from datetime import date, time

import pytest

from calsync.sync.local_events import (
    delete_local_event,
    get_local_event,
    insert_local_event,
    list_local_events,
    update_local_event,
)


def _draft(**overrides) -> dict:
    draft = {
        "user_id": "user-1",
        "title": "Piano lesson",
        "event_date": date(2025, 3, 10),
        "start_time": time(16, 0),
        "end_time": time(16, 45),
        "participants": ["Ms. Lee"],
        "event_type": "school",
    }
    draft.update(overrides)
    return draft


@pytest.mark.asyncio
async def test_insert_and_get_round_trip_types(test_db):
    created = await insert_local_event(_draft())

    assert created.id
    assert created.source == "manual"
    fetched = await get_local_event(created.id)
    assert fetched.event_date == date(2025, 3, 10)
    assert fetched.start_time == time(16, 0)
    assert fetched.participants == ["Ms. Lee"]
    assert fetched.event_type == "school"


@pytest.mark.asyncio
async def test_get_is_scoped_to_user(test_db):
    created = await insert_local_event(_draft())

    assert await get_local_event(created.id, "user-1") is not None
    assert await get_local_event(created.id, "someone-else") is None


@pytest.mark.asyncio
async def test_list_filters_by_user_and_date_range(test_db):
    await insert_local_event(_draft(title="early", event_date=date(2025, 1, 1)))
    await insert_local_event(_draft(title="inside", event_date=date(2025, 3, 10)))
    await insert_local_event(_draft(title="late", event_date=date(2025, 12, 1)))
    await insert_local_event(_draft(title="other user", user_id="user-2"))

    events = await list_local_events("user-1", date(2025, 2, 1), date(2025, 6, 1))
    assert [e.title for e in events] == ["inside"]

    assert len(await list_local_events("user-1")) == 3


@pytest.mark.asyncio
async def test_update_only_touches_given_fields(test_db):
    created = await insert_local_event(_draft())

    updated = await update_local_event(created.id, {"title": "Piano recital", "start_time": None})

    assert updated.title == "Piano recital"
    assert updated.start_time is None
    assert updated.event_type == "school"
    assert updated.participants == ["Ms. Lee"]


@pytest.mark.asyncio
async def test_update_and_delete_missing_event(test_db):
    assert await update_local_event("nope", {"title": "x"}) is None
    assert await delete_local_event("nope") is False


@pytest.mark.asyncio
async def test_delete(test_db):
    created = await insert_local_event(_draft())
    assert await delete_local_event(created.id) is True
    assert await get_local_event(created.id) is None
