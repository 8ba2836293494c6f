"""Tests for the conflict store."""

import pytest

from calsync.database import get_database
from calsync.sync.conflicts import (
    count_pending_conflicts,
    create_conflict,
    get_conflict,
    get_pending_conflict_for_pair,
    list_pending_conflicts,
    mark_conflict_ignored,
    mark_conflict_resolved,
)
from calsync.sync.models import SyncConflict


def _conflict(**overrides) -> SyncConflict:
    data = {
        "user_id": "user-1",
        "local_event_id": "local-1",
        "google_event_id": "google-1",
        "local_event_data": {"title": "Local title"},
        "google_event_data": {"summary": "Google title"},
    }
    data.update(overrides)
    return SyncConflict(**data)


@pytest.mark.asyncio
async def test_create_is_always_pending(test_db):
    created = await create_conflict(_conflict(resolution_status="resolved", resolution_choice="merge"))

    assert created.id is not None
    assert created.resolution_status == "pending"
    assert created.resolution_choice is None
    assert created.local_event_data == {"title": "Local title"}
    assert created.detected_at is not None


@pytest.mark.asyncio
async def test_list_pending_newest_first(test_db):
    first = await create_conflict(_conflict())
    second = await create_conflict(_conflict(google_event_id="google-2"))
    third = await create_conflict(_conflict(google_event_id="google-3"))
    await mark_conflict_ignored(third.id, "user-1")
    await create_conflict(_conflict(user_id="user-2"))

    pending = await list_pending_conflicts("user-1")

    assert [c.id for c in pending] == [second.id, first.id]
    assert await count_pending_conflicts("user-1") == 2


@pytest.mark.asyncio
async def test_resolution_is_single_shot(test_db):
    created = await create_conflict(_conflict())

    assert await mark_conflict_resolved(created.id, "keep_local", "user-1") is True
    assert await mark_conflict_resolved(created.id, "keep_google", "user-1") is False
    assert await mark_conflict_ignored(created.id, "user-1") is False

    stored = await get_conflict(created.id)
    assert stored.resolution_status == "resolved"
    assert stored.resolution_choice == "keep_local"
    assert stored.resolved_by == "user-1"
    assert stored.resolved_at is not None


@pytest.mark.asyncio
async def test_resolving_unknown_conflict_returns_false(test_db):
    assert await mark_conflict_resolved(999, "keep_local", "user-1") is False
    assert await get_conflict(999) is None


@pytest.mark.asyncio
async def test_pending_conflict_for_pair(test_db):
    created = await create_conflict(_conflict())

    found = await get_pending_conflict_for_pair("user-1", "google-1")
    assert found.id == created.id

    await mark_conflict_resolved(created.id, "keep_google", None)
    assert await get_pending_conflict_for_pair("user-1", "google-1") is None


@pytest.mark.asyncio
async def test_deleted_side_is_derived_from_snapshots(test_db):
    local_gone = await create_conflict(_conflict(conflict_type="deletion", local_event_data={}))
    google_gone = await create_conflict(
        _conflict(conflict_type="deletion", google_event_id="google-2", google_event_data={})
    )

    assert local_gone.local_deleted and not local_gone.google_deleted
    assert google_gone.google_deleted and not google_gone.local_deleted


@pytest.mark.asyncio
async def test_snapshots_are_stored_as_json(test_db):
    await create_conflict(_conflict())

    db = await get_database()
    cursor = await db.execute("SELECT local_event_data FROM sync_conflicts")
    row = await cursor.fetchone()
    assert row["local_event_data"] == '{"title": "Local title"}'
