"""Tests for the sync log."""

import pytest

from calsync.sync.logs import complete_sync_log, create_sync_log, get_sync_log, list_sync_logs
from calsync.sync.models import SyncResult


@pytest.mark.asyncio
async def test_log_lifecycle(test_db):
    log_id = await create_sync_log("user-1", "full_sync", "bidirectional")

    opened = await get_sync_log(log_id)
    assert opened.status == "in_progress"
    assert opened.started_at is not None

    await complete_sync_log(log_id, SyncResult(events_processed=3, events_created=1), 42)

    closed = await get_sync_log(log_id)
    assert closed.status == "completed"
    assert closed.events_processed == 3
    assert closed.events_created == 1
    assert closed.duration_ms == 42
    assert closed.completed_at is not None


@pytest.mark.asyncio
async def test_log_with_errors_is_failed_and_closed_once(test_db):
    log_id = await create_sync_log("user-1", "full_sync", "bidirectional")

    await complete_sync_log(log_id, SyncResult(errors=["boom"]), 5)
    await complete_sync_log(log_id, SyncResult(), 7)

    closed = await get_sync_log(log_id)
    assert closed.status == "failed"
    assert closed.error_count == 1
    assert closed.error_details == {"errors": ["boom"]}
    assert closed.duration_ms == 5


@pytest.mark.asyncio
async def test_list_paginates_newest_first(test_db):
    ids = [await create_sync_log("user-1", "full_sync", "bidirectional") for _ in range(3)]
    await create_sync_log("user-2", "full_sync", "bidirectional")

    page, total = await list_sync_logs("user-1", page=1, page_size=2)
    assert total == 3
    assert [entry.id for entry in page] == [ids[2], ids[1]]

    page, _ = await list_sync_logs("user-1", page=2, page_size=2)
    assert [entry.id for entry in page] == [ids[0]]

    failed, total = await list_sync_logs("user-1", status_filter="failed")
    assert failed == [] and total == 0
