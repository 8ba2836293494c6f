"""Sync log: one audit row per run, opened at start and closed once."""

import json
from datetime import datetime
from typing import Optional

from calsync.database import connection, transaction
from calsync.sync.models import SyncLog, SyncResult


async def create_sync_log(user_id: str, operation: str, direction: str) -> int:
    """Open a log entry in ``in_progress`` state and return its id."""
    async with transaction() as db:
        cursor = await db.execute(
            """INSERT INTO sync_logs (user_id, sync_operation, sync_direction, status, started_at)
               VALUES (?, ?, ?, 'in_progress', ?)
               RETURNING id""",
            (user_id, operation, direction, datetime.utcnow().isoformat())
        )
        row = await cursor.fetchone()
    return row["id"]


async def complete_sync_log(log_id: int, result: SyncResult, duration_ms: int) -> None:
    """Close a log entry with the run's counters."""
    status = "completed" if not result.errors else "failed"
    async with transaction() as db:
        await db.execute(
            """UPDATE sync_logs SET
               status = ?, events_processed = ?, events_created = ?, events_updated = ?,
               events_deleted = ?, conflicts_detected = ?, error_count = ?,
               error_details = ?, completed_at = ?, duration_ms = ?
               WHERE id = ? AND status = 'in_progress'""",
            (
                status,
                result.events_processed,
                result.events_created,
                result.events_updated,
                result.events_deleted,
                result.conflicts_detected,
                len(result.errors),
                json.dumps({"errors": result.errors}) if result.errors else None,
                datetime.utcnow().isoformat(),
                duration_ms,
                log_id,
            )
        )


async def get_sync_log(log_id: int) -> Optional[SyncLog]:
    async with connection() as db:
        cursor = await db.execute("SELECT * FROM sync_logs WHERE id = ?", (log_id,))
        row = await cursor.fetchone()
    return SyncLog.from_row(row) if row else None


async def list_sync_logs(
    user_id: str,
    page: int = 1,
    page_size: int = 50,
    status_filter: Optional[str] = None,
) -> tuple[list[SyncLog], int]:
    """Paginated log entries for a user, newest first, with the total count."""
    where = "WHERE user_id = ?"
    params: list = [user_id]
    if status_filter:
        where += " AND status = ?"
        params.append(status_filter)

    async with connection() as db:
        cursor = await db.execute(f"SELECT COUNT(*) FROM sync_logs {where}", params)
        total = (await cursor.fetchone())[0]

        cursor = await db.execute(
            f"SELECT * FROM sync_logs {where} ORDER BY started_at DESC, id DESC LIMIT ? OFFSET ?",
            [*params, page_size, (page - 1) * page_size]
        )
        rows = await cursor.fetchall()
    return [SyncLog.from_row(row) for row in rows], total
