"""Conflict store.

Conflicts are append-only history: a record is created ``pending`` and moves
exactly once to ``resolved`` or ``ignored``. Both transitions are
compare-and-set updates guarded on ``resolution_status = 'pending'``.
"""

import json
import logging
from datetime import datetime
from typing import Optional

from calsync.database import connection, transaction
from calsync.sync.models import SyncConflict

logger = logging.getLogger(__name__)


def _timestamp(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


async def create_conflict(conflict: SyncConflict) -> SyncConflict:
    """Record a new conflict; the stored status is always ``pending``."""
    now = datetime.utcnow().isoformat()
    async with transaction() as db:
        cursor = await db.execute(
            """INSERT INTO sync_conflicts
               (user_id, local_event_id, google_event_id, conflict_type,
                local_event_data, google_event_data, local_modified_at,
                google_modified_at, detected_at, resolution_status)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 'pending')
               RETURNING *""",
            (
                conflict.user_id,
                conflict.local_event_id,
                conflict.google_event_id,
                conflict.conflict_type,
                json.dumps(conflict.local_event_data, default=str),
                json.dumps(conflict.google_event_data, default=str),
                _timestamp(conflict.local_modified_at),
                _timestamp(conflict.google_modified_at),
                now,
            )
        )
        row = await cursor.fetchone()
    created = SyncConflict.from_row(row)
    logger.info(
        f"Recorded {created.conflict_type} conflict {created.id} for user {created.user_id} "
        f"(local={created.local_event_id}, google={created.google_event_id})"
    )
    return created


async def get_conflict(conflict_id: int) -> Optional[SyncConflict]:
    async with connection() as db:
        cursor = await db.execute("SELECT * FROM sync_conflicts WHERE id = ?", (conflict_id,))
        row = await cursor.fetchone()
    return SyncConflict.from_row(row) if row else None


async def get_pending_conflict_for_pair(user_id: str, google_event_id: str) -> Optional[SyncConflict]:
    async with connection() as db:
        cursor = await db.execute(
            """SELECT * FROM sync_conflicts
               WHERE user_id = ? AND google_event_id = ? AND resolution_status = 'pending'
               ORDER BY id DESC LIMIT 1""",
            (user_id, google_event_id)
        )
        row = await cursor.fetchone()
    return SyncConflict.from_row(row) if row else None


async def list_pending_conflicts(user_id: str) -> list[SyncConflict]:
    """Pending conflicts for a user, newest first."""
    async with connection() as db:
        cursor = await db.execute(
            """SELECT * FROM sync_conflicts
               WHERE user_id = ? AND resolution_status = 'pending'
               ORDER BY detected_at DESC, id DESC""",
            (user_id,)
        )
        rows = await cursor.fetchall()
    return [SyncConflict.from_row(row) for row in rows]


async def count_pending_conflicts(user_id: str) -> int:
    async with connection() as db:
        cursor = await db.execute(
            """SELECT COUNT(*) FROM sync_conflicts
               WHERE user_id = ? AND resolution_status = 'pending'""",
            (user_id,)
        )
        return (await cursor.fetchone())[0]


async def mark_conflict_resolved(conflict_id: int, choice: str, resolver_id: Optional[str]) -> bool:
    """
    Transition a pending conflict to ``resolved``.

    Returns False when the conflict does not exist or was already resolved or
    ignored; the earlier outcome is left untouched.
    """
    async with transaction() as db:
        cursor = await db.execute(
            """UPDATE sync_conflicts SET
               resolution_status = 'resolved', resolution_choice = ?,
               resolved_at = ?, resolved_by = ?
               WHERE id = ? AND resolution_status = 'pending'""",
            (choice, datetime.utcnow().isoformat(), resolver_id, conflict_id)
        )
    return cursor.rowcount == 1


async def mark_conflict_ignored(conflict_id: int, resolver_id: Optional[str]) -> bool:
    """Transition a pending conflict to ``ignored``."""
    async with transaction() as db:
        cursor = await db.execute(
            """UPDATE sync_conflicts SET
               resolution_status = 'ignored', resolved_at = ?, resolved_by = ?
               WHERE id = ? AND resolution_status = 'pending'""",
            (datetime.utcnow().isoformat(), resolver_id, conflict_id)
        )
    return cursor.rowcount == 1
