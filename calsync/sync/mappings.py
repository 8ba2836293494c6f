"""Mapping store: the join table between local and Google events.

Mappings are never deleted. A correspondence that can no longer be kept is
marked ``error`` so it stays auditable.
"""

import logging
from datetime import datetime
from typing import Optional

from calsync.database import connection, transaction
from calsync.sync.models import SyncMapping

logger = logging.getLogger(__name__)


async def get_mapping_by_local_id(user_id: str, local_event_id: str) -> Optional[SyncMapping]:
    async with connection() as db:
        cursor = await db.execute(
            "SELECT * FROM sync_mappings WHERE user_id = ? AND local_event_id = ?",
            (user_id, local_event_id)
        )
        row = await cursor.fetchone()
    return SyncMapping.from_row(row) if row else None


async def get_mapping_by_google_id(user_id: str, google_event_id: str) -> Optional[SyncMapping]:
    async with connection() as db:
        cursor = await db.execute(
            "SELECT * FROM sync_mappings WHERE user_id = ? AND google_event_id = ?",
            (user_id, google_event_id)
        )
        row = await cursor.fetchone()
    return SyncMapping.from_row(row) if row else None


async def list_mappings(user_id: str) -> list[SyncMapping]:
    async with connection() as db:
        cursor = await db.execute(
            "SELECT * FROM sync_mappings WHERE user_id = ? ORDER BY id", (user_id,)
        )
        rows = await cursor.fetchall()
    return [SyncMapping.from_row(row) for row in rows]


async def upsert_mapping(mapping: SyncMapping) -> SyncMapping:
    """
    Create or update a mapping in one statement.

    Rows are matched by id when the mapping has one, otherwise by
    (user, local event id) when the local id is set, otherwise by
    (user, google event id). Applying the same mapping twice leaves one row.
    """
    now = datetime.utcnow().isoformat()
    last_synced_at = mapping.last_synced_at.isoformat() if mapping.last_synced_at else now

    params = (
        mapping.user_id,
        mapping.local_event_id,
        mapping.google_event_id,
        mapping.local_fingerprint,
        mapping.google_fingerprint,
        mapping.sync_status,
        mapping.error_message,
        last_synced_at,
        now,
    )
    update_set = """local_event_id = excluded.local_event_id,
           google_event_id = excluded.google_event_id,
           local_fingerprint = excluded.local_fingerprint,
           google_fingerprint = excluded.google_fingerprint,
           sync_status = excluded.sync_status,
           error_message = excluded.error_message,
           last_synced_at = excluded.last_synced_at,
           updated_at = excluded.updated_at"""

    if mapping.id is not None:
        query = f"""INSERT INTO sync_mappings
               (id, user_id, local_event_id, google_event_id, local_fingerprint,
                google_fingerprint, sync_status, error_message, last_synced_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET {update_set}
               RETURNING *"""
        params = (mapping.id, *params)
    else:
        conflict_target = (
            "user_id, local_event_id" if mapping.local_event_id else "user_id, google_event_id"
        )
        query = f"""INSERT INTO sync_mappings
               (user_id, local_event_id, google_event_id, local_fingerprint,
                google_fingerprint, sync_status, error_message, last_synced_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT({conflict_target}) DO UPDATE SET {update_set}
               RETURNING *"""

    async with transaction() as db:
        cursor = await db.execute(query, params)
        row = await cursor.fetchone()
    return SyncMapping.from_row(row)


async def mark_mapping_status(
    mapping_id: int,
    sync_status: str,
    error_message: Optional[str] = None,
) -> None:
    """Change a mapping's status without touching its fingerprints."""
    async with transaction() as db:
        await db.execute(
            """UPDATE sync_mappings SET sync_status = ?, error_message = ?, updated_at = ?
               WHERE id = ?""",
            (sync_status, error_message, datetime.utcnow().isoformat(), mapping_id)
        )
    if sync_status != "synced":
        logger.info(f"Mapping {mapping_id} marked {sync_status}: {error_message}")


async def count_mappings_by_status(user_id: str) -> dict[str, int]:
    counts = {"synced": 0, "pending": 0, "error": 0}
    async with connection() as db:
        cursor = await db.execute(
            """SELECT sync_status, COUNT(*) AS n FROM sync_mappings
               WHERE user_id = ? GROUP BY sync_status""",
            (user_id,)
        )
        rows = await cursor.fetchall()
    for row in rows:
        counts[row["sync_status"]] = row["n"]
    return counts
