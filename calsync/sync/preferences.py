"""Per-user sync preferences, created lazily with defaults."""

import json
import logging
from datetime import datetime
from typing import Optional

from calsync.database import connection, transaction
from calsync.sync.models import SyncPreferences, SyncPreferencesUpdate

logger = logging.getLogger(__name__)


async def get_sync_preferences(user_id: str) -> SyncPreferences:
    """Get a user's preferences, inserting the defaults on first access."""
    async with connection() as db:
        cursor = await db.execute(
            "SELECT * FROM user_sync_preferences WHERE user_id = ?", (user_id,)
        )
        row = await cursor.fetchone()
    if row:
        return SyncPreferences.from_row(row)

    now = datetime.utcnow().isoformat()
    async with transaction() as db:
        await db.execute(
            """INSERT INTO user_sync_preferences (user_id, created_at, updated_at)
               VALUES (?, ?, ?)
               ON CONFLICT(user_id) DO NOTHING""",
            (user_id, now, now)
        )
    logger.info(f"Created default sync preferences for user {user_id}")

    async with connection() as db:
        cursor = await db.execute(
            "SELECT * FROM user_sync_preferences WHERE user_id = ?", (user_id,)
        )
        row = await cursor.fetchone()
    return SyncPreferences.from_row(row)


async def update_sync_preferences(user_id: str, patch: SyncPreferencesUpdate) -> SyncPreferences:
    """Apply the fields set on ``patch`` and return the stored preferences."""
    await get_sync_preferences(user_id)

    updates = patch.model_dump(exclude_none=True)
    if "sync_calendar_ids" in updates:
        updates["sync_calendar_ids"] = json.dumps(updates["sync_calendar_ids"])
    if updates:
        await _write(user_id, updates)

    return await get_sync_preferences(user_id)


async def record_sync_attempt(user_id: str, successful: bool, at: Optional[datetime] = None) -> None:
    """Advance ``last_sync_at``, and ``last_successful_sync_at`` when successful."""
    timestamp = (at or datetime.utcnow()).isoformat()
    updates = {"last_sync_at": timestamp}
    if successful:
        updates["last_successful_sync_at"] = timestamp
    await _write(user_id, updates)


async def list_enabled_preferences() -> list[SyncPreferences]:
    async with connection() as db:
        cursor = await db.execute(
            "SELECT * FROM user_sync_preferences WHERE sync_enabled = TRUE ORDER BY user_id"
        )
        rows = await cursor.fetchall()
    return [SyncPreferences.from_row(row) for row in rows]


async def _write(user_id: str, updates: dict) -> None:
    updates = {**updates, "updated_at": datetime.utcnow().isoformat()}
    assignments = ", ".join(f"{column} = ?" for column in updates)
    async with transaction() as db:
        await db.execute(
            f"UPDATE user_sync_preferences SET {assignments} WHERE user_id = ?",
            (*updates.values(), user_id)
        )
