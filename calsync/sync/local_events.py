"""Local event store."""

import json
import uuid
from datetime import date, datetime, time
from typing import Optional

from calsync.database import connection, transaction
from calsync.sync.models import LocalEvent

_COLUMNS = (
    "title",
    "description",
    "event_date",
    "start_time",
    "end_time",
    "location",
    "participants",
    "event_type",
    "source",
)


def _column_value(column: str, value):
    if column == "participants":
        return json.dumps(list(value or []))
    if isinstance(value, (date, time)):
        return value.isoformat()
    return value


def _row_values(draft: dict) -> dict:
    return {
        column: _column_value(column, draft[column])
        for column in _COLUMNS
        if column in draft
    }


async def list_local_events(
    user_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> list[LocalEvent]:
    """List a user's events, optionally limited to an inclusive date range."""
    query = "SELECT * FROM events WHERE user_id = ?"
    params: list = [user_id]
    if start_date is not None:
        query += " AND event_date >= ?"
        params.append(start_date.isoformat())
    if end_date is not None:
        query += " AND event_date <= ?"
        params.append(end_date.isoformat())
    query += " ORDER BY event_date, start_time"

    async with connection() as db:
        cursor = await db.execute(query, params)
        rows = await cursor.fetchall()
    return [LocalEvent.from_row(row) for row in rows]


async def get_local_event(event_id: str, user_id: Optional[str] = None) -> Optional[LocalEvent]:
    async with connection() as db:
        if user_id is None:
            cursor = await db.execute("SELECT * FROM events WHERE id = ?", (event_id,))
        else:
            cursor = await db.execute(
                "SELECT * FROM events WHERE id = ? AND user_id = ?", (event_id, user_id)
            )
        row = await cursor.fetchone()
    if row:
        return LocalEvent.from_row(row)
    return None


async def insert_local_event(draft: dict) -> LocalEvent:
    """Insert an event; ``draft`` must carry ``user_id`` and ``title``."""
    now = datetime.utcnow().isoformat()
    values = _row_values(draft)
    values.update({
        "id": draft.get("id") or str(uuid.uuid4()),
        "user_id": draft["user_id"],
        "created_at": now,
        "updated_at": now,
    })

    columns = ", ".join(values)
    placeholders = ", ".join("?" * len(values))
    async with transaction() as db:
        cursor = await db.execute(
            f"INSERT INTO events ({columns}) VALUES ({placeholders}) RETURNING *",
            tuple(values.values())
        )
        row = await cursor.fetchone()
    return LocalEvent.from_row(row)


async def update_local_event(event_id: str, draft: dict) -> Optional[LocalEvent]:
    """Overwrite the content fields present in ``draft``."""
    values = _row_values(draft)
    values["updated_at"] = datetime.utcnow().isoformat()

    assignments = ", ".join(f"{column} = ?" for column in values)
    async with transaction() as db:
        cursor = await db.execute(
            f"UPDATE events SET {assignments} WHERE id = ? RETURNING *",
            (*values.values(), event_id)
        )
        row = await cursor.fetchone()
    if row:
        return LocalEvent.from_row(row)
    return None


async def delete_local_event(event_id: str) -> bool:
    async with transaction() as db:
        cursor = await db.execute("DELETE FROM events WHERE id = ?", (event_id,))
    return cursor.rowcount > 0
