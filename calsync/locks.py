"""Database-backed mutual exclusion.

A lock is a row in the ``locks`` table. Acquiring is an INSERT that either
wins or hits the primary key, so it works across worker processes sharing
the database. Rows older than ``lock_timeout_minutes`` are treated as
abandoned and reclaimed before each attempt.

Each acquisition gets its own token, stored as ``locked_by``. Releasing
needs that token, so a holder whose lock was reclaimed as stale cannot
release the lock a later holder took.
"""

import logging
import os
import socket
import sqlite3
import uuid
from datetime import datetime, timedelta
from typing import Optional

from calsync.config import get_settings
from calsync.database import connection, transaction

logger = logging.getLogger(__name__)


def user_sync_lock_name(user_id: str) -> str:
    return f"user_sync:{user_id}"


def _worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


async def acquire_lock(lock_name: str, timeout_minutes: Optional[int] = None) -> Optional[str]:
    """
    Acquire a named lock.

    Returns the holder token if the lock was acquired, None if someone else
    holds it.
    """
    if timeout_minutes is None:
        timeout_minutes = get_settings().lock_timeout_minutes

    now = datetime.utcnow()
    cutoff = (now - timedelta(minutes=timeout_minutes)).isoformat()
    token = f"{_worker_id()}:{uuid.uuid4().hex}"

    async with transaction() as db:
        cursor = await db.execute(
            "DELETE FROM locks WHERE lock_name = ? AND locked_at < ?",
            (lock_name, cutoff)
        )
        if cursor.rowcount:
            logger.warning(f"Reclaimed stale lock {lock_name}")

    try:
        async with transaction() as db:
            await db.execute(
                """INSERT INTO locks (lock_name, locked_at, locked_by)
                   VALUES (?, ?, ?)""",
                (lock_name, now.isoformat(), token)
            )
    except sqlite3.IntegrityError:
        return None
    return token


async def release_lock(lock_name: str, token: str) -> bool:
    """Release a named lock held under ``token``; False if it is no longer ours."""
    async with transaction() as db:
        cursor = await db.execute(
            "DELETE FROM locks WHERE lock_name = ? AND locked_by = ?",
            (lock_name, token)
        )
    if cursor.rowcount == 0:
        logger.warning(f"Lock {lock_name} was reclaimed before release")
        return False
    return True


async def is_locked(lock_name: str) -> bool:
    async with connection() as db:
        cursor = await db.execute(
            "SELECT 1 FROM locks WHERE lock_name = ?", (lock_name,)
        )
        return await cursor.fetchone() is not None
