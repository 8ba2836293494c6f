"""Database connection and schema management."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import aiosqlite

from calsync.config import get_settings

logger = logging.getLogger(__name__)

# Global database connection
_db_connection: Optional[aiosqlite.Connection] = None
_db_lock = asyncio.Lock()
# Guards statement units on the shared connection; created with it
_access_lock: Optional[asyncio.Lock] = None


SCHEMA = """
-- Locally-owned events
CREATE TABLE IF NOT EXISTS events (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT DEFAULT '',
    event_date TEXT,
    start_time TEXT,
    end_time TEXT,
    location TEXT DEFAULT '',
    participants TEXT DEFAULT '[]',
    event_type TEXT DEFAULT 'other'
        CHECK (event_type IN ('sports', 'party', 'meeting', 'medical', 'school', 'family', 'other')),
    source TEXT DEFAULT 'manual'
        CHECK (source IN ('manual', 'whatsapp', 'calendar_sync', 'ai')),
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_events_user_date ON events(user_id, event_date);

-- OAuth tokens (encrypted at rest), written by the consent flow
CREATE TABLE IF NOT EXISTS oauth_tokens (
    id INTEGER PRIMARY KEY,
    user_id TEXT NOT NULL UNIQUE,
    google_account_email TEXT,
    access_token_encrypted BLOB NOT NULL,
    refresh_token_encrypted BLOB NOT NULL,
    token_expiry TIMESTAMP,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP
);

-- Local event <-> Google event correspondence
CREATE TABLE IF NOT EXISTS sync_mappings (
    id INTEGER PRIMARY KEY,
    user_id TEXT NOT NULL,
    local_event_id TEXT,
    google_event_id TEXT NOT NULL,
    local_fingerprint TEXT,
    google_fingerprint TEXT,
    sync_status TEXT NOT NULL DEFAULT 'synced'
        CHECK (sync_status IN ('synced', 'pending', 'error')),
    error_message TEXT,
    last_synced_at TIMESTAMP,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP,
    UNIQUE(user_id, local_event_id),
    UNIQUE(user_id, google_event_id)
);

CREATE INDEX IF NOT EXISTS idx_sync_mappings_status ON sync_mappings(user_id, sync_status);

-- Divergences awaiting manual resolution
CREATE TABLE IF NOT EXISTS sync_conflicts (
    id INTEGER PRIMARY KEY,
    user_id TEXT NOT NULL,
    local_event_id TEXT,
    google_event_id TEXT NOT NULL,
    conflict_type TEXT NOT NULL DEFAULT 'modification'
        CHECK (conflict_type IN ('modification', 'deletion')),
    local_event_data TEXT NOT NULL,
    google_event_data TEXT NOT NULL,
    local_modified_at TIMESTAMP,
    google_modified_at TIMESTAMP,
    detected_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    resolution_status TEXT NOT NULL DEFAULT 'pending'
        CHECK (resolution_status IN ('pending', 'resolved', 'ignored')),
    resolution_choice TEXT
        CHECK (resolution_choice IS NULL OR resolution_choice IN ('keep_local', 'keep_google', 'merge')),
    resolved_at TIMESTAMP,
    resolved_by TEXT
);

CREATE INDEX IF NOT EXISTS idx_sync_conflicts_pending
    ON sync_conflicts(user_id, resolution_status, detected_at);

-- Audit record, one row per run
CREATE TABLE IF NOT EXISTS sync_logs (
    id INTEGER PRIMARY KEY,
    user_id TEXT NOT NULL,
    sync_operation TEXT NOT NULL,
    sync_direction TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'in_progress'
        CHECK (status IN ('in_progress', 'completed', 'failed')),
    events_processed INTEGER DEFAULT 0,
    events_created INTEGER DEFAULT 0,
    events_updated INTEGER DEFAULT 0,
    events_deleted INTEGER DEFAULT 0,
    conflicts_detected INTEGER DEFAULT 0,
    error_count INTEGER DEFAULT 0,
    error_details TEXT,
    started_at TIMESTAMP,
    completed_at TIMESTAMP,
    duration_ms INTEGER,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_sync_logs_user ON sync_logs(user_id, started_at);

-- Per-user sync configuration
CREATE TABLE IF NOT EXISTS user_sync_preferences (
    user_id TEXT PRIMARY KEY,
    sync_enabled BOOLEAN DEFAULT TRUE,
    sync_frequency_minutes INTEGER DEFAULT 15,
    sync_direction TEXT DEFAULT 'bidirectional'
        CHECK (sync_direction IN ('bidirectional', 'local_to_google', 'google_to_local')),
    auto_resolve_conflicts BOOLEAN DEFAULT FALSE,
    last_sync_at TIMESTAMP,
    last_successful_sync_at TIMESTAMP,
    sync_calendar_ids TEXT DEFAULT '["primary"]',
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP
);

-- Compare-and-set locks (per-user sync flag, scheduler jobs)
CREATE TABLE IF NOT EXISTS locks (
    lock_name TEXT PRIMARY KEY,
    locked_at TIMESTAMP NOT NULL,
    locked_by TEXT
);
"""


async def get_database() -> aiosqlite.Connection:
    """Get the database connection, creating it if necessary."""
    global _db_connection, _access_lock

    async with _db_lock:
        if _db_connection is None:
            settings = get_settings()
            _db_connection = await aiosqlite.connect(settings.database_path)
            _db_connection.row_factory = aiosqlite.Row
            _access_lock = asyncio.Lock()
            await _db_connection.execute("PRAGMA foreign_keys = ON")
            await _db_connection.execute("PRAGMA journal_mode = WAL")
            await init_schema(_db_connection)
        return _db_connection


async def init_schema(db: aiosqlite.Connection) -> None:
    """Initialize database schema."""
    await db.executescript(SCHEMA)
    await db.commit()
    logger.info("Database schema initialized")


@asynccontextmanager
async def connection() -> AsyncIterator[aiosqlite.Connection]:
    """
    Exclusive use of the shared connection for one read.

    Concurrent sync runs share a single connection. A statement that is
    executed but not yet fetched blocks another coroutine's commit, so every
    execute/fetch unit holds this lock.
    """
    db = await get_database()
    async with _access_lock:
        yield db


@asynccontextmanager
async def transaction() -> AsyncIterator[aiosqlite.Connection]:
    """Exclusive use of the shared connection, committed on exit or rolled back on error."""
    db = await get_database()
    async with _access_lock:
        try:
            yield db
        except BaseException:
            await db.rollback()
            raise
        await db.commit()


async def close_database() -> None:
    """Close the database connection."""
    global _db_connection, _access_lock

    async with _db_lock:
        if _db_connection is not None:
            await _db_connection.close()
            _db_connection = None
            _access_lock = None
            logger.info("Database connection closed")


