"""Sync engine module."""

from calsync.sync.conflicts import list_pending_conflicts
from calsync.sync.engine import perform_full_sync, sync_single_event
from calsync.sync.preferences import get_sync_preferences, update_sync_preferences
from calsync.sync.resolution import ignore_conflict, resolve_conflict

__all__ = [
    "perform_full_sync",
    "sync_single_event",
    "list_pending_conflicts",
    "resolve_conflict",
    "ignore_conflict",
    "get_sync_preferences",
    "update_sync_preferences",
]
