"""Sync control, status and conflict API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from calsync.auth.session import User, get_current_user
from calsync.locks import is_locked, user_sync_lock_name
from calsync.sync.conflicts import count_pending_conflicts, get_conflict, list_pending_conflicts
from calsync.sync.engine import perform_full_sync, sync_single_event
from calsync.sync.local_events import get_local_event
from calsync.sync.logs import list_sync_logs
from calsync.sync.mappings import count_mappings_by_status
from calsync.sync.models import (
    ResolutionChoice,
    SingleEventDirection,
    SyncConflict,
    SyncLog,
    SyncPreferences,
    SyncPreferencesUpdate,
    SyncResult,
)
from calsync.sync.preferences import get_sync_preferences, update_sync_preferences
from calsync.sync.resolution import ignore_conflict, resolve_conflict

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["sync"])


class SyncStatusResponse(BaseModel):
    """Overall sync status for a user."""
    sync_enabled: bool
    sync_direction: str
    sync_in_progress: bool
    last_sync_at: Optional[str] = None
    last_successful_sync_at: Optional[str] = None
    events_synced: int
    events_pending: int
    events_error: int
    pending_conflicts: int


class SyncLogResponse(BaseModel):
    """Sync log response."""
    entries: list[SyncLog]
    total: int
    page: int
    page_size: int


class SingleEventSyncRequest(BaseModel):
    direction: SingleEventDirection = "local_to_google"


class ResolveConflictRequest(BaseModel):
    choice: ResolutionChoice


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


@router.post("/run", response_model=SyncResult)
async def run_sync(user: User = Depends(get_current_user)):
    """Run a full sync for the current user and return its outcome."""
    return await perform_full_sync(user.id)


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(user: User = Depends(get_current_user)):
    """Get overall sync status for current user."""
    preferences = await get_sync_preferences(user.id)
    counts = await count_mappings_by_status(user.id)

    return SyncStatusResponse(
        sync_enabled=preferences.sync_enabled,
        sync_direction=preferences.sync_direction,
        sync_in_progress=await is_locked(user_sync_lock_name(user.id)),
        last_sync_at=_iso(preferences.last_sync_at),
        last_successful_sync_at=_iso(preferences.last_successful_sync_at),
        events_synced=counts["synced"],
        events_pending=counts["pending"],
        events_error=counts["error"],
        pending_conflicts=await count_pending_conflicts(user.id),
    )


@router.get("/log", response_model=SyncLogResponse)
async def get_sync_log(
    user: User = Depends(get_current_user),
    page: int = 1,
    page_size: int = 50,
    status_filter: Optional[str] = None,
):
    """Get sync activity log for current user."""
    if page < 1 or page_size < 1 or page_size > 200:
        raise HTTPException(status_code=422, detail="Invalid pagination")

    entries, total = await list_sync_logs(user.id, page, page_size, status_filter)
    return SyncLogResponse(entries=entries, total=total, page=page, page_size=page_size)


@router.post("/events/{event_id}")
async def sync_event(
    event_id: str,
    request: Optional[SingleEventSyncRequest] = None,
    user: User = Depends(get_current_user),
):
    """Immediately sync a single local event."""
    if await get_local_event(event_id, user.id) is None:
        raise HTTPException(status_code=404, detail="Event not found")

    direction = request.direction if request else "local_to_google"
    synced = await sync_single_event(user.id, event_id, direction)
    return {"status": "ok" if synced else "failed", "synced": synced}


@router.get("/conflicts", response_model=list[SyncConflict])
async def get_conflicts(user: User = Depends(get_current_user)):
    """List pending conflicts, newest first."""
    return await list_pending_conflicts(user.id)


async def _get_user_conflict(conflict_id: int, user: User) -> SyncConflict:
    conflict = await get_conflict(conflict_id)
    if conflict is None or conflict.user_id != user.id:
        raise HTTPException(status_code=404, detail="Conflict not found")
    return conflict


@router.post("/conflicts/{conflict_id}/resolve")
async def resolve(
    conflict_id: int,
    request: ResolveConflictRequest,
    user: User = Depends(get_current_user),
):
    """Resolve a pending conflict."""
    await _get_user_conflict(conflict_id, user)

    try:
        resolved = await resolve_conflict(conflict_id, request.choice, resolver_id=user.id)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    if not resolved:
        raise HTTPException(status_code=409, detail="Conflict is no longer pending")

    return {"status": "ok", "conflict": await get_conflict(conflict_id)}


@router.post("/conflicts/{conflict_id}/ignore")
async def ignore(conflict_id: int, user: User = Depends(get_current_user)):
    """Dismiss a pending conflict."""
    await _get_user_conflict(conflict_id, user)

    if not await ignore_conflict(conflict_id, resolver_id=user.id):
        raise HTTPException(status_code=409, detail="Conflict is no longer pending")

    return {"status": "ok"}


@router.get("/preferences", response_model=SyncPreferences)
async def get_preferences(user: User = Depends(get_current_user)):
    return await get_sync_preferences(user.id)


@router.patch("/preferences", response_model=SyncPreferences)
async def patch_preferences(
    request: SyncPreferencesUpdate,
    user: User = Depends(get_current_user),
):
    """Update sync preferences; omitted fields are left unchanged."""
    preferences = await update_sync_preferences(user.id, request)
    logger.info(f"User {user.id} updated sync preferences")
    return preferences
