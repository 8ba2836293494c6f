"""Applying conflict resolutions.

A resolution is claimed first (single-shot compare-and-set on the conflict
record) and applied afterwards. When applying fails the recorded choice
stands and the pair's mapping is marked ``pending`` with the error.
"""

import logging
import time
from typing import Optional

from calsync.sync.conflicts import get_conflict, mark_conflict_ignored, mark_conflict_resolved
from calsync.sync.engine import (
    parse_google_updated,
    save_pair,
    write_local,
    write_remote,
)
from calsync.sync.fingerprint import fingerprint
from calsync.sync.google_calendar import GoogleCalendarClient, call_provider, get_calendar_client
from calsync.sync.local_events import delete_local_event, get_local_event, update_local_event
from calsync.sync.logs import complete_sync_log, create_sync_log
from calsync.sync.mappings import get_mapping_by_google_id, mark_mapping_status, upsert_mapping
from calsync.sync.models import LocalEvent, SyncConflict, SyncMapping, SyncResult
from calsync.sync.preferences import get_sync_preferences
from calsync.sync.translation import get_local_timezone, to_local

logger = logging.getLogger(__name__)

RESOLUTION_CHOICES = ("keep_local", "keep_google", "merge")

_CHOICE_DIRECTION = {
    "keep_local": "local_to_google",
    "keep_google": "google_to_local",
    "merge": "bidirectional",
}


def choose_last_writer(conflict: SyncConflict) -> str:
    """Pick the side modified most recently; ties and unknowns keep local."""
    local_at = conflict.local_modified_at
    google_at = conflict.google_modified_at or parse_google_updated(conflict.google_event_data)
    if google_at is None:
        return "keep_local"
    if local_at is None:
        return "keep_google"
    if local_at.tzinfo is not None:
        local_at = local_at.replace(tzinfo=None)
    if google_at.tzinfo is not None:
        google_at = google_at.replace(tzinfo=None)
    return "keep_google" if google_at > local_at else "keep_local"


def _same_participant(a: str, b: str) -> bool:
    if "@" in a and "@" in b:
        return a.strip().lower() == b.strip().lower()
    return a.strip() == b.strip()


def merge_events(local_event: LocalEvent, google_event: dict, tz=None) -> dict:
    """
    Field-level merge of both sides into a local event draft.

    Non-empty local text fields win and empty ones are filled from Google.
    The local schedule wins when the local event has a date. Participants are
    the union of both sides, local order first.
    """
    remote = to_local(google_event, local_event.user_id, tz)
    merged = {}

    for field in ("title", "description", "location"):
        local_value = getattr(local_event, field) or ""
        merged[field] = local_value if local_value.strip() else remote[field]

    if local_event.event_date is not None:
        merged["event_date"] = local_event.event_date
        merged["start_time"] = local_event.start_time
        merged["end_time"] = local_event.end_time
    else:
        merged["event_date"] = remote["event_date"]
        merged["start_time"] = remote["start_time"]
        merged["end_time"] = remote["end_time"]

    participants = list(local_event.participants)
    for candidate in remote["participants"]:
        if not any(_same_participant(candidate, existing) for existing in participants):
            participants.append(candidate)
    merged["participants"] = participants

    return merged


async def resolve_conflict(
    conflict_id: int,
    choice: str,
    resolver_id: Optional[str] = None,
    client: Optional[GoogleCalendarClient] = None,
) -> bool:
    """
    Resolve a pending conflict and apply the choice.

    Returns False when the conflict does not exist or is no longer pending.
    Raises ValueError for an unknown choice or a merge of a deletion.
    """
    if choice not in RESOLUTION_CHOICES:
        raise ValueError(f"Unknown resolution choice: {choice}")

    conflict = await get_conflict(conflict_id)
    if conflict is None:
        return False
    if conflict.conflict_type == "deletion" and choice == "merge":
        raise ValueError("Deletion conflicts cannot be merged")

    if not await mark_conflict_resolved(conflict_id, choice, resolver_id):
        logger.info(f"Conflict {conflict_id} is no longer pending")
        return False

    logger.info(f"Conflict {conflict_id} resolved with {choice} by {resolver_id}")
    await _apply_resolution(conflict, choice, client)
    return True


async def ignore_conflict(conflict_id: int, resolver_id: Optional[str] = None) -> bool:
    """
    Dismiss a pending conflict, leaving both sides as they are.

    The pair is acknowledged so the same divergence is not reported again:
    a modification pair adopts the snapshot fingerprints, a deletion pair's
    mapping is retired.
    """
    conflict = await get_conflict(conflict_id)
    if conflict is None:
        return False
    if not await mark_conflict_ignored(conflict_id, resolver_id):
        return False

    mapping = await get_mapping_by_google_id(conflict.user_id, conflict.google_event_id)
    if mapping is None:
        return True

    if conflict.conflict_type == "deletion":
        await mark_mapping_status(mapping.id, "error", f"Deletion conflict {conflict_id} ignored")
    else:
        tz = get_local_timezone()
        await upsert_mapping(mapping.model_copy(update={
            "local_fingerprint": fingerprint(LocalEvent(**conflict.local_event_data)),
            "google_fingerprint": fingerprint(conflict.google_event_data, tz),
            "sync_status": "synced",
            "error_message": None,
        }))

    logger.info(f"Conflict {conflict_id} ignored by {resolver_id}")
    return True


async def _apply_resolution(
    conflict: SyncConflict,
    choice: str,
    client: Optional[GoogleCalendarClient],
) -> None:
    started = time.monotonic()
    user_id = conflict.user_id
    result = SyncResult(status="in_progress", events_processed=1)
    result.log_id = await create_sync_log(user_id, "conflict_resolution", _CHOICE_DIRECTION[choice])
    mapping = await get_mapping_by_google_id(user_id, conflict.google_event_id)

    try:
        if client is None:
            client = await get_calendar_client(user_id)
        calendar_id = (await get_sync_preferences(user_id)).calendar_id
        tz = get_local_timezone()

        if conflict.conflict_type == "deletion":
            await _apply_deletion(conflict, choice, mapping, client, calendar_id, tz, result)
        else:
            await _apply_modification(conflict, choice, mapping, client, calendar_id, tz, result)

        result.status = "completed"
    except Exception as e:
        logger.error(f"Applying resolution of conflict {conflict.id} failed: {e}")
        result.status = "failed"
        result.errors.append(str(e))
        if mapping is not None:
            await mark_mapping_status(mapping.id, "pending", str(e))

    result.success = not result.errors
    await complete_sync_log(result.log_id, result, int((time.monotonic() - started) * 1000))


async def _fetch_google(client, calendar_id: str, google_event_id: str) -> dict:
    google_event = await call_provider(client.get_event, calendar_id, google_event_id)
    if google_event is None or google_event.get("status") == "cancelled":
        raise LookupError(f"Google event {google_event_id} no longer exists")
    return google_event


async def _require_local(conflict: SyncConflict) -> LocalEvent:
    local_event = None
    if conflict.local_event_id:
        local_event = await get_local_event(conflict.local_event_id, conflict.user_id)
    if local_event is None:
        raise LookupError(f"Local event {conflict.local_event_id} no longer exists")
    return local_event


async def _apply_modification(
    conflict: SyncConflict,
    choice: str,
    mapping: Optional[SyncMapping],
    client,
    calendar_id: str,
    tz,
    result: SyncResult,
) -> None:
    user_id = conflict.user_id
    google_id = conflict.google_event_id
    mapping_id = mapping.id if mapping else None
    local_event = await _require_local(conflict)

    if choice == "keep_local":
        google_event = await write_remote(client, calendar_id, local_event, google_id, tz)
    elif choice == "keep_google":
        google_event = await _fetch_google(client, calendar_id, google_id)
        local_event = await write_local(google_event, user_id, tz, local_event.id)
    else:
        current = await _fetch_google(client, calendar_id, google_id)
        local_event = await update_local_event(local_event.id, merge_events(local_event, current, tz))
        google_event = await write_remote(client, calendar_id, local_event, google_id, tz)

    await save_pair(user_id, local_event, google_event, tz, mapping_id)
    result.events_updated += 1


async def _apply_deletion(
    conflict: SyncConflict,
    choice: str,
    mapping: Optional[SyncMapping],
    client,
    calendar_id: str,
    tz,
    result: SyncResult,
) -> None:
    user_id = conflict.user_id
    mapping_id = mapping.id if mapping else None

    if conflict.google_deleted:
        if choice == "keep_google":
            if conflict.local_event_id and await delete_local_event(conflict.local_event_id):
                result.events_deleted += 1
            if mapping_id is not None:
                await mark_mapping_status(mapping_id, "error", "Deleted in Google Calendar")
        else:
            local_event = await _require_local(conflict)
            google_event = await write_remote(client, calendar_id, local_event, None, tz)
            await save_pair(user_id, local_event, google_event, tz, mapping_id)
            result.events_created += 1
        return

    if choice == "keep_google":
        google_event = await _fetch_google(client, calendar_id, conflict.google_event_id)
        local_event = await write_local(google_event, user_id, tz)
        await save_pair(user_id, local_event, google_event, tz, mapping_id)
        result.events_created += 1
    else:
        await call_provider(client.delete_event, calendar_id, conflict.google_event_id)
        result.events_deleted += 1
        if mapping_id is not None:
            await mark_mapping_status(mapping_id, "error", "Deleted locally")
