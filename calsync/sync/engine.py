"""Core sync engine."""

import logging
import sqlite3
import time
from datetime import datetime, timezone, tzinfo
from typing import Optional

import httpx

from calsync.auth.google import ReauthorizationRequired, TokenRefreshError
from calsync.config import get_settings
from calsync.locks import acquire_lock, release_lock, user_sync_lock_name
from calsync.sync.conflicts import create_conflict, get_pending_conflict_for_pair
from calsync.sync.fingerprint import fingerprint
from calsync.sync.google_calendar import (
    GoogleCalendarClient,
    call_provider,
    compute_sync_window,
    get_calendar_client,
)
from calsync.sync.local_events import (
    get_local_event,
    insert_local_event,
    list_local_events,
    update_local_event,
)
from calsync.sync.logs import complete_sync_log, create_sync_log
from calsync.sync.mappings import (
    get_mapping_by_local_id,
    list_mappings,
    mark_mapping_status,
    upsert_mapping,
)
from calsync.sync.models import LocalEvent, SyncConflict, SyncMapping, SyncPreferences, SyncResult
from calsync.sync.preferences import get_sync_preferences, record_sync_attempt
from calsync.sync.translation import get_local_timezone, to_google, to_local

logger = logging.getLogger(__name__)

# Errors that abort the whole run instead of a single event
FATAL_ERRORS = (ReauthorizationRequired, sqlite3.Error)

# Local-only tags that a pull from Google must not overwrite
_LOCAL_ONLY_FIELDS = ("event_type", "source")


def _log_warnings(warnings: list) -> None:
    for warning in warnings:
        logger.info(f"Degraded translation: {warning}")


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def parse_google_updated(google_event: Optional[dict]) -> Optional[datetime]:
    """Google's ``updated`` timestamp as naive UTC, matching local timestamps."""
    value = (google_event or {}).get("updated")
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


async def write_remote(
    client: GoogleCalendarClient,
    calendar_id: str,
    local_event: LocalEvent,
    google_event_id: Optional[str],
    tz: tzinfo,
) -> dict:
    """Push a local event to Google: update when mapped, create otherwise."""
    warnings = []
    body = to_google(local_event, tz, warnings)
    _log_warnings(warnings)

    if google_event_id:
        return await call_provider(client.update_event, calendar_id, google_event_id, body)
    return await call_provider(client.create_event, calendar_id, body)


async def write_local(
    google_event: dict,
    user_id: str,
    tz: tzinfo,
    local_event_id: Optional[str] = None,
) -> LocalEvent:
    """Materialize a Google event locally, overwriting ``local_event_id`` when given."""
    warnings = []
    draft = to_local(google_event, user_id, tz, warnings)
    _log_warnings(warnings)

    if local_event_id is None:
        return await insert_local_event(draft)

    for field in _LOCAL_ONLY_FIELDS:
        draft.pop(field, None)
    updated = await update_local_event(local_event_id, draft)
    if updated is None:
        raise LookupError(f"Local event {local_event_id} no longer exists")
    return updated


async def save_pair(
    user_id: str,
    local_event: LocalEvent,
    google_event: dict,
    tz: tzinfo,
    mapping_id: Optional[int] = None,
) -> SyncMapping:
    """Record a freshly converged pair with both current fingerprints."""
    return await upsert_mapping(SyncMapping(
        id=mapping_id,
        user_id=user_id,
        local_event_id=local_event.id,
        google_event_id=google_event["id"],
        local_fingerprint=fingerprint(local_event),
        google_fingerprint=fingerprint(google_event, tz),
        sync_status="synced",
        error_message=None,
        last_synced_at=datetime.utcnow(),
    ))


class _FullSync:
    """State of one full sync run for one user."""

    def __init__(
        self,
        user_id: str,
        preferences: SyncPreferences,
        client: GoogleCalendarClient,
        result: SyncResult,
    ):
        self.user_id = user_id
        self.preferences = preferences
        self.calendar_id = preferences.calendar_id
        self.client = client
        self.result = result
        self.tz = get_local_timezone()

        self.by_local: dict[str, SyncMapping] = {}
        self.by_google: dict[str, SyncMapping] = {}
        self.remote_by_id: dict[str, dict] = {}
        # Google ids of pairs that produced a conflict during this run
        self.flagged: set[str] = set()
        # Google ids of pairs already converged by the Google -> local pass
        self.pulled: set[str] = set()

    async def run(self) -> None:
        settings = get_settings()
        time_min, time_max = compute_sync_window(
            datetime.now(self.tz),
            settings.sync_window_months_back,
            settings.sync_window_months_ahead,
        )

        local_events = await list_local_events(self.user_id, time_min.date(), time_max.date())
        remote_events = await call_provider(
            self.client.list_events,
            self.calendar_id,
            time_min,
            time_max,
            settings.provider_max_results,
        )
        self.remote_by_id = {event["id"]: event for event in remote_events if event.get("id")}

        mappings = await list_mappings(self.user_id)
        for mapping in mappings:
            self._index(mapping)

        self.result.events_processed = len(local_events) + len(remote_events)
        logger.info(
            f"Syncing user {self.user_id}: {len(local_events)} local, {len(remote_events)} Google events "
            f"between {time_min.date()} and {time_max.date()} ({self.preferences.sync_direction})"
        )

        if self.preferences.pulls_remote:
            for event in remote_events:
                await self._guarded(self._pull, event, f"google:{event.get('id')}",
                                    self.by_google.get(event.get("id")))

        if self.preferences.pushes_local:
            seen_local_ids = set()
            for local_event in local_events:
                seen_local_ids.add(local_event.id)
                await self._guarded(self._push, local_event, f"local:{local_event.id}",
                                    self.by_local.get(local_event.id))

            for mapping in mappings:
                if mapping.local_event_id and mapping.local_event_id not in seen_local_ids:
                    await self._guarded(self._check_missing_local, mapping,
                                        f"local:{mapping.local_event_id}", mapping)

    def _index(self, mapping: SyncMapping) -> None:
        if mapping.local_event_id:
            self.by_local[mapping.local_event_id] = mapping
        self.by_google[mapping.google_event_id] = mapping

    async def _guarded(self, handler, item, label: str, mapping: Optional[SyncMapping]) -> None:
        try:
            await handler(item)
        except FATAL_ERRORS:
            raise
        except Exception as e:
            logger.error(f"Error syncing {label} for user {self.user_id}: {e}")
            self.result.errors.append(f"{label}: {e}")
            if mapping is not None and mapping.id is not None and mapping.sync_status != "error":
                await mark_mapping_status(mapping.id, "pending", str(e))

    async def _save(self, local_event: LocalEvent, google_event: dict, mapping_id: Optional[int]) -> None:
        self._index(await save_pair(self.user_id, local_event, google_event, self.tz, mapping_id))

    # ------------------------------------------------------------------
    # Google -> local
    # ------------------------------------------------------------------

    async def _pull(self, google_event: dict) -> None:
        google_id = google_event["id"]
        mapping = self.by_google.get(google_id)
        cancelled = google_event.get("status") == "cancelled"

        if mapping is not None and mapping.sync_status == "error":
            logger.debug(f"Skipping retired mapping for Google event {google_id}")
            return

        if mapping is None or not mapping.local_event_id:
            if cancelled:
                return
            local_event = await write_local(google_event, self.user_id, self.tz)
            await self._save(local_event, google_event, mapping.id if mapping else None)
            self.result.events_created += 1
            logger.info(f"Created local event {local_event.id} from Google event {google_id}")
            return

        if cancelled:
            local_event = await get_local_event(mapping.local_event_id, self.user_id)
            if local_event is None:
                await mark_mapping_status(mapping.id, "error", "Deleted on both sides")
                return
            await self._conflict(mapping, "deletion", local_event, google_event)
            return

        if fingerprint(google_event, self.tz) == mapping.google_fingerprint:
            logger.debug(f"Google event {google_id} unchanged")
            return

        local_event = await get_local_event(mapping.local_event_id, self.user_id)
        if local_event is None:
            await self._conflict(mapping, "deletion", None, google_event)
            return

        if fingerprint(local_event) != mapping.local_fingerprint:
            await self._conflict(mapping, "modification", local_event, google_event)
            return

        local_event = await write_local(google_event, self.user_id, self.tz, local_event.id)
        await self._save(local_event, google_event, mapping.id)
        self.pulled.add(google_id)
        self.result.events_updated += 1
        logger.info(f"Updated local event {local_event.id} from Google event {google_id}")

    # ------------------------------------------------------------------
    # Local -> Google
    # ------------------------------------------------------------------

    async def _push(self, local_event: LocalEvent) -> None:
        mapping = self.by_local.get(local_event.id)

        if mapping is None:
            created = await write_remote(self.client, self.calendar_id, local_event, None, self.tz)
            await self._save(local_event, created, None)
            self.result.events_created += 1
            logger.info(f"Created Google event {created['id']} from local event {local_event.id}")
            return

        google_id = mapping.google_event_id
        if mapping.sync_status == "error":
            logger.debug(f"Skipping retired mapping for local event {local_event.id}")
            return
        if google_id in self.flagged or google_id in self.pulled:
            return
        if fingerprint(local_event) == mapping.local_fingerprint:
            logger.debug(f"Local event {local_event.id} unchanged")
            return

        google_event = self.remote_by_id.get(google_id)
        if google_event is None:
            google_event = await call_provider(self.client.get_event, self.calendar_id, google_id)

        if google_event is None or google_event.get("status") == "cancelled":
            await self._conflict(mapping, "deletion", local_event, google_event)
            return

        if fingerprint(google_event, self.tz) != mapping.google_fingerprint:
            await self._conflict(mapping, "modification", local_event, google_event)
            return

        updated = await write_remote(self.client, self.calendar_id, local_event, google_id, self.tz)
        await self._save(local_event, updated, mapping.id)
        self.result.events_updated += 1
        logger.info(f"Updated Google event {google_id} from local event {local_event.id}")

    async def _check_missing_local(self, mapping: SyncMapping) -> None:
        """A mapped local event was not in the window listing: moved or deleted."""
        google_event = self.remote_by_id.get(mapping.google_event_id)
        if (
            mapping.sync_status == "error"
            or mapping.google_event_id in self.flagged
            or google_event is None
            or google_event.get("status") == "cancelled"
        ):
            return

        local_event = await get_local_event(mapping.local_event_id, self.user_id)
        if local_event is not None:
            await self._push(local_event)
            return

        await self._conflict(mapping, "deletion", None, google_event)

    # ------------------------------------------------------------------
    # Conflicts
    # ------------------------------------------------------------------

    async def _conflict(
        self,
        mapping: SyncMapping,
        conflict_type: str,
        local_event: Optional[LocalEvent],
        google_event: Optional[dict],
    ) -> None:
        google_id = mapping.google_event_id
        self.flagged.add(google_id)
        self.result.conflicts_detected += 1

        existing = await get_pending_conflict_for_pair(self.user_id, google_id)
        if existing is not None:
            logger.debug(f"Conflict {existing.id} already pending for Google event {google_id}")
            return

        conflict = await create_conflict(SyncConflict(
            user_id=self.user_id,
            local_event_id=mapping.local_event_id,
            google_event_id=google_id,
            conflict_type=conflict_type,
            local_event_data=local_event.model_dump(mode="json") if local_event else {},
            google_event_data=google_event or {},
            local_modified_at=local_event.updated_at if local_event else None,
            google_modified_at=parse_google_updated(google_event),
        ))

        if self.preferences.auto_resolve_conflicts and conflict_type == "modification":
            from calsync.sync.resolution import choose_last_writer, resolve_conflict

            choice = choose_last_writer(conflict)
            logger.info(f"Auto-resolving conflict {conflict.id} with {choice}")
            await resolve_conflict(conflict.id, choice, resolver_id="auto", client=self.client)


async def perform_full_sync(user_id: str) -> SyncResult:
    """
    Run one full bidirectional sync for a user.

    Never runs twice at once for the same user: a concurrent request returns
    immediately with ``status="already_running"``.
    """
    result = SyncResult()

    preferences = await get_sync_preferences(user_id)
    if not preferences.sync_enabled:
        logger.info(f"Sync disabled for user {user_id}, skipping")
        result.status = "disabled"
        return result

    lock_name = user_sync_lock_name(user_id)
    token = await acquire_lock(lock_name)
    if token is None:
        logger.info(f"Sync already in progress for user {user_id}, skipping")
        result.status = "already_running"
        result.errors.append("Sync already in progress")
        return result

    try:
        return await _run_full_sync(user_id, preferences, result)
    finally:
        await release_lock(lock_name, token)


async def _run_full_sync(user_id: str, preferences: SyncPreferences, result: SyncResult) -> SyncResult:
    started = time.monotonic()

    try:
        client = await get_calendar_client(user_id)
    except ReauthorizationRequired as e:
        logger.warning(f"User {user_id} must reauthorize Google Calendar: {e}")
        result.status = "reauthorization_required"
        result.errors.append(str(e))
        await record_sync_attempt(user_id, successful=False)
        return result
    except (TokenRefreshError, httpx.HTTPError) as e:
        logger.error(f"Could not obtain a Google token for user {user_id}: {e}")
        result.status = "failed"
        result.errors.append(str(e))
        await record_sync_attempt(user_id, successful=False)
        return result

    result.log_id = await create_sync_log(user_id, "full_sync", preferences.sync_direction)
    result.status = "in_progress"

    try:
        await _FullSync(user_id, preferences, client, result).run()
        result.status = "completed" if not result.errors else "failed"
    except ReauthorizationRequired as e:
        logger.warning(f"User {user_id} must reauthorize Google Calendar: {e}")
        result.status = "reauthorization_required"
        result.errors.append(str(e))
    except Exception as e:
        logger.exception(f"Sync failed for user {user_id}: {e}")
        result.status = "failed"
        result.errors.append(f"Sync failed: {e}")

    result.success = not result.errors
    await record_sync_attempt(user_id, successful=result.success)
    await complete_sync_log(result.log_id, result, _elapsed_ms(started))

    logger.info(
        f"Sync {result.status} for user {user_id}: {result.events_created} created, "
        f"{result.events_updated} updated, {result.conflicts_detected} conflicts, "
        f"{len(result.errors)} errors"
    )
    return result


async def sync_single_event(
    user_id: str,
    local_event_id: str,
    direction: str = "local_to_google",
) -> bool:
    """
    Immediately sync one local event, outside a full run.

    ``local_to_google`` pushes the event (update when mapped, create
    otherwise); ``google_to_local`` pulls the mapped Google event over it.
    Conflicts are not consulted. Holds the user's sync lock, so it returns
    False without writing while a full run is in progress. Returns False on
    any failure.
    """
    if direction not in ("local_to_google", "google_to_local"):
        logger.warning(f"Unknown single event sync direction {direction!r}")
        return False

    lock_name = user_sync_lock_name(user_id)
    token = await acquire_lock(lock_name)
    if token is None:
        logger.info(f"Sync in progress for user {user_id}, not syncing event {local_event_id}")
        return False

    try:
        return await _sync_one(user_id, local_event_id, direction)
    finally:
        await release_lock(lock_name, token)


async def _sync_one(user_id: str, local_event_id: str, direction: str) -> bool:
    started = time.monotonic()
    mapping = None
    log_id = None
    result = SyncResult(status="in_progress")

    try:
        local_event = await get_local_event(local_event_id, user_id)
        if local_event is None:
            logger.warning(f"Local event {local_event_id} not found for user {user_id}")
            return False

        mapping = await get_mapping_by_local_id(user_id, local_event_id)
        if direction == "google_to_local" and mapping is None:
            logger.warning(f"Local event {local_event_id} has no Google counterpart")
            return False

        preferences = await get_sync_preferences(user_id)
        client = await get_calendar_client(user_id)
        tz = get_local_timezone()

        operation = "event_update" if mapping is not None else "event_create"
        log_id = await create_sync_log(user_id, operation, direction)
        result.events_processed = 1

        if direction == "local_to_google":
            google_event = await write_remote(
                client,
                preferences.calendar_id,
                local_event,
                mapping.google_event_id if mapping else None,
                tz,
            )
        else:
            google_event = await call_provider(
                client.get_event, preferences.calendar_id, mapping.google_event_id
            )
            if google_event is None or google_event.get("status") == "cancelled":
                raise LookupError(f"Google event {mapping.google_event_id} no longer exists")
            local_event = await write_local(google_event, user_id, tz, local_event.id)

        await save_pair(user_id, local_event, google_event, tz, mapping.id if mapping else None)
        if mapping is None:
            result.events_created = 1
        else:
            result.events_updated = 1
        result.success = True
        result.status = "completed"
        logger.info(f"Synced local event {local_event_id} ({direction})")
    except Exception as e:
        logger.error(f"Single event sync failed for {local_event_id}: {e}")
        result.errors.append(str(e))
        result.status = "failed"
        if mapping is not None and mapping.id is not None:
            await _mark_pending_quietly(mapping.id, str(e))

    if log_id is not None:
        try:
            await complete_sync_log(log_id, result, _elapsed_ms(started))
        except sqlite3.Error as e:
            logger.error(f"Could not close sync log {log_id}: {e}")
    return result.success


async def _mark_pending_quietly(mapping_id: int, message: str) -> None:
    try:
        await mark_mapping_status(mapping_id, "pending", message)
    except sqlite3.Error as e:
        logger.error(f"Could not mark mapping {mapping_id} pending: {e}")
