"""Periodic sync job."""

import logging
from datetime import datetime, timedelta
from typing import Optional

from calsync.config import get_settings
from calsync.database import connection
from calsync.locks import acquire_lock, release_lock
from calsync.sync.models import SyncPreferences

logger = logging.getLogger(__name__)

PERIODIC_SYNC_LOCK = "periodic_sync"


def is_sync_due(preferences: SyncPreferences, now: Optional[datetime] = None) -> bool:
    """
    Whether a user's polling interval has elapsed.

    A user is never retried sooner than ``min_seconds_between_attempts``
    after the last attempt, successful or not.
    """
    if not preferences.sync_enabled:
        return False
    if preferences.last_sync_at is None:
        return True

    now = now or datetime.utcnow()
    last = preferences.last_sync_at.replace(tzinfo=None)
    min_gap = timedelta(seconds=get_settings().min_seconds_between_attempts)
    interval = timedelta(minutes=preferences.sync_frequency_minutes)
    return now - last >= max(interval, min_gap)


async def run_periodic_sync() -> None:
    """Run a full sync for every enabled user whose interval has elapsed."""
    token = await acquire_lock(PERIODIC_SYNC_LOCK)
    if token is None:
        logger.debug("Periodic sync already running, skipping")
        return

    try:
        from calsync.sync.engine import perform_full_sync
        from calsync.sync.preferences import list_enabled_preferences

        now = datetime.utcnow()
        due = [p for p in await list_enabled_preferences() if is_sync_due(p, now)]
        if not due:
            logger.debug("No users due for sync")
            return

        logger.info(f"Running periodic sync for {len(due)} users")

        for preferences in due:
            try:
                result = await perform_full_sync(preferences.user_id)
                if result.errors:
                    logger.warning(
                        f"Periodic sync for user {preferences.user_id} ended {result.status}: "
                        f"{result.errors[0]}"
                    )
            except Exception as e:
                logger.error(f"Error syncing user {preferences.user_id}: {e}")

        logger.info("Periodic sync completed")

    finally:
        await release_lock(PERIODIC_SYNC_LOCK, token)


async def refresh_expiring_tokens() -> None:
    """Proactively refresh tokens that will expire soon."""
    # Find tokens expiring within 1 hour
    threshold = (datetime.utcnow() + timedelta(hours=1)).isoformat()

    async with connection() as db:
        cursor = await db.execute(
            """SELECT user_id FROM oauth_tokens
               WHERE token_expiry IS NOT NULL AND token_expiry < ?""",
            (threshold,)
        )
        expiring = await cursor.fetchall()

    if not expiring:
        return

    logger.info(f"Refreshing {len(expiring)} expiring tokens")

    from calsync.auth.google import ReauthorizationRequired, get_valid_access_token

    for token in expiring:
        try:
            # This will automatically refresh if needed
            await get_valid_access_token(token["user_id"])
            logger.debug(f"Refreshed token for user {token['user_id']}")
        except ReauthorizationRequired as e:
            logger.warning(f"User {token['user_id']} must reauthorize Google Calendar: {e}")
        except Exception as e:
            logger.error(f"Failed to refresh token for user {token['user_id']}: {e}")
