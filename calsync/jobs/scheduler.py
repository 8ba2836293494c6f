"""APScheduler setup for background jobs."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from calsync.config import get_settings

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


def _jobs(settings) -> list[dict]:
    return [
        # Each user's own frequency is applied inside the job
        {
            "func": "calsync.jobs.sync_job:run_periodic_sync",
            "id": "periodic_sync",
            "name": "Periodic Calendar Sync",
            "minutes": settings.scheduler_tick_minutes,
            "max_instances": 1,
            "coalesce": True,
        },
        {
            "func": "calsync.jobs.sync_job:refresh_expiring_tokens",
            "id": "token_refresh",
            "name": "Token Refresh",
            "minutes": settings.token_refresh_minutes,
        },
    ]


def setup_scheduler() -> AsyncIOScheduler:
    """Register the sync and token jobs and start the scheduler."""
    global _scheduler

    _scheduler = AsyncIOScheduler()

    for job in _jobs(get_settings()):
        minutes = job.pop("minutes")
        func = job.pop("func")
        _scheduler.add_job(
            func,
            trigger=IntervalTrigger(minutes=minutes),
            replace_existing=True,
            **job,
        )
        logger.debug(f"Scheduled {job['id']} every {minutes} minutes")

    _scheduler.start()
    logger.info("Background scheduler started")

    return _scheduler


def shutdown_scheduler() -> None:
    global _scheduler

    if _scheduler:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Background scheduler stopped")


def get_scheduler() -> AsyncIOScheduler | None:
    return _scheduler
