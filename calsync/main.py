"""Main FastAPI application entry point."""

import logging
import os
import sys
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from calsync.config import get_settings
from calsync.database import close_database, connection, get_database

logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

# Applied to every route through SlowAPIMiddleware
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{get_settings().rate_limit_per_minute}/minute"],
)


def _check_sync_settings() -> None:
    """Fail fast on a sync window that every run would reject."""
    from calsync.sync.google_calendar import compute_sync_window
    from calsync.sync.translation import get_local_timezone

    settings = get_settings()
    tz = get_local_timezone()
    time_min, time_max = compute_sync_window(
        datetime.now(tz),
        settings.sync_window_months_back,
        settings.sync_window_months_ahead,
    )
    logger.info(
        f"Sync window {settings.sync_window_months_back} months back, "
        f"{settings.sync_window_months_ahead} months ahead "
        f"({time_min.date()} to {time_max.date()}, {getattr(tz, 'key', tz)})"
    )

    if not settings.google_client_id or not settings.google_client_secret:
        logger.warning("Google OAuth client is not configured; expired tokens cannot be refreshed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database, load the token key and start the polling scheduler."""
    settings = get_settings()
    logger.info(f"Starting calendar sync service (database: {settings.database_path})")

    _check_sync_settings()

    await get_database()
    logger.info("Database initialized")

    # Tokens can only be read once the key is loaded
    if os.path.exists(settings.encryption_key_file):
        try:
            from calsync.config import get_encryption_key
            from calsync.encryption import init_encryption_manager
            init_encryption_manager(get_encryption_key())
            logger.info("Encryption manager initialized")
        except Exception as e:
            logger.warning(f"Could not initialize encryption: {e}")
    else:
        logger.warning(f"No encryption key at {settings.encryption_key_file}; stored tokens are unreadable")

    try:
        from calsync.jobs.scheduler import setup_scheduler
        setup_scheduler()
    except Exception as e:
        logger.error(f"Failed to start scheduler: {e}")

    yield

    logger.info("Shutting down...")

    try:
        from calsync.jobs.scheduler import shutdown_scheduler
        shutdown_scheduler()
    except Exception as e:
        logger.error(f"Error stopping scheduler: {e}")

    await close_database()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Calendar Sync",
    description="Bidirectional sync between local events and Google Calendar",
    version="1.0.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

settings = get_settings()
allowed_origins = [settings.public_url]
if settings.public_url.startswith(("http://localhost", "https://localhost")):
    allowed_origins.append("http://127.0.0.1:3000")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["*"],
)


@app.get("/health")
@limiter.exempt
async def health_check():
    """Database reachability and whether periodic sync is scheduled."""
    from calsync.jobs.scheduler import get_scheduler

    try:
        async with connection() as db:
            cursor = await db.execute("SELECT 1")
            await cursor.fetchone()
    except Exception as e:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "error": str(e)},
        )

    scheduler = get_scheduler()
    return {
        "status": "healthy",
        "database": "connected",
        "scheduler": "running" if scheduler and scheduler.running else "stopped",
    }


from calsync.api import api_router

app.include_router(api_router)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log unexpected errors and hide their details from API clients."""
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "calsync.main:app",
        host="0.0.0.0",
        port=3000,
        log_level=settings.log_level.lower(),
        reload=False,
    )
