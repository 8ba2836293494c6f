"""Application configuration management."""

import os
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_path: str = "/data/calsync.db"

    # Encryption (OAuth tokens at rest)
    encryption_key_file: str = "/secrets/encryption.key"

    # Server
    public_url: str = "http://localhost:3000"
    log_level: str = "info"

    # Session tokens are issued by the surrounding application
    session_secret_key: Optional[str] = None

    # Rate limiting
    rate_limit_per_minute: int = 60

    # Google OAuth client used for token refresh
    google_client_id: str = ""
    google_client_secret: str = ""

    # Timezone used to turn local date + time-of-day into instants
    local_timezone: str = "UTC"

    # Sync window, in months around "now"
    sync_window_months_back: int = Field(default=3, gt=0)
    sync_window_months_ahead: int = Field(default=6, gt=0)
    max_sync_window_months: int = 24

    # Provider calls
    provider_max_results: int = 250
    provider_timeout_seconds: float = 30.0

    # Locks held longer than this are considered abandoned
    lock_timeout_minutes: int = 30

    # Scheduler
    scheduler_tick_minutes: int = 1
    min_seconds_between_attempts: int = 60
    token_refresh_minutes: int = 30

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def get_encryption_key() -> bytes:
    """Load encryption key from file."""
    settings = get_settings()
    key_file = settings.encryption_key_file

    if not os.path.exists(key_file):
        raise RuntimeError(f"Encryption key file not found at {key_file}")

    with open(key_file, "rb") as f:
        key = f.read()
        # Only strip trailing newlines; binary keys may contain whitespace bytes
        while key and key[-1:] in (b'\n', b'\r'):
            key = key[:-1]

    if len(key) < 32:
        raise RuntimeError("Invalid encryption key: must be at least 32 bytes")

    return key


def get_session_secret() -> str:
    """Get the secret shared with the session issuer."""
    settings = get_settings()
    if settings.session_secret_key:
        return settings.session_secret_key

    import hashlib
    return hashlib.sha256(get_encryption_key() + b"session_secret").hexdigest()
