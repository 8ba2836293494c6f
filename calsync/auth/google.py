"""Google OAuth token storage and refresh.

The consent flow that first obtains tokens lives outside this service; it
hands the tokens over through :func:`store_oauth_tokens`. The sync engine only
ever asks for a currently valid bearer token.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

import httpx

from calsync.config import get_settings
from calsync.database import connection, transaction
from calsync.encryption import decrypt_value, encrypt_value

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"


class ReauthorizationRequired(PermissionError):
    """The stored Google credential is missing, revoked or rejected."""


class TokenRefreshError(ValueError):
    """Token refresh failed."""


async def refresh_access_token(refresh_token: str) -> dict:
    """Refresh an access token."""
    settings = get_settings()
    if not settings.google_client_id or not settings.google_client_secret:
        raise ReauthorizationRequired("Google OAuth client is not configured")

    async with httpx.AsyncClient() as client:
        response = await client.post(
            GOOGLE_TOKEN_URL,
            data={
                "refresh_token": refresh_token,
                "client_id": settings.google_client_id,
                "client_secret": settings.google_client_secret,
                "grant_type": "refresh_token",
            },
        )

        if response.status_code != 200:
            logger.error(f"Token refresh failed: {response.text}")
            raise TokenRefreshError(f"Token refresh failed: {response.text}")

        return response.json()


async def store_oauth_tokens(
    user_id: str,
    access_token: str,
    refresh_token: str,
    expires_in: Optional[int] = None,
    email: Optional[str] = None,
) -> int:
    """Store OAuth tokens in database."""
    now = datetime.utcnow()

    expiry = None
    if expires_in:
        expiry = (now + timedelta(seconds=expires_in)).isoformat()

    async with transaction() as db:
        cursor = await db.execute(
            """INSERT INTO oauth_tokens
               (user_id, google_account_email, access_token_encrypted,
                refresh_token_encrypted, token_expiry, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(user_id) DO UPDATE SET
               google_account_email = COALESCE(excluded.google_account_email, google_account_email),
               access_token_encrypted = excluded.access_token_encrypted,
               refresh_token_encrypted = excluded.refresh_token_encrypted,
               token_expiry = excluded.token_expiry,
               updated_at = excluded.updated_at
               RETURNING id""",
            (
                user_id,
                email,
                encrypt_value(access_token),
                encrypt_value(refresh_token),
                expiry,
                now.isoformat(),
            )
        )
        row = await cursor.fetchone()

    return row["id"]


async def get_oauth_token(user_id: str) -> Optional[dict]:
    """Get the stored OAuth token row for a user."""
    async with connection() as db:
        cursor = await db.execute(
            "SELECT * FROM oauth_tokens WHERE user_id = ?", (user_id,)
        )
        row = await cursor.fetchone()
    if row:
        return dict(row)
    return None


async def get_valid_access_token(user_id: str) -> str:
    """
    Get a valid access token, refreshing if needed.

    Raises ReauthorizationRequired when no token is stored or Google has
    revoked the grant. Other refresh failures are retried with backoff and
    then re-raised as transient errors.
    """
    token_data = await get_oauth_token(user_id)
    if not token_data:
        raise ReauthorizationRequired(f"No Google token stored for user {user_id}")

    access_token = decrypt_value(token_data["access_token_encrypted"])
    refresh_token = decrypt_value(token_data["refresh_token_encrypted"])

    expiry = token_data.get("token_expiry")
    if not expiry:
        return access_token

    expiry_dt = datetime.fromisoformat(expiry)
    if datetime.utcnow() < expiry_dt - timedelta(minutes=5):
        return access_token

    logger.info(f"Refreshing token for user {user_id}")

    max_retries = 3
    for attempt in range(max_retries):
        try:
            new_tokens = await refresh_access_token(refresh_token)
        except (TokenRefreshError, httpx.HTTPError) as e:
            if "invalid_grant" in str(e).lower():
                logger.error(f"Token for user {user_id} was revoked: {e}")
                raise ReauthorizationRequired(str(e)) from e
            if attempt == max_retries - 1:
                logger.error(f"Failed to refresh token after {max_retries} attempts: {e}")
                if isinstance(e, TokenRefreshError):
                    raise
                raise TokenRefreshError(f"Token refresh failed: {e}") from e
            wait_time = 2 ** attempt  # 1s, 2s
            logger.warning(f"Token refresh attempt {attempt + 1} failed, retrying in {wait_time}s: {e}")
            await asyncio.sleep(wait_time)
            continue

        access_token = new_tokens["access_token"]
        await store_oauth_tokens(
            user_id=user_id,
            access_token=access_token,
            refresh_token=new_tokens.get("refresh_token", refresh_token),
            expires_in=new_tokens.get("expires_in"),
        )
        break

    return access_token
