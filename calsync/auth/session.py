"""Session token verification.

Sessions are issued by the surrounding application; this service only
verifies the JWT it receives (cookie or bearer header) and extracts the user.
"""

import logging
from typing import Optional

from fastapi import HTTPException, Request, status
from jose import JWTError, jwt
from pydantic import BaseModel

from calsync.config import get_session_secret

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
SESSION_COOKIE_NAME = "session"


class User(BaseModel):
    """Authenticated caller."""
    id: str
    email: Optional[str] = None


def create_session_token(user_id: str, email: Optional[str] = None) -> str:
    """Create a session token (used by tests and local tooling)."""
    return jwt.encode({"sub": user_id, "email": email}, get_session_secret(), algorithm=ALGORITHM)


def verify_session_token(token: str) -> Optional[User]:
    """Verify and decode a session token."""
    try:
        payload = jwt.decode(token, get_session_secret(), algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning(f"Invalid session token: {e}")
        return None

    user_id = payload.get("sub")
    if not user_id:
        return None
    return User(id=str(user_id), email=payload.get("email"))


def _extract_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    return request.cookies.get(SESSION_COOKIE_NAME)


async def get_current_user(request: Request) -> User:
    """Get current user from the session, raises 401 if not authenticated."""
    token = _extract_token(request)
    user = verify_session_token(token) if token else None
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
