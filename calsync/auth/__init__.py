"""Authentication collaborators: provider bearer tokens and caller sessions."""

from calsync.auth.google import ReauthorizationRequired, get_valid_access_token
from calsync.auth.session import User, get_current_user

__all__ = ["ReauthorizationRequired", "get_valid_access_token", "User", "get_current_user"]
