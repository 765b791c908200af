"""Authentication and authorization module for the API."""

from api.auth.jwt import create_access_token, verify_token
from api.auth.dependencies import (
    CurrentUser,
    get_current_user,
    require_role,
    require_scheduler_token,
)

__all__ = [
    # JWT
    "create_access_token",
    "verify_token",
    # Dependencies
    "CurrentUser",
    "get_current_user",
    "require_role",
    "require_scheduler_token",
]
