"""FastAPI dependencies for authentication and authorization.

Provides:
- get_current_user: Extract and validate user from JWT token
- require_role: Dependency factory enforcing an organization role
- require_scheduler_token: Guard for the internal scheduler trigger
"""

import hmac
from typing import Callable, Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session, select

from api.auth.jwt import VALID_ACCESS_TOKEN_TYPES, verify_token
from socialsync import config
from socialsync.db.engine import get_session_dependency
from socialsync.db.models import Profile, UserRole
from socialsync.logging import bind_context


# Security scheme for JWT Bearer tokens
security = HTTPBearer(auto_error=False)


class CurrentUser:
    """Authenticated user and, when one exists, their organization profile."""

    def __init__(self, user_id: UUID, profile: Optional[Profile] = None):
        self.user_id = user_id
        self.profile = profile

    @property
    def organization_id(self) -> UUID:
        """Organization of the user.

        Raises:
            HTTPException 403: The user has no profile yet
        """
        if self.profile is None:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="User profile not found",
            )
        return self.profile.organization_id

    @property
    def role(self) -> Optional[UserRole]:
        return self.profile.role if self.profile else None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    session: Session = Depends(get_session_dependency),
) -> CurrentUser:
    """Extract and validate current user from JWT token.

    Raises:
        HTTPException 401: Missing, invalid or expired token
    """
    if not credentials:
        raise _unauthorized("Missing authentication credentials")

    payload = verify_token(credentials.credentials)
    if not payload:
        raise _unauthorized("Invalid or expired token")

    if payload.get("type", "access") not in VALID_ACCESS_TOKEN_TYPES:
        raise _unauthorized("Invalid token type for this endpoint")

    user_id_str = payload.get("sub")
    if not user_id_str:
        raise _unauthorized("Invalid token payload")
    try:
        user_id = UUID(user_id_str)
    except ValueError:
        raise _unauthorized("Invalid user ID in token")

    profile = session.exec(select(Profile).where(Profile.user_id == user_id)).first()
    bind_context(user_id=user_id, organization_id=profile.organization_id if profile else None)
    return CurrentUser(user_id=user_id, profile=profile)


def require_role(*roles: UserRole) -> Callable:
    """Create a dependency that requires one of the given organization roles.

    ```python
    @router.post("/schedules")
    async def create_schedule(
        current_user: CurrentUser = Depends(require_role(UserRole.admin, UserRole.editor))
    ):
        ...
    ```
    """

    async def role_checker(
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        if current_user.profile is None:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="User profile not found",
            )
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role: {', '.join(r.value for r in roles)}",
            )
        return current_user

    return role_checker


async def require_scheduler_token(
    x_scheduler_token: Optional[str] = Header(default=None),
) -> None:
    """Allow only callers presenting the configured scheduler token."""
    expected = config.SCHEDULER_TOKEN
    if not expected or not x_scheduler_token or not hmac.compare_digest(
        x_scheduler_token, expected
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid scheduler token",
        )
