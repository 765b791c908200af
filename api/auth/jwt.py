"""JWT token utilities for authentication.

Access tokens are issued by the external auth provider and signed with the
shared AUTH_JWT_SECRET. ``create_access_token`` exists for local development
and tests.
"""

from datetime import datetime, timedelta
from uuid import uuid4

from jose import JWTError, jwt

from socialsync.config import AUTH_JWT_ALGORITHM, AUTH_JWT_SECRET

ACCESS_TOKEN_EXPIRE_MINUTES = 30

# Valid token types for API access
VALID_ACCESS_TOKEN_TYPES = ("access",)


def create_access_token(data: dict, expires_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    """Create a JWT access token.

    Args:
        data: Payload data (should include 'sub' for user_id)
        expires_minutes: Lifetime of the token

    Returns:
        Encoded JWT token string
    """
    to_encode = data.copy()
    expire = datetime.utcnow() + timedelta(minutes=expires_minutes)
    to_encode.update(
        {
            "exp": expire,
            "iat": datetime.utcnow(),
            "type": "access",
            "jti": str(uuid4()),
        }
    )
    return jwt.encode(to_encode, AUTH_JWT_SECRET, algorithm=AUTH_JWT_ALGORITHM)


def verify_token(token: str) -> dict | None:
    """Verify and decode a JWT token.

    Returns:
        Decoded payload dict if valid, None if invalid/expired
    """
    try:
        return jwt.decode(token, AUTH_JWT_SECRET, algorithms=[AUTH_JWT_ALGORITHM])
    except JWTError:
        return None
