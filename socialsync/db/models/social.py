"""Social account and OAuth state models.

SocialAccount stores the encrypted credentials of one connected external
account (the token vault rows). OAuthState stores the short-lived,
single-use correlation record of an in-flight authorization.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlalchemy import LargeBinary, UniqueConstraint
from sqlmodel import Field, SQLModel

from socialsync.db.models.base import UUIDModel, TimestampMixin, utcnow


class SocialPlatform(str, Enum):
    """Supported social media platforms."""

    facebook = "facebook"
    instagram = "instagram"
    linkedin = "linkedin"
    twitter = "twitter"


class SocialAccount(UUIDModel, TimestampMixin, table=True):
    """A connected external account.

    One row per (organization, platform, external account id); reconnecting
    the same account updates the row. Tokens are Fernet-encrypted bytes, see
    socialsync.db.crypto. ``version`` guards token writes against lost
    updates between reconnects and silent refreshes.
    """

    __tablename__ = "social_accounts"
    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "platform",
            "account_id",
            name="uq_social_accounts_org_platform_account",
        ),
    )

    organization_id: UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    platform: SocialPlatform = Field(nullable=False)

    # Platform identity
    account_id: str = Field(nullable=False)
    account_name: str = Field(nullable=False)
    avatar_url: Optional[str] = Field(default=None)

    # Credentials - encrypted (stored as bytea)
    access_token: bytes = Field(nullable=False, sa_type=LargeBinary)
    refresh_token: Optional[bytes] = Field(default=None, sa_type=LargeBinary)
    token_expires_at: Optional[datetime] = Field(default=None)
    scope: Optional[str] = Field(default=None)

    # Page-level delegation (Facebook pages)
    page_id: Optional[str] = Field(default=None)
    page_access_token: Optional[bytes] = Field(default=None, sa_type=LargeBinary)

    # Health
    is_active: bool = Field(default=True, nullable=False)
    last_error: Optional[str] = Field(default=None)
    last_sync_at: Optional[datetime] = Field(default=None)

    version: int = Field(default=1, nullable=False)


class SocialAccountRead(SQLModel):
    """Read schema for social account (no tokens exposed)."""

    id: UUID
    organization_id: UUID
    platform: SocialPlatform
    account_id: str
    account_name: str
    avatar_url: Optional[str]
    page_id: Optional[str]
    token_expires_at: Optional[datetime]
    is_active: bool
    last_error: Optional[str]
    last_sync_at: Optional[datetime]
    created_at: datetime
    updated_at: Optional[datetime]


class OAuthState(UUIDModel, table=True):
    """One-time correlation token for an authorization in flight.

    Deleted as soon as a callback consumes it, or by the expiry sweep.
    """

    __tablename__ = "oauth_states"

    state: str = Field(nullable=False, unique=True, index=True)
    platform: SocialPlatform = Field(nullable=False)
    user_id: UUID = Field(nullable=False, index=True)
    redirect_url: str = Field(nullable=False)

    # PKCE verifier (Twitter), sent back during the code exchange
    code_verifier: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow, nullable=False)
    expires_at: datetime = Field(nullable=False, index=True)
