"""Content models: Post and PostSchedule."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlmodel import Column, Field, SQLModel

from socialsync.db.custom_types import StringList
from socialsync.db.models.base import UUIDModel, TimestampMixin
from socialsync.db.models.social import SocialPlatform


class PostStatus(str, Enum):
    """Lifecycle of a post and, for the subset it mirrors, of a schedule."""

    draft = "draft"
    scheduled = "scheduled"  # Waiting for its time
    publishing = "publishing"  # Currently being published
    published = "published"  # Successfully published
    failed = "failed"  # Failed permanently
    cancelled = "cancelled"  # User cancelled


class ApprovalStatus(str, Enum):
    """Review state of a post."""

    pending = "pending"
    approved = "approved"
    rejected = "rejected"


# Schedule statuses after which a schedule never changes again
TERMINAL_SCHEDULE_STATUSES = frozenset(
    {PostStatus.published, PostStatus.failed, PostStatus.cancelled}
)


# =============================================================================
# Post
# =============================================================================


class Post(UUIDModel, TimestampMixin, table=True):
    """User-authored content owned by an organization.

    Never physically deleted while a schedule references it; the lifecycle
    is carried by ``status``.
    """

    __tablename__ = "posts"

    organization_id: UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    created_by: UUID = Field(nullable=False)

    title: Optional[str] = None
    content: str = Field(nullable=False)
    hashtags: Optional[list[str]] = Field(
        default=None, sa_column=Column(StringList(), nullable=True)
    )
    media_urls: Optional[list[str]] = Field(
        default=None, sa_column=Column(StringList(), nullable=True)
    )
    cta_text: Optional[str] = None
    cta_url: Optional[str] = None
    platforms: list[str] = Field(
        default_factory=list, sa_column=Column(StringList(), nullable=False)
    )

    status: PostStatus = Field(default=PostStatus.draft, nullable=False)
    approval_status: Optional[ApprovalStatus] = Field(default=None)
    scheduled_for: Optional[datetime] = None
    published_at: Optional[datetime] = None


# =============================================================================
# PostSchedule
# =============================================================================


class PostSchedule(UUIDModel, TimestampMixin, table=True):
    """Binding of one post to one social account at one time.

    ``active_key`` is "<post_id>:<social_account_id>" while the schedule is
    non-terminal and NULL afterwards; its unique index allows at most one
    non-terminal schedule per (post, account) pair.
    """

    __tablename__ = "post_schedules"

    post_id: UUID = Field(foreign_key="posts.id", nullable=False, index=True)
    social_account_id: UUID = Field(
        foreign_key="social_accounts.id", nullable=False, index=True
    )
    platform: SocialPlatform = Field(nullable=False)

    scheduled_for: datetime = Field(nullable=False, index=True)
    status: PostStatus = Field(default=PostStatus.scheduled, nullable=False, index=True)

    attempts: int = Field(default=0, nullable=False)
    last_attempt_at: Optional[datetime] = Field(default=None)
    error_message: Optional[str] = Field(default=None)
    published_post_id: Optional[str] = Field(default=None)
    published_at: Optional[datetime] = Field(default=None)

    active_key: Optional[str] = Field(default=None, unique=True)

    @staticmethod
    def make_active_key(post_id: UUID, social_account_id: UUID) -> str:
        return f"{post_id}:{social_account_id}"


class PostScheduleCreate(SQLModel):
    """Create schema for a schedule."""

    post_id: UUID
    social_account_id: UUID
    scheduled_for: datetime


class PostScheduleRead(SQLModel):
    """Read schema for a schedule."""

    id: UUID
    post_id: UUID
    social_account_id: UUID
    platform: SocialPlatform
    scheduled_for: datetime
    status: PostStatus
    attempts: int
    last_attempt_at: Optional[datetime]
    error_message: Optional[str]
    published_post_id: Optional[str]
    published_at: Optional[datetime]
    created_at: datetime
    updated_at: Optional[datetime]
