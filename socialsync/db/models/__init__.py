"""SQLModel table definitions.

This module exports all SQLModel table classes and their Read/Create variants.
All primary keys use UUID for security and scalability.

Model Categories:
- Tenancy: Organization, Profile
- Social: SocialAccount, OAuthState
- Content: Post, PostSchedule
- Jobs: PublishJob
"""

from socialsync.db.models.base import UUIDModel, TimestampMixin, utcnow, as_naive_utc

from socialsync.db.models.organization import (
    Organization,
    Profile,
    UserRole,
)
from socialsync.db.models.social import (
    SocialPlatform,
    SocialAccount, SocialAccountRead,
    OAuthState,
)
from socialsync.db.models.content import (
    PostStatus,
    ApprovalStatus,
    TERMINAL_SCHEDULE_STATUSES,
    Post,
    PostSchedule, PostScheduleCreate, PostScheduleRead,
)
from socialsync.db.models.jobs import (
    JobStatus,
    PublishJob, PublishJobRead,
)

__all__ = [
    "UUIDModel",
    "TimestampMixin",
    "utcnow",
    "as_naive_utc",
    "Organization",
    "Profile",
    "UserRole",
    "SocialPlatform",
    "SocialAccount",
    "SocialAccountRead",
    "OAuthState",
    "PostStatus",
    "ApprovalStatus",
    "TERMINAL_SCHEDULE_STATUSES",
    "Post",
    "PostSchedule",
    "PostScheduleCreate",
    "PostScheduleRead",
    "JobStatus",
    "PublishJob",
    "PublishJobRead",
]
