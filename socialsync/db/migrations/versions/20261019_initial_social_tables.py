"""Initial social connection and publishing tables.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

Creates organizations, profiles, social_accounts, oauth_states, posts,
post_schedules and publish_jobs. The nullable unique columns
post_schedules.active_key and publish_jobs.active_schedule_id are only set
while a row is non-terminal.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None

social_platform = postgresql.ENUM(
    "facebook", "instagram", "linkedin", "twitter", name="socialplatform", create_type=False
)
user_role = postgresql.ENUM("admin", "editor", "viewer", name="userrole", create_type=False)
post_status = postgresql.ENUM(
    "draft",
    "scheduled",
    "publishing",
    "published",
    "failed",
    "cancelled",
    name="poststatus",
    create_type=False,
)
approval_status = postgresql.ENUM(
    "pending", "approved", "rejected", name="approvalstatus", create_type=False
)
job_status = postgresql.ENUM(
    "pending", "in_progress", "succeeded", "failed", name="jobstatus", create_type=False
)

ENUMS = (social_platform, user_role, post_status, approval_status, job_status)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for enum in ENUMS:
        enum.create(bind, checkfirst=True)

    # ==========================================================================
    # Tenancy
    # ==========================================================================

    op.create_table(
        "organizations",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("slug", sa.String(), nullable=False),
        sa.Column("settings", postgresql.JSON(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_organizations_name", "organizations", ["name"])
    op.create_index("ix_organizations_slug", "organizations", ["slug"], unique=True)

    op.create_table(
        "profiles",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("role", user_role, nullable=False),
        sa.Column("first_name", sa.String(), nullable=True),
        sa.Column("last_name", sa.String(), nullable=True),
        sa.Column("timezone", sa.String(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_profiles_user_id", "profiles", ["user_id"], unique=True)
    op.create_index("ix_profiles_organization_id", "profiles", ["organization_id"])

    # ==========================================================================
    # Social accounts and OAuth state
    # ==========================================================================

    op.create_table(
        "social_accounts",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("platform", social_platform, nullable=False),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("account_name", sa.String(), nullable=False),
        sa.Column("avatar_url", sa.String(), nullable=True),
        sa.Column("access_token", sa.LargeBinary(), nullable=False),
        sa.Column("refresh_token", sa.LargeBinary(), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(), nullable=True),
        sa.Column("scope", sa.String(), nullable=True),
        sa.Column("page_id", sa.String(), nullable=True),
        sa.Column("page_access_token", sa.LargeBinary(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_error", sa.String(), nullable=True),
        sa.Column("last_sync_at", sa.DateTime(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "organization_id",
            "platform",
            "account_id",
            name="uq_social_accounts_org_platform_account",
        ),
    )
    op.create_index("ix_social_accounts_organization_id", "social_accounts", ["organization_id"])

    op.create_table(
        "oauth_states",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("state", sa.String(), nullable=False),
        sa.Column("platform", social_platform, nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("redirect_url", sa.String(), nullable=False),
        sa.Column("code_verifier", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_oauth_states_state", "oauth_states", ["state"], unique=True)
    op.create_index("ix_oauth_states_user_id", "oauth_states", ["user_id"])
    op.create_index("ix_oauth_states_expires_at", "oauth_states", ["expires_at"])

    # ==========================================================================
    # Content and scheduling
    # ==========================================================================

    op.create_table(
        "posts",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(), nullable=True),
        sa.Column("content", sa.String(), nullable=False),
        sa.Column("hashtags", postgresql.ARRAY(sa.String()), nullable=True),
        sa.Column("media_urls", postgresql.ARRAY(sa.String()), nullable=True),
        sa.Column("cta_text", sa.String(), nullable=True),
        sa.Column("cta_url", sa.String(), nullable=True),
        sa.Column("platforms", postgresql.ARRAY(sa.String()), nullable=False),
        sa.Column("status", post_status, nullable=False),
        sa.Column("approval_status", approval_status, nullable=True),
        sa.Column("scheduled_for", sa.DateTime(), nullable=True),
        sa.Column("published_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_posts_organization_id", "posts", ["organization_id"])

    op.create_table(
        "post_schedules",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("post_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("social_account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("platform", social_platform, nullable=False),
        sa.Column("scheduled_for", sa.DateTime(), nullable=False),
        sa.Column("status", post_status, nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_attempt_at", sa.DateTime(), nullable=True),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("published_post_id", sa.String(), nullable=True),
        sa.Column("published_at", sa.DateTime(), nullable=True),
        sa.Column("active_key", sa.String(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["post_id"], ["posts.id"]),
        sa.ForeignKeyConstraint(["social_account_id"], ["social_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("active_key"),
    )
    op.create_index("ix_post_schedules_post_id", "post_schedules", ["post_id"])
    op.create_index(
        "ix_post_schedules_social_account_id", "post_schedules", ["social_account_id"]
    )
    op.create_index("ix_post_schedules_scheduled_for", "post_schedules", ["scheduled_for"])
    op.create_index("ix_post_schedules_status", "post_schedules", ["status"])

    op.create_table(
        "publish_jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("post_schedule_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("active_schedule_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", job_status, nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("scheduled_for", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("details", postgresql.JSON(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["post_schedule_id"], ["post_schedules.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("active_schedule_id"),
    )
    op.create_index("ix_publish_jobs_organization_id", "publish_jobs", ["organization_id"])
    op.create_index("ix_publish_jobs_post_schedule_id", "publish_jobs", ["post_schedule_id"])
    op.create_index("ix_publish_jobs_status", "publish_jobs", ["status"])
    op.create_index("ix_publish_jobs_scheduled_for", "publish_jobs", ["scheduled_for"])


def downgrade() -> None:
    op.drop_table("publish_jobs")
    op.drop_table("post_schedules")
    op.drop_table("posts")
    op.drop_table("oauth_states")
    op.drop_table("social_accounts")
    op.drop_table("profiles")
    op.drop_table("organizations")

    bind = op.get_bind()
    for enum in reversed(ENUMS):
        enum.drop(bind, checkfirst=True)
