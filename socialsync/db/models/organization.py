"""Tenant models: Organization and Profile.

Organizations are the boundary of data isolation. Profiles map a user of
the external auth provider to exactly one organization and role.
"""

from enum import Enum
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import JSON
from sqlmodel import Column, Field

from socialsync.db.models.base import UUIDModel, TimestampMixin


class UserRole(str, Enum):
    """Role of a user inside their organization."""

    admin = "admin"
    editor = "editor"
    viewer = "viewer"


class Organization(UUIDModel, TimestampMixin, table=True):
    """Organization table - the tenant boundary."""

    __tablename__ = "organizations"

    name: str = Field(index=True)
    slug: str = Field(unique=True, index=True)
    settings: Optional[dict[str, Any]] = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
    )


class Profile(UUIDModel, TimestampMixin, table=True):
    """Profile table - user to organization mapping.

    user_id is the subject issued by the external auth provider, so it
    carries no foreign key.
    """

    __tablename__ = "profiles"

    user_id: UUID = Field(nullable=False, unique=True, index=True)
    organization_id: UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    role: UserRole = Field(default=UserRole.editor, nullable=False)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    timezone: Optional[str] = None
