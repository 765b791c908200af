"""Publish job model: the unit of work derived from a due schedule."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel

from socialsync.db.models.base import UUIDModel, TimestampMixin


class JobStatus(str, Enum):
    """Status of a publish job."""

    pending = "pending"  # Waiting for scheduled_for (first run or retry)
    in_progress = "in_progress"  # Claimed by a worker
    succeeded = "succeeded"
    failed = "failed"  # Permanent


class PublishJob(UUIDModel, TimestampMixin, table=True):
    """Scheduling metadata for publishing one PostSchedule.

    ``active_schedule_id`` mirrors post_schedule_id while the job is
    non-terminal and is NULL afterwards; its unique index keeps at most one
    live job per schedule even under concurrent enqueues.
    """

    __tablename__ = "publish_jobs"

    organization_id: UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    post_schedule_id: UUID = Field(foreign_key="post_schedules.id", nullable=False, index=True)
    active_schedule_id: Optional[UUID] = Field(default=None, unique=True)

    priority: int = Field(default=0, nullable=False)
    status: JobStatus = Field(default=JobStatus.pending, nullable=False, index=True)
    attempts: int = Field(default=0, nullable=False)
    max_attempts: int = Field(default=3, nullable=False)

    scheduled_for: datetime = Field(nullable=False, index=True)
    started_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)
    error_message: Optional[str] = Field(default=None)

    details: Optional[dict[str, Any]] = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
    )


class PublishJobRead(SQLModel):
    """Read schema for a publish job."""

    id: UUID
    organization_id: UUID
    post_schedule_id: UUID
    priority: int
    status: JobStatus
    attempts: int
    max_attempts: int
    scheduled_for: datetime
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    error_message: Optional[str]
    created_at: datetime
