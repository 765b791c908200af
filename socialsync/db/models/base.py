"""Base models for SQLModel tables.

All tables use UUID primary keys for security (anti-ID guessing) and
scalability (distributed systems friendly). Timestamps are naive UTC.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Current time as naive UTC, the representation stored in every table."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Normalize an aware or naive datetime to naive UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class UUIDModel(SQLModel):
    """Base model with UUID primary key."""

    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        index=True,
        nullable=False,
    )


class TimestampMixin(SQLModel):
    """Mixin for created_at and updated_at timestamps.

    Use with UUIDModel:
        class Post(UUIDModel, TimestampMixin, table=True):
            content: str
    """

    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
    )
    updated_at: Optional[datetime] = Field(
        default=None,
        sa_column_kwargs={"onupdate": utcnow},
    )
