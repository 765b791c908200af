"""Publish scheduling: schedules, jobs, and the scheduler tick."""

from socialsync.publishing.scheduler import (
    CANCELLABLE_STATUSES,
    JobOutcome,
    PublishScheduler,
    TickReport,
)

__all__ = [
    "CANCELLABLE_STATUSES",
    "JobOutcome",
    "PublishScheduler",
    "TickReport",
]
