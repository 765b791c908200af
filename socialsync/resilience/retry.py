"""Retry policy with exponential backoff for publish jobs.

Publish retries are not slept in-process: a failed attempt moves the job's
``scheduled_for`` forward and a later scheduler tick picks it up again.

Usage:
    policy = RetryPolicy.from_settings(settings)

    if policy.should_retry(error, job.attempts):
        job.scheduled_for = policy.next_attempt_at(now, job.attempts, error.retry_after)
"""

import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from socialsync.config import SocialSettings
from socialsync.exceptions import PublishError


@dataclass
class RetryPolicy:
    """Configuration for retry behavior.

    Attributes:
        max_attempts: Total attempts allowed per job (default 3)
        backoff_base: Base delay in seconds (default 60.0)
        backoff_factor: Multiplier for exponential backoff (default 2.0)
        backoff_max: Maximum delay in seconds (default 3600.0)
        jitter: Add random jitter to delays (default False)
    """

    max_attempts: int = 3
    backoff_base: float = 60.0
    backoff_factor: float = 2.0
    backoff_max: float = 3600.0
    jitter: bool = False

    @classmethod
    def from_settings(cls, settings: SocialSettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            backoff_base=settings.retry_base_delay_seconds,
            backoff_max=settings.retry_max_delay_seconds,
        )

    def get_delay(self, attempts: int) -> float:
        """Delay before the next attempt after ``attempts`` attempts so far."""
        delay = self.backoff_base * (self.backoff_factor**attempts)
        delay = min(delay, self.backoff_max)

        if self.jitter:
            # Add up to 25% jitter
            delay = delay * (0.75 + random.random() * 0.5)

        return delay

    def should_retry(self, error: Exception, attempts: int) -> bool:
        """Whether a job that failed with ``error`` gets another attempt."""
        if attempts >= self.max_attempts:
            return False
        if isinstance(error, PublishError):
            return error.retryable
        # Anything unclassified is treated as transient
        return True

    def next_attempt_at(
        self, now: datetime, attempts: int, retry_after: Optional[float] = None
    ) -> datetime:
        """Time of the next attempt, honouring a server retry-after hint."""
        delay = self.get_delay(attempts)
        if retry_after is not None:
            delay = max(delay, min(retry_after, self.backoff_max))
        return now + timedelta(seconds=delay)
