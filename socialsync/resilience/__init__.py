"""Retry strategy for publish jobs.

Usage:
    from socialsync.resilience import RetryPolicy

    policy = RetryPolicy(max_attempts=3, backoff_base=60.0)
    delay = policy.get_delay(job.attempts)
"""

from socialsync.resilience.retry import RetryPolicy

__all__ = ["RetryPolicy"]
