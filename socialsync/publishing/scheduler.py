"""Publish scheduler: schedules, jobs, and the tick that drives them.

A PostSchedule binds a post to an account at a time. When it comes due,
``enqueue_due`` derives exactly one PublishJob for it; ``run_one`` claims a
job, publishes through the platform adapter and records the result.
Delivery is at-least-once: a worker that dies mid-publish leaves its job
``in_progress`` until ``reclaim_stale`` hands it back to the queue.

Every invocation is short-lived and safe to overlap with others. The
invariants are held by the database:

- ``post_schedules.active_key`` is unique, so a (post, account) pair has
  at most one non-terminal schedule
- ``publish_jobs.active_schedule_id`` is unique, so a schedule has at most
  one non-terminal job
- job claims and completions are conditional updates, so two workers can
  never both own the same attempt
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import exists, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from socialsync.config import SocialSettings
from socialsync.db.crypto import TokenDecryptionError
from socialsync.db.models import (
    ApprovalStatus,
    JobStatus,
    Post,
    PostSchedule,
    PostStatus,
    PublishJob,
    SocialAccount,
    TERMINAL_SCHEDULE_STATUSES,
    as_naive_utc,
    utcnow,
)
from socialsync.exceptions import (
    AuthExpiredError,
    ConflictError,
    NotFoundError,
    PublishError,
    SocialSyncError,
    ValidationError,
)
from socialsync.logging import get_logger
from socialsync.oauth_state import OAuthStateStore
from socialsync.platforms import AdapterRegistry, PlatformAdapter, PublishContent
from socialsync.resilience import RetryPolicy
from socialsync.vault import TokenVault

logger = get_logger(__name__)

# Schedule statuses a user may cancel
CANCELLABLE_STATUSES = (PostStatus.scheduled, PostStatus.failed)


@dataclass
class JobOutcome:
    """Result of one run_one call."""

    job_id: UUID
    schedule_id: UUID
    status: JobStatus
    attempts: int
    error: Optional[str] = None
    external_post_id: Optional[str] = None
    next_attempt_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": str(self.job_id),
            "schedule_id": str(self.schedule_id),
            "status": self.status.value,
            "attempts": self.attempts,
            "error": self.error,
            "external_post_id": self.external_post_id,
            "next_attempt_at": self.next_attempt_at.isoformat() if self.next_attempt_at else None,
        }


@dataclass
class TickReport:
    """Summary of one scheduler tick."""

    swept_states: int = 0
    reclaimed: int = 0
    enqueued: int = 0
    outcomes: list[JobOutcome] = field(default_factory=list)

    def count(self, status: JobStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    def to_dict(self) -> dict[str, Any]:
        return {
            "swept_states": self.swept_states,
            "reclaimed": self.reclaimed,
            "enqueued": self.enqueued,
            "succeeded": self.count(JobStatus.succeeded),
            "failed": self.count(JobStatus.failed),
            "retrying": self.count(JobStatus.pending),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


class PublishScheduler:
    """Schedule management and publish execution for one session.

    Usage:
        scheduler = PublishScheduler(session, settings, registry)
        report = await scheduler.tick()
    """

    def __init__(
        self,
        session: Session,
        settings: SocialSettings,
        registry: AdapterRegistry,
        vault: Optional[TokenVault] = None,
        policy: Optional[RetryPolicy] = None,
    ):
        self.session = session
        self.settings = settings
        self.registry = registry
        self.vault = vault or TokenVault(session)
        self.policy = policy or RetryPolicy.from_settings(settings)

    # =========================================================================
    # Schedule management
    # =========================================================================

    def schedule_post(
        self,
        organization_id: UUID,
        post_id: UUID,
        social_account_id: UUID,
        scheduled_for: datetime,
    ) -> PostSchedule:
        """Bind a post to an account at a time.

        Raises:
            NotFoundError: Post or account missing, or in another organization
            ValidationError: Post rejected, account disabled, or platform not targeted
            ConflictError: A non-terminal schedule already exists for the pair
        """
        post = self.session.get(Post, post_id)
        if post is None or post.organization_id != organization_id:
            raise NotFoundError("Post not found")
        if post.approval_status == ApprovalStatus.rejected:
            raise ValidationError("Rejected posts cannot be scheduled")

        account = self.session.get(SocialAccount, social_account_id)
        if account is None or account.organization_id != organization_id:
            raise NotFoundError("Social account not found")
        if not account.is_active:
            raise ValidationError(
                "Social account is disabled, reconnect it first",
                details={"last_error": account.last_error},
            )
        if account.platform.value not in (post.platforms or []):
            raise ValidationError(
                f"Post does not target platform {account.platform.value}",
                details={"platforms": list(post.platforms or [])},
            )

        scheduled_for = as_naive_utc(scheduled_for)
        schedule = PostSchedule(
            post_id=post.id,
            social_account_id=account.id,
            platform=account.platform,
            scheduled_for=scheduled_for,
            status=PostStatus.scheduled,
            active_key=PostSchedule.make_active_key(post.id, account.id),
        )
        self.session.add(schedule)
        if post.status != PostStatus.published:
            post.status = PostStatus.scheduled
            if post.scheduled_for is None or scheduled_for < post.scheduled_for:
                post.scheduled_for = scheduled_for
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise ConflictError(
                "Post is already scheduled for this account",
                details={"post_id": str(post_id), "social_account_id": str(social_account_id)},
            ) from None

        self.session.refresh(schedule)
        logger.info(
            "schedule_created",
            schedule_id=str(schedule.id),
            post_id=str(post_id),
            platform=schedule.platform.value,
            scheduled_for=scheduled_for.isoformat(),
        )
        return schedule

    def get_schedule(self, organization_id: UUID, schedule_id: UUID) -> PostSchedule:
        statement = (
            select(PostSchedule)
            .join(Post, Post.id == PostSchedule.post_id)
            .where(PostSchedule.id == schedule_id, Post.organization_id == organization_id)
        )
        schedule = self.session.exec(statement).first()
        if schedule is None:
            raise NotFoundError("Schedule not found")
        return schedule

    def list_schedules(
        self,
        organization_id: UUID,
        status: Optional[PostStatus] = None,
        post_id: Optional[UUID] = None,
    ) -> list[PostSchedule]:
        statement = (
            select(PostSchedule)
            .join(Post, Post.id == PostSchedule.post_id)
            .where(Post.organization_id == organization_id)
        )
        if status:
            statement = statement.where(PostSchedule.status == status)
        if post_id:
            statement = statement.where(PostSchedule.post_id == post_id)
        statement = statement.order_by(PostSchedule.scheduled_for)
        return list(self.session.exec(statement).all())

    def list_jobs(
        self, organization_id: UUID, status: Optional[JobStatus] = None
    ) -> list[PublishJob]:
        statement = select(PublishJob).where(PublishJob.organization_id == organization_id)
        if status:
            statement = statement.where(PublishJob.status == status)
        statement = statement.order_by(PublishJob.scheduled_for)
        return list(self.session.exec(statement).all())

    def cancel_schedule(
        self, organization_id: UUID, schedule_id: UUID, now: Optional[datetime] = None
    ) -> PostSchedule:
        """Cancel a scheduled or failed schedule and its pending job.

        Raises:
            NotFoundError: Unknown schedule
            ValidationError: Schedule is publishing, published or already cancelled
        """
        now = now or utcnow()
        schedule = self.get_schedule(organization_id, schedule_id)

        result = self.session.execute(
            update(PostSchedule)
            .where(
                PostSchedule.id == schedule.id,
                PostSchedule.status.in_(CANCELLABLE_STATUSES),
            )
            .values(status=PostStatus.cancelled, active_key=None)
        )
        if result.rowcount != 1:
            self.session.rollback()
            self.session.refresh(schedule)
            raise ValidationError(
                f"Cannot cancel schedule with status: {schedule.status.value}"
            )

        self.session.execute(
            update(PublishJob)
            .where(
                PublishJob.active_schedule_id == schedule.id,
                PublishJob.status == JobStatus.pending,
            )
            .values(
                status=JobStatus.failed,
                active_schedule_id=None,
                completed_at=now,
                error_message="Schedule cancelled",
            )
        )
        self.session.commit()
        self.session.refresh(schedule)

        logger.info("schedule_cancelled", schedule_id=str(schedule.id))
        self._roll_up_post(schedule.post_id, now)
        return schedule

    def retry_schedule(
        self, organization_id: UUID, schedule_id: UUID, now: Optional[datetime] = None
    ) -> PostSchedule:
        """Put a failed schedule back in the queue, due immediately.

        Raises:
            NotFoundError: Unknown schedule
            ValidationError: Schedule is not failed
            ConflictError: Another active schedule exists for the same pair
        """
        now = now or utcnow()
        schedule = self.get_schedule(organization_id, schedule_id)
        if schedule.status != PostStatus.failed:
            raise ValidationError("Can only retry failed schedules")

        schedule.status = PostStatus.scheduled
        schedule.scheduled_for = now
        schedule.attempts = 0
        schedule.error_message = None
        schedule.active_key = PostSchedule.make_active_key(
            schedule.post_id, schedule.social_account_id
        )
        post = self.session.get(Post, schedule.post_id)
        if post is not None and post.status == PostStatus.failed:
            post.status = PostStatus.scheduled
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise ConflictError("Post is already scheduled for this account") from None

        self.session.refresh(schedule)
        logger.info("schedule_retried", schedule_id=str(schedule.id))
        return schedule

    # =========================================================================
    # Queue
    # =========================================================================

    def enqueue_due(self, now: Optional[datetime] = None) -> list[PublishJob]:
        """Create one pending job for every due schedule that has none.

        Safe to call repeatedly and concurrently: a competing enqueue that
        wins the unique ``active_schedule_id`` slot makes this one skip.
        """
        now = now or utcnow()
        live_job = exists().where(PublishJob.active_schedule_id == PostSchedule.id)
        statement = (
            select(PostSchedule, Post.organization_id)
            .join(Post, Post.id == PostSchedule.post_id)
            .where(
                PostSchedule.status == PostStatus.scheduled,
                PostSchedule.scheduled_for <= now,
                ~live_job,
            )
            .order_by(PostSchedule.scheduled_for)
        )
        due = list(self.session.exec(statement).all())

        created = []
        for schedule, organization_id in due:
            job = PublishJob(
                organization_id=organization_id,
                post_schedule_id=schedule.id,
                active_schedule_id=schedule.id,
                status=JobStatus.pending,
                attempts=0,
                max_attempts=self.policy.max_attempts,
                scheduled_for=schedule.scheduled_for,
            )
            self.session.add(job)
            try:
                self.session.commit()
            except IntegrityError:
                self.session.rollback()
                logger.info("job_enqueue_skipped", schedule_id=str(schedule.id))
                continue
            self.session.refresh(job)
            created.append(job)
            logger.info("job_enqueued", job_id=str(job.id), schedule_id=str(schedule.id))
        return created

    def due_jobs(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> list[PublishJob]:
        """Pending jobs whose time has come, highest priority first."""
        now = now or utcnow()
        statement = (
            select(PublishJob)
            .where(PublishJob.status == JobStatus.pending, PublishJob.scheduled_for <= now)
            .order_by(PublishJob.priority.desc(), PublishJob.scheduled_for)
        )
        if limit:
            statement = statement.limit(limit)
        return list(self.session.exec(statement).all())

    def claim(self, job: PublishJob, now: Optional[datetime] = None) -> bool:
        """Move a pending job to in_progress. False if another worker got it."""
        now = now or utcnow()
        result = self.session.execute(
            update(PublishJob)
            .where(PublishJob.id == job.id, PublishJob.status == JobStatus.pending)
            .values(
                status=JobStatus.in_progress,
                started_at=now,
                attempts=PublishJob.attempts + 1,
            )
        )
        if result.rowcount != 1:
            self.session.rollback()
            logger.info("job_claim_lost", job_id=str(job.id))
            return False
        self.session.commit()
        self.session.refresh(job)
        logger.info("job_claimed", job_id=str(job.id), attempt=job.attempts)
        return True

    # =========================================================================
    # Execution
    # =========================================================================

    async def run_one(
        self, job: PublishJob, now: Optional[datetime] = None
    ) -> Optional[JobOutcome]:
        """Claim and execute one job. Returns None when the claim is lost.

        Every write after the claim is conditional on the attempt number
        this worker claimed, so a worker whose job was reclaimed and claimed
        again elsewhere can no longer record a result for it.
        """
        now = now or utcnow()
        if not self.claim(job, now):
            return None
        attempt = job.attempts

        schedule = self.session.get(PostSchedule, job.post_schedule_id)
        if schedule is None or not self._start_schedule(schedule, attempt, now):
            return self._finish_failed(job, attempt, schedule, "Schedule is no longer active", now)

        account = self.session.get(SocialAccount, schedule.social_account_id)
        if account is None:
            return self._finish_failed(job, attempt, schedule, "Social account not found", now)
        if not account.is_active:
            message = account.last_error or "Social account is disabled"
            return self._finish_failed(job, attempt, schedule, message, now)

        post = self.session.get(Post, schedule.post_id)
        account_id = account.id
        log = logger.bind(job_id=str(job.id), schedule_id=str(schedule.id), platform=account.platform.value)

        try:
            adapter = self.registry.get(account.platform)
            if self.vault.is_expired(account, now):
                account = await self._refresh(adapter, account, now)
            credentials = self.vault.credentials(account)
            external_id = await adapter.publish(credentials, PublishContent.from_post(post))
        except (AuthExpiredError, TokenDecryptionError) as e:
            message = getattr(e, "message", str(e))
            self.vault.mark_auth_failure(account_id, message)
            log.warning("job_auth_failed", error=message)
            return self._finish_failed(job, attempt, schedule, message, now)
        except PublishError as e:
            return self._handle_failure(job, attempt, schedule, e, now)
        except SocialSyncError as e:
            # Configuration and other fatal errors
            log.error("job_fatal_error", error=e.message, error_code=e.error_code)
            return self._finish_failed(job, attempt, schedule, e.message, now)
        except Exception as e:
            self.session.rollback()
            log.exception("job_unexpected_error")
            return self._handle_failure(job, attempt, schedule, e, now)

        return self._finish_succeeded(job, attempt, schedule, external_id, now)

    async def _refresh(
        self, adapter: PlatformAdapter, account: SocialAccount, now: datetime
    ) -> SocialAccount:
        refresh_token = self.vault.refresh_token(account)
        if not refresh_token or not adapter.supports_refresh:
            raise AuthExpiredError("Access token expired, reconnect the account")

        tokens = await adapter.refresh_access_token(refresh_token)
        try:
            account = self.vault.update_tokens(account, tokens, now)
        except ConflictError as e:
            raise PublishError(e.message, retryable=True) from e
        if not account.is_active:
            raise AuthExpiredError(account.last_error or "Social account is disabled")
        return account

    def _handle_failure(
        self,
        job: PublishJob,
        attempt: int,
        schedule: PostSchedule,
        error: Exception,
        now: datetime,
    ) -> JobOutcome:
        message = getattr(error, "message", None) or str(error) or type(error).__name__
        if not self.policy.should_retry(error, attempt):
            return self._finish_failed(job, attempt, schedule, message, now)

        retry_at = self.policy.next_attempt_at(now, attempt, getattr(error, "retry_after", None))
        if not self._finish_job(
            job,
            attempt,
            status=JobStatus.pending,
            scheduled_for=retry_at,
            started_at=None,
            error_message=message,
        ):
            return self._lost(job, attempt)

        self._update_schedule(
            schedule, status=PostStatus.scheduled, error_message=message, attempts=attempt
        )
        self.session.commit()
        logger.warning(
            "job_retry_scheduled",
            job_id=str(job.id),
            attempts=attempt,
            max_attempts=job.max_attempts,
            next_attempt_at=retry_at.isoformat(),
            error=message,
        )
        return JobOutcome(
            job_id=job.id,
            schedule_id=job.post_schedule_id,
            status=JobStatus.pending,
            attempts=attempt,
            error=message,
            next_attempt_at=retry_at,
        )

    def _finish_succeeded(
        self,
        job: PublishJob,
        attempt: int,
        schedule: PostSchedule,
        external_id: str,
        now: datetime,
    ) -> JobOutcome:
        if not self._finish_job(
            job,
            attempt,
            status=JobStatus.succeeded,
            completed_at=now,
            error_message=None,
            active_schedule_id=None,
            details={"external_post_id": external_id},
        ):
            return self._lost(job, attempt)

        self._update_schedule(
            schedule,
            status=PostStatus.published,
            published_post_id=external_id,
            published_at=now,
            error_message=None,
            active_key=None,
            attempts=attempt,
        )
        self.session.commit()
        logger.info("job_succeeded", job_id=str(job.id), external_post_id=external_id)
        self._roll_up_post(schedule.post_id, now)
        return JobOutcome(
            job_id=job.id,
            schedule_id=job.post_schedule_id,
            status=JobStatus.succeeded,
            attempts=attempt,
            external_post_id=external_id,
        )

    def _finish_failed(
        self,
        job: PublishJob,
        attempt: int,
        schedule: Optional[PostSchedule],
        message: str,
        now: datetime,
    ) -> JobOutcome:
        if not self._finish_job(
            job,
            attempt,
            status=JobStatus.failed,
            completed_at=now,
            error_message=message,
            active_schedule_id=None,
        ):
            return self._lost(job, attempt)

        if schedule is not None:
            self._update_schedule(
                schedule,
                status=PostStatus.failed,
                error_message=message,
                active_key=None,
                attempts=attempt,
                only_if=(PostStatus.publishing, PostStatus.scheduled),
            )
        self.session.commit()
        logger.warning("job_failed", job_id=str(job.id), attempts=attempt, error=message)
        if schedule is not None:
            self._roll_up_post(schedule.post_id, now)
        return JobOutcome(
            job_id=job.id,
            schedule_id=job.post_schedule_id,
            status=JobStatus.failed,
            attempts=attempt,
            error=message,
        )

    def _lost(self, job: PublishJob, attempt: int) -> JobOutcome:
        self.session.rollback()
        self.session.refresh(job)
        logger.warning(
            "job_ownership_lost",
            job_id=str(job.id),
            attempt=attempt,
            current_attempt=job.attempts,
            status=job.status.value,
        )
        return JobOutcome(
            job_id=job.id,
            schedule_id=job.post_schedule_id,
            status=job.status,
            attempts=job.attempts,
            error=job.error_message,
        )

    def _finish_job(self, job: PublishJob, attempt: int, **values) -> bool:
        """Write a job result only while ``attempt`` is still the one in progress."""
        result = self.session.execute(
            update(PublishJob)
            .where(
                PublishJob.id == job.id,
                PublishJob.status == JobStatus.in_progress,
                PublishJob.attempts == attempt,
            )
            .values(**values)
        )
        return result.rowcount == 1

    def _start_schedule(self, schedule: PostSchedule, attempt: int, now: datetime) -> bool:
        result = self.session.execute(
            update(PostSchedule)
            .where(
                PostSchedule.id == schedule.id,
                PostSchedule.status.in_((PostStatus.scheduled, PostStatus.publishing)),
            )
            .values(status=PostStatus.publishing, last_attempt_at=now, attempts=attempt)
        )
        self.session.commit()
        return result.rowcount == 1

    def _update_schedule(
        self,
        schedule: PostSchedule,
        only_if: Optional[tuple[PostStatus, ...]] = None,
        **values,
    ) -> None:
        statement = update(PostSchedule).where(PostSchedule.id == schedule.id)
        if only_if:
            statement = statement.where(PostSchedule.status.in_(only_if))
        self.session.execute(statement.values(**values))

    def _roll_up_post(self, post_id: UUID, now: datetime) -> None:
        """Derive the post status from its schedules."""
        post = self.session.get(Post, post_id)
        if post is None:
            return
        schedules = self.session.exec(
            select(PostSchedule).where(PostSchedule.post_id == post_id)
        ).all()
        live = [s for s in schedules if s.status != PostStatus.cancelled]
        in_flight = any(s.status not in TERMINAL_SCHEDULE_STATUSES for s in live)

        if live and all(s.status == PostStatus.published for s in live):
            status = PostStatus.published
            post.published_at = post.published_at or now
        elif live and not in_flight and any(s.status == PostStatus.failed for s in live):
            status = PostStatus.failed
        elif not live and post.status == PostStatus.scheduled:
            status = PostStatus.draft
        else:
            return

        if post.status != status:
            post.status = status
            self.session.commit()
            logger.info("post_status_changed", post_id=str(post_id), status=status.value)

    # =========================================================================
    # Maintenance
    # =========================================================================

    def reclaim_stale(self, now: Optional[datetime] = None) -> int:
        """Return jobs stuck in_progress past the grace period to the queue.

        A job that has already used every attempt fails permanently instead.
        """
        now = now or utcnow()
        cutoff = now - timedelta(seconds=self.settings.stale_job_grace_seconds)
        stale = self.session.exec(
            select(PublishJob).where(
                PublishJob.status == JobStatus.in_progress,
                PublishJob.started_at <= cutoff,
            )
        ).all()
        # Commits below expire the remaining rows; keep the attempt each was read at
        stale = [(job, job.attempts) for job in stale]

        reclaimed = 0
        for job, attempt in stale:
            schedule = self.session.get(PostSchedule, job.post_schedule_id)
            if attempt >= job.max_attempts:
                message = "Publish did not complete and attempts are exhausted"
                outcome = self._finish_failed(job, attempt, schedule, message, now)
                if outcome.status == JobStatus.failed:
                    reclaimed += 1
                continue

            message = "Reclaimed after worker timeout"
            if not self._finish_job(
                job,
                attempt,
                status=JobStatus.pending,
                started_at=None,
                scheduled_for=now,
                error_message=message,
            ):
                self.session.rollback()
                continue
            if schedule is not None:
                self._update_schedule(
                    schedule,
                    status=PostStatus.scheduled,
                    error_message=message,
                    only_if=(PostStatus.publishing,),
                )
            self.session.commit()
            reclaimed += 1
            logger.warning("job_reclaimed", job_id=str(job.id), attempts=attempt)
        return reclaimed

    async def tick(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> TickReport:
        """One scheduler pass: sweep, reclaim, enqueue, then run due jobs.

        Each job runs in isolation; an error in one never stops the others.
        """
        now = now or utcnow()
        report = TickReport()
        report.swept_states = OAuthStateStore(self.session).sweep_expired(now)
        report.reclaimed = self.reclaim_stale(now)
        report.enqueued = len(self.enqueue_due(now))

        for job in self.due_jobs(now, limit=limit):
            try:
                outcome = await self.run_one(job, now)
            except Exception:
                self.session.rollback()
                logger.exception("job_run_crashed", job_id=str(job.id))
                continue
            if outcome is not None:
                report.outcomes.append(outcome)

        logger.info(
            "scheduler_tick_completed",
            swept_states=report.swept_states,
            reclaimed=report.reclaimed,
            enqueued=report.enqueued,
            ran=len(report.outcomes),
        )
        return report
