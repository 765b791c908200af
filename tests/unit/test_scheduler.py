"""Tests for publish scheduling, execution, retries and reclaim."""

import asyncio
from datetime import timedelta
from uuid import uuid4

import httpx
import pytest
from sqlalchemy import update
from sqlmodel import select

from socialsync.db.models import (
    ApprovalStatus,
    JobStatus,
    Organization,
    PostSchedule,
    PostStatus,
    PublishJob,
    SocialAccount,
    SocialPlatform,
    utcnow,
)
from socialsync.exceptions import ConflictError, NotFoundError, ValidationError
from socialsync.oauth_state import OAuthStateStore
from socialsync.publishing import PublishScheduler

from conftest import minutes

UGC_POSTS_URL = "https://api.linkedin.com/v2/ugcPosts"
LINKEDIN_TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
TWEETS_URL = "https://api.twitter.com/2/tweets"


@pytest.fixture
def scheduler(test_session, settings, registry, vault) -> PublishScheduler:
    return PublishScheduler(test_session, settings, registry, vault=vault)


@pytest.fixture
def account(make_account) -> SocialAccount:
    return make_account()


def _published(post_id="urn:li:share:1"):
    return httpx.Response(201, headers={"x-restli-id": post_id}, json={})


def _schedule_due(scheduler, post, account, now=None):
    now = now or utcnow()
    return scheduler.schedule_post(post.organization_id, post.id, account.id, now - minutes(1))


def _only_job(test_session) -> PublishJob:
    return test_session.exec(select(PublishJob)).one()


# =============================================================================
# Schedule management
# =============================================================================


def test_schedule_post_marks_post_scheduled(test_session, scheduler, post, account):
    when = utcnow() + timedelta(hours=2)

    schedule = scheduler.schedule_post(post.organization_id, post.id, account.id, when)

    assert schedule.status == PostStatus.scheduled
    assert schedule.platform == SocialPlatform.linkedin
    assert schedule.active_key is not None
    assert post.status == PostStatus.scheduled
    assert post.scheduled_for == when


def test_duplicate_active_schedule_conflicts(scheduler, post, account):
    scheduler.schedule_post(post.organization_id, post.id, account.id, utcnow())

    with pytest.raises(ConflictError):
        scheduler.schedule_post(post.organization_id, post.id, account.id, utcnow() + minutes(5))


def test_rejected_post_cannot_be_scheduled(test_session, scheduler, post, account):
    post.approval_status = ApprovalStatus.rejected
    test_session.commit()

    with pytest.raises(ValidationError):
        scheduler.schedule_post(post.organization_id, post.id, account.id, utcnow())


def test_disabled_account_cannot_be_scheduled(scheduler, vault, post, account):
    vault.deactivate(account.id)

    with pytest.raises(ValidationError):
        scheduler.schedule_post(post.organization_id, post.id, account.id, utcnow())


def test_untargeted_platform_cannot_be_scheduled(test_session, scheduler, post, account):
    post.platforms = ["facebook"]
    test_session.commit()

    with pytest.raises(ValidationError) as exc_info:
        scheduler.schedule_post(post.organization_id, post.id, account.id, utcnow())

    assert "linkedin" in exc_info.value.message


def test_schedule_in_other_organization_is_not_found(test_session, scheduler, post, account):
    other = Organization(name="Other", slug="other-org")
    test_session.add(other)
    test_session.commit()

    with pytest.raises(NotFoundError):
        scheduler.schedule_post(other.id, post.id, account.id, utcnow())
    with pytest.raises(NotFoundError):
        scheduler.schedule_post(post.organization_id, uuid4(), account.id, utcnow())


def test_list_schedules_filters_by_status(scheduler, post, account, make_account):
    twitter = make_account(platform=SocialPlatform.twitter, external_id="tw-1")
    first = scheduler.schedule_post(post.organization_id, post.id, account.id, utcnow())
    scheduler.schedule_post(post.organization_id, post.id, twitter.id, utcnow())
    scheduler.cancel_schedule(post.organization_id, first.id)

    assert len(scheduler.list_schedules(post.organization_id)) == 2
    scheduled = scheduler.list_schedules(post.organization_id, status=PostStatus.scheduled)
    assert [s.social_account_id for s in scheduled] == [twitter.id]


def test_cancel_frees_pair_and_fails_pending_job(test_session, scheduler, post, account):
    schedule = _schedule_due(scheduler, post, account)
    scheduler.enqueue_due()

    cancelled = scheduler.cancel_schedule(post.organization_id, schedule.id)

    assert cancelled.status == PostStatus.cancelled
    assert cancelled.active_key is None
    job = _only_job(test_session)
    assert job.status == JobStatus.failed
    assert job.error_message == "Schedule cancelled"
    assert job.active_schedule_id is None
    assert post.status == PostStatus.draft

    # The pair can be scheduled again
    scheduler.schedule_post(post.organization_id, post.id, account.id, utcnow())


def test_cancel_twice_is_rejected(scheduler, post, account):
    schedule = _schedule_due(scheduler, post, account)
    scheduler.cancel_schedule(post.organization_id, schedule.id)

    with pytest.raises(ValidationError) as exc_info:
        scheduler.cancel_schedule(post.organization_id, schedule.id)

    assert exc_info.value.message == "Cannot cancel schedule with status: cancelled"


def test_cancel_unknown_schedule_is_not_found(scheduler, post):
    with pytest.raises(NotFoundError):
        scheduler.cancel_schedule(post.organization_id, uuid4())


def test_retry_failed_schedule(test_session, scheduler, platform_api, post, account):
    platform_api.add("POST", UGC_POSTS_URL, httpx.Response(400, json={"message": "duplicate"}))
    schedule = _schedule_due(scheduler, post, account)
    scheduler.enqueue_due()
    asyncio.run(scheduler.run_one(_only_job(test_session)))
    assert post.status == PostStatus.failed

    now = utcnow()
    retried = scheduler.retry_schedule(post.organization_id, schedule.id, now=now)

    assert retried.status == PostStatus.scheduled
    assert retried.attempts == 0
    assert retried.error_message is None
    assert retried.scheduled_for == now
    assert retried.active_key is not None
    assert post.status == PostStatus.scheduled

    # A fresh job is derived for the retried schedule
    assert len(scheduler.enqueue_due(now)) == 1


def test_retry_requires_failed_status(scheduler, post, account):
    schedule = _schedule_due(scheduler, post, account)

    with pytest.raises(ValidationError):
        scheduler.retry_schedule(post.organization_id, schedule.id)


# =============================================================================
# Queue
# =============================================================================


def test_enqueue_due_is_idempotent(test_session, scheduler, post, account):
    _schedule_due(scheduler, post, account)

    first = scheduler.enqueue_due()
    second = scheduler.enqueue_due()

    assert len(first) == 1
    assert second == []
    job = _only_job(test_session)
    assert job.status == JobStatus.pending
    assert job.attempts == 0
    assert job.max_attempts == 3
    assert job.organization_id == post.organization_id


def test_enqueue_skips_future_schedules(scheduler, post, account):
    scheduler.schedule_post(post.organization_id, post.id, account.id, utcnow() + timedelta(hours=1))

    assert scheduler.enqueue_due() == []


def test_claim_is_exclusive(test_session, scheduler, post, account):
    _schedule_due(scheduler, post, account)
    job = scheduler.enqueue_due()[0]

    assert scheduler.claim(job) is True
    assert scheduler.claim(job) is False
    assert asyncio.run(scheduler.run_one(job)) is None
    assert job.attempts == 1


# =============================================================================
# Execution
# =============================================================================


def test_run_one_publishes(test_session, scheduler, platform_api, post, account):
    platform_api.add("POST", UGC_POSTS_URL, _published("urn:li:share:42"))
    schedule = _schedule_due(scheduler, post, account)
    job = scheduler.enqueue_due()[0]

    outcome = asyncio.run(scheduler.run_one(job))

    assert outcome.status == JobStatus.succeeded
    assert outcome.external_post_id == "urn:li:share:42"
    test_session.refresh(schedule)
    assert schedule.status == PostStatus.published
    assert schedule.published_post_id == "urn:li:share:42"
    assert schedule.published_at is not None
    assert schedule.active_key is None
    assert job.status == JobStatus.succeeded
    assert job.attempts == 1
    assert job.active_schedule_id is None
    assert post.status == PostStatus.published
    assert post.published_at is not None

    request = platform_api.calls("POST", UGC_POSTS_URL)[0]
    assert request.headers["Authorization"] == "Bearer access-1"
    assert b"#launch #product" in request.content


def test_transient_failures_back_off_then_fail(test_session, scheduler, platform_api, post, account):
    platform_api.add("POST", UGC_POSTS_URL, httpx.Response(503, text="unavailable"))
    now = utcnow()
    schedule = _schedule_due(scheduler, post, account, now)
    job = scheduler.enqueue_due(now)[0]

    first = asyncio.run(scheduler.run_one(job, now))
    assert first.status == JobStatus.pending
    assert job.scheduled_for == now + timedelta(seconds=120)
    test_session.refresh(schedule)
    assert schedule.status == PostStatus.scheduled
    assert schedule.attempts == 1

    # Not due again until the backoff has passed
    assert scheduler.due_jobs(now + minutes(1)) == []

    later = job.scheduled_for
    second = asyncio.run(scheduler.run_one(job, later))
    assert second.status == JobStatus.pending
    assert job.scheduled_for == later + timedelta(seconds=240)

    third = asyncio.run(scheduler.run_one(job, job.scheduled_for))
    assert third.status == JobStatus.failed
    assert job.attempts == 3
    assert job.status == JobStatus.failed
    test_session.refresh(schedule)
    assert schedule.status == PostStatus.failed
    assert "503" in schedule.error_message
    assert post.status == PostStatus.failed
    assert len(platform_api.calls("POST", UGC_POSTS_URL)) == 3


def test_rate_limit_honours_retry_after(test_session, scheduler, platform_api, post, account):
    platform_api.add(
        "POST", UGC_POSTS_URL, httpx.Response(429, headers={"retry-after": "900"}, text="slow down")
    )
    now = utcnow()
    _schedule_due(scheduler, post, account, now)
    job = scheduler.enqueue_due(now)[0]

    outcome = asyncio.run(scheduler.run_one(job, now))

    assert outcome.status == JobStatus.pending
    assert outcome.next_attempt_at == now + timedelta(seconds=900)


def test_unauthorized_disables_account(test_session, scheduler, platform_api, post, account):
    platform_api.add("POST", UGC_POSTS_URL, httpx.Response(401, json={"message": "revoked"}))
    schedule = _schedule_due(scheduler, post, account)
    job = scheduler.enqueue_due()[0]

    outcome = asyncio.run(scheduler.run_one(job))

    assert outcome.status == JobStatus.failed
    assert outcome.attempts == 1
    test_session.refresh(account)
    assert account.is_active is False
    assert "401" in account.last_error
    test_session.refresh(schedule)
    assert schedule.status == PostStatus.failed


def test_permission_error_fails_without_retry(scheduler, platform_api, post, account):
    platform_api.add("POST", UGC_POSTS_URL, httpx.Response(403, json={"message": "no scope"}))
    _schedule_due(scheduler, post, account)
    job = scheduler.enqueue_due()[0]

    outcome = asyncio.run(scheduler.run_one(job))

    assert outcome.status == JobStatus.failed
    assert outcome.attempts == 1
    assert account.is_active is True


def test_instagram_publish_fails_permanently(test_session, scheduler, make_account, post, platform_api):
    instagram = make_account(platform=SocialPlatform.instagram, external_id="ig-1")
    _schedule_due(scheduler, post, instagram)
    job = scheduler.enqueue_due()[0]

    outcome = asyncio.run(scheduler.run_one(job))

    assert outcome.status == JobStatus.failed
    assert outcome.attempts == 1
    assert "not implemented" in outcome.error
    assert platform_api.requests == []


def test_expired_linkedin_token_is_refreshed(test_session, scheduler, platform_api, vault, post, make_account):
    now = utcnow()
    account = make_account(expires_in=30, now=now)
    platform_api.add(
        "POST",
        LINKEDIN_TOKEN_URL,
        httpx.Response(200, json={"access_token": "renewed", "expires_in": 3600}),
    )
    platform_api.add("POST", UGC_POSTS_URL, _published())
    _schedule_due(scheduler, post, account, now)
    job = scheduler.enqueue_due(now)[0]

    outcome = asyncio.run(scheduler.run_one(job, now))

    assert outcome.status == JobStatus.succeeded
    assert platform_api.calls("POST", UGC_POSTS_URL)[0].headers["Authorization"] == "Bearer renewed"
    test_session.refresh(account)
    assert vault.credentials(account).access_token == "renewed"
    assert vault.refresh_token(account) == "refresh-1"
    assert not vault.is_expired(account, now)


def test_expired_facebook_token_disables_account(test_session, scheduler, platform_api, post, make_account):
    now = utcnow()
    account = make_account(
        platform=SocialPlatform.facebook,
        external_id="page-1",
        expires_in=30,
        page_id="page-1",
        page_access_token="page-token",
        now=now,
    )
    _schedule_due(scheduler, post, account, now)
    job = scheduler.enqueue_due(now)[0]

    outcome = asyncio.run(scheduler.run_one(job, now))

    assert outcome.status == JobStatus.failed
    assert outcome.attempts == 1
    test_session.refresh(account)
    assert account.is_active is False
    assert platform_api.requests == []


def test_disabled_account_fails_job(test_session, scheduler, vault, post, account, platform_api):
    _schedule_due(scheduler, post, account)
    job = scheduler.enqueue_due()[0]
    vault.mark_auth_failure(account.id, "Token revoked")

    outcome = asyncio.run(scheduler.run_one(job))

    assert outcome.status == JobStatus.failed
    assert outcome.error == "Token revoked"
    assert platform_api.requests == []


def test_cancelled_schedule_job_is_not_published(test_session, scheduler, post, account, platform_api):
    schedule = _schedule_due(scheduler, post, account)
    job = scheduler.enqueue_due()[0]
    # Cancelled after the job was listed but before it ran
    test_session.execute(
        update(PostSchedule)
        .where(PostSchedule.id == schedule.id)
        .values(status=PostStatus.cancelled, active_key=None)
    )
    test_session.commit()

    outcome = asyncio.run(scheduler.run_one(job))

    assert outcome.status == JobStatus.failed
    assert outcome.error == "Schedule is no longer active"
    test_session.refresh(schedule)
    assert schedule.status == PostStatus.cancelled
    assert platform_api.requests == []


# =============================================================================
# Maintenance
# =============================================================================


def test_reclaim_stale_returns_job_to_queue(test_session, scheduler, post, account):
    now = utcnow()
    schedule = _schedule_due(scheduler, post, account, now)
    job = scheduler.enqueue_due(now)[0]
    scheduler.claim(job, now)
    # The worker died after marking the schedule as publishing
    test_session.execute(
        update(PostSchedule).where(PostSchedule.id == schedule.id).values(status=PostStatus.publishing)
    )
    test_session.commit()

    assert scheduler.reclaim_stale(now + minutes(1)) == 0
    assert scheduler.reclaim_stale(now + minutes(3)) == 1

    test_session.refresh(job)
    assert job.status == JobStatus.pending
    assert job.started_at is None
    assert job.attempts == 1
    assert job.scheduled_for == now + minutes(3)
    test_session.refresh(schedule)
    assert schedule.status == PostStatus.scheduled


def test_reclaim_stale_fails_exhausted_job(test_session, scheduler, post, account):
    now = utcnow()
    schedule = _schedule_due(scheduler, post, account, now)
    job = scheduler.enqueue_due(now)[0]
    job.max_attempts = 1
    test_session.commit()
    scheduler.claim(job, now)

    assert scheduler.reclaim_stale(now + minutes(5)) == 1

    test_session.refresh(job)
    assert job.status == JobStatus.failed
    assert job.active_schedule_id is None
    test_session.refresh(schedule)
    assert schedule.status == PostStatus.failed
    assert schedule.active_key is None


def test_tick_runs_every_due_job(test_session, scheduler, platform_api, post, account, make_account):
    twitter = make_account(platform=SocialPlatform.twitter, external_id="tw-1")
    platform_api.add("POST", UGC_POSTS_URL, _published())
    platform_api.add("POST", TWEETS_URL, httpx.Response(503, text="over capacity"))
    now = utcnow()
    _schedule_due(scheduler, post, account, now)
    _schedule_due(scheduler, post, twitter, now)

    report = asyncio.run(scheduler.tick(now))

    summary = report.to_dict()
    assert summary["enqueued"] == 2
    assert summary["succeeded"] == 1
    assert summary["retrying"] == 1
    assert summary["failed"] == 0
    assert len(summary["outcomes"]) == 2
    # One schedule still in flight keeps the post scheduled
    assert post.status == PostStatus.scheduled

    # Nothing is due again within the same minute
    assert asyncio.run(scheduler.tick(now + minutes(1))).outcomes == []


def test_tick_sweeps_expired_oauth_states(test_session, scheduler, profile):
    OAuthStateStore(test_session).create(
        profile.user_id, SocialPlatform.linkedin, "https://app.test/", now=utcnow() - minutes(30)
    )

    report = asyncio.run(scheduler.tick())

    assert report.swept_states == 1
    assert report.outcomes == []
