"""Publishing routes: schedules, jobs and the scheduler trigger."""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends

from api.auth.dependencies import (
    CurrentUser,
    get_current_user,
    require_role,
    require_scheduler_token,
)
from api.routes.v1.dependencies import get_scheduler
from socialsync.db.models import (
    JobStatus,
    PostScheduleCreate,
    PostScheduleRead,
    PostStatus,
    PublishJobRead,
    UserRole,
)
from socialsync.publishing import PublishScheduler

router = APIRouter(prefix="/v1/publishing", tags=["publishing"])

require_editor = require_role(UserRole.admin, UserRole.editor)


# =============================================================================
# Schedules
# =============================================================================


@router.post("/schedules", response_model=PostScheduleRead)
async def create_schedule(
    request: PostScheduleCreate,
    current_user: Annotated[CurrentUser, Depends(require_editor)],
    scheduler: Annotated[PublishScheduler, Depends(get_scheduler)],
) -> PostScheduleRead:
    """Schedule a post to a connected account."""
    schedule = scheduler.schedule_post(
        current_user.organization_id,
        request.post_id,
        request.social_account_id,
        request.scheduled_for,
    )
    return PostScheduleRead.model_validate(schedule)


@router.get("/schedules", response_model=list[PostScheduleRead])
async def list_schedules(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    scheduler: Annotated[PublishScheduler, Depends(get_scheduler)],
    status_filter: Optional[PostStatus] = None,
    post_id: Optional[UUID] = None,
) -> list[PostScheduleRead]:
    """List schedules of the organization, soonest first."""
    schedules = scheduler.list_schedules(
        current_user.organization_id, status=status_filter, post_id=post_id
    )
    return [PostScheduleRead.model_validate(s) for s in schedules]


@router.get("/schedules/{schedule_id}", response_model=PostScheduleRead)
async def get_schedule(
    schedule_id: UUID,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    scheduler: Annotated[PublishScheduler, Depends(get_scheduler)],
) -> PostScheduleRead:
    schedule = scheduler.get_schedule(current_user.organization_id, schedule_id)
    return PostScheduleRead.model_validate(schedule)


@router.delete("/schedules/{schedule_id}", response_model=PostScheduleRead)
async def cancel_schedule(
    schedule_id: UUID,
    current_user: Annotated[CurrentUser, Depends(require_editor)],
    scheduler: Annotated[PublishScheduler, Depends(get_scheduler)],
) -> PostScheduleRead:
    """Cancel a scheduled or failed schedule."""
    schedule = scheduler.cancel_schedule(current_user.organization_id, schedule_id)
    return PostScheduleRead.model_validate(schedule)


@router.post("/schedules/{schedule_id}/retry", response_model=PostScheduleRead)
async def retry_schedule(
    schedule_id: UUID,
    current_user: Annotated[CurrentUser, Depends(require_editor)],
    scheduler: Annotated[PublishScheduler, Depends(get_scheduler)],
) -> PostScheduleRead:
    """Retry a failed schedule now."""
    schedule = scheduler.retry_schedule(current_user.organization_id, schedule_id)
    return PostScheduleRead.model_validate(schedule)


# =============================================================================
# Jobs
# =============================================================================


@router.get("/jobs", response_model=list[PublishJobRead])
async def list_jobs(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    scheduler: Annotated[PublishScheduler, Depends(get_scheduler)],
    status_filter: Optional[JobStatus] = None,
) -> list[PublishJobRead]:
    jobs = scheduler.list_jobs(current_user.organization_id, status=status_filter)
    return [PublishJobRead.model_validate(j) for j in jobs]


@router.post("/tick", dependencies=[Depends(require_scheduler_token)])
async def tick(
    scheduler: Annotated[PublishScheduler, Depends(get_scheduler)],
) -> dict:
    """Internal trigger: run one scheduler pass."""
    report = await scheduler.tick()
    return report.to_dict()
