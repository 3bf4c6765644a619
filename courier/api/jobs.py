"""Scheduler monitoring: registered schedules and their run history."""

from fastapi import APIRouter, Query
from sqlalchemy import func, select

from courier.core.scheduler import get_job_schedules
from courier.dependencies import DBSession, RequireAdmin
from courier.models.job_run import JobRun
from courier.schemas.schedule import JobRunResponse, ScheduleResponse, ScheduleStatsResponse

router = APIRouter(dependencies=[RequireAdmin])

SUCCESS = "success"


@router.get("/jobs/schedules", response_model=list[ScheduleResponse])
async def list_schedules() -> list[ScheduleResponse]:
    """Schedules registered with the running scheduler (empty when it is disabled)."""
    return [ScheduleResponse(**s) for s in await get_job_schedules()]


@router.get("/jobs/runs", response_model=list[JobRunResponse])
async def list_job_runs(
    db: DBSession,
    schedule_id: str | None = Query(default=None, description="Only runs of this schedule"),
    limit: int = Query(default=50, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[JobRunResponse]:
    """Run history, newest first."""
    query = select(JobRun)
    if schedule_id:
        query = query.where(JobRun.schedule_id == schedule_id)

    result = await db.execute(query.order_by(JobRun.scheduled_at.desc()).offset(offset).limit(limit))
    return [JobRunResponse.model_validate(run) for run in result.scalars()]


@router.get("/jobs/stats", response_model=list[ScheduleStatsResponse])
async def get_job_stats(db: DBSession) -> list[ScheduleStatsResponse]:
    """Per-schedule success rate and most recent outcome."""
    totals = (
        select(
            JobRun.schedule_id,
            func.count(JobRun.id).label("total"),
            func.count(JobRun.id).filter(JobRun.outcome == SUCCESS).label("successful"),
            func.max(JobRun.scheduled_at).label("last_run"),
        )
        .group_by(JobRun.schedule_id)
        .subquery()
    )
    query = (
        select(totals, JobRun.outcome)
        .join(
            JobRun,
            (JobRun.schedule_id == totals.c.schedule_id) & (JobRun.scheduled_at == totals.c.last_run),
        )
        .order_by(totals.c.schedule_id)
    )

    stats: dict[str, ScheduleStatsResponse] = {}
    for row in (await db.execute(query)).all():
        # Two runs sharing the latest timestamp collapse to one entry
        stats[row.schedule_id] = ScheduleStatsResponse(
            schedule_id=row.schedule_id,
            total_runs=row.total,
            successful_runs=row.successful,
            failed_runs=row.total - row.successful,
            success_rate=row.successful / row.total if row.total else 0.0,
            last_run=row.last_run,
            last_outcome=row.outcome,
        )
    return list(stats.values())
