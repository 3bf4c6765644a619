"""Admin API: status, manual triggers, and queue inspection.

Every route requires the X-Admin-Key header.
"""

import uuid

from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from courier.core.exceptions import (
    CooldownActive,
    DuplicateDelivery,
    PermanentDeliveryError,
    UserNotFound,
)
from courier.core.rate_limit import ADMIN_ACTION_LIMIT, limiter
from courier.dependencies import AppClock, AppSettings, DBSession, RequireAdmin, Scheduler
from courier.models.job import JobStatus
from courier.schemas.admin import (
    DeliveryAnalytics,
    RateLimitCounterResponse,
    SendTestResponse,
    StatusResponse,
    SweepResponse,
    TickResponse,
    WorkerResponse,
)
from courier.schemas.job import AdHocJobRequest, JobResponse
from courier.services import analytics, job_queue, rate_limiter
from courier.services.status import get_status, list_workers

router = APIRouter(dependencies=[RequireAdmin])


@router.get("/status", response_model=StatusResponse)
async def admin_status(db: DBSession, clock: AppClock, settings: AppSettings) -> StatusResponse:
    """Queue depth by status, active worker count, last sweep and last batch."""
    return await get_status(db, clock.now(), settings.heartbeat_timeout_seconds)


@router.post("/test-digest/{user_id}", response_model=SendTestResponse)
@limiter.limit(ADMIN_ACTION_LIMIT)
async def send_test_digest(
    request: Request,
    user_id: uuid.UUID,
    scheduler: Scheduler,
):
    """
    Queue a test digest for a user.

    Bypasses the daily dedup guard but is subject to a per-user cooldown.
    Returns 429 with Retry-After while the cooldown is running.
    """
    try:
        job = await scheduler.send_test_digest(user_id)
    except UserNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except PermanentDeliveryError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    except CooldownActive as e:
        retry_after = max(1, int((e.retry_at - scheduler.clock.now()).total_seconds()))
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={
                "detail": "Test send cooldown active",
                "retry_at": e.retry_at.isoformat(),
            },
            headers={"Retry-After": str(retry_after)},
        )

    return SendTestResponse(job_id=job.id)


@router.post("/grace-period/sweep", response_model=SweepResponse)
@limiter.limit(ADMIN_ACTION_LIMIT)
async def run_grace_sweep(request: Request, scheduler: Scheduler) -> SweepResponse:
    """Run a grace-period sweep now."""
    result = await scheduler.run_sweep(trigger="manual")
    return SweepResponse(examined=result.examined, suspended=result.suspended, errors=result.errors)


@router.post("/tick", response_model=TickResponse)
@limiter.limit(ADMIN_ACTION_LIMIT)
async def run_digest_tick(request: Request, scheduler: Scheduler) -> TickResponse:
    """Run a digest tick now (skipped if one is already running)."""
    result = await scheduler.run_tick()
    return TickResponse(
        tick_time=result.tick_time,
        skipped=result.skipped,
        eligible=result.eligible,
        enqueued=result.enqueued,
        deduplicated=result.deduplicated,
        rejected=result.rejected,
        batch_id=result.batch_id,
    )


@router.get("/jobs", response_model=list[JobResponse])
async def list_jobs(
    db: DBSession,
    job_status: JobStatus | None = Query(default=None, alias="status"),
    user_id: uuid.UUID | None = Query(default=None),
    limit: int = Query(default=50, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[JobResponse]:
    """List queued jobs, newest first."""
    jobs = await job_queue.list_jobs(db, status=job_status, user_id=user_id, limit=limit, offset=offset)
    return [JobResponse.model_validate(job) for job in jobs]


@router.post("/jobs", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(ADMIN_ACTION_LIMIT)
async def queue_job(request: Request, body: AdHocJobRequest, scheduler: Scheduler) -> JobResponse:
    """Queue an ad-hoc job (reminder, alert, welcome, password reset) for a user."""
    try:
        job = await scheduler.queue_user_job(
            body.user_id, body.job_type, payload=body.payload, scheduled_for=body.scheduled_for
        )
    except UserNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except DuplicateDelivery as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except PermanentDeliveryError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    return JobResponse.model_validate(job)


@router.post("/jobs/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(job_id: uuid.UUID, db: DBSession, clock: AppClock) -> JobResponse:
    """Cancel a job that has not started processing."""
    job = await job_queue.get_job(db, job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")

    if job.is_terminal:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Job already {job.status.value}")
    if not await job_queue.cancel(db, job_id, clock.now()):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Job is processing and can no longer be cancelled",
        )
    await db.commit()

    job = await job_queue.get_job(db, job_id)
    return JobResponse.model_validate(job)


@router.get("/workers", response_model=list[WorkerResponse])
async def workers(db: DBSession) -> list[WorkerResponse]:
    """Worker heartbeat records, most recently started first."""
    rows = await list_workers(db)
    return [WorkerResponse.model_validate(row) for row in rows]


@router.get("/analytics", response_model=DeliveryAnalytics)
async def delivery_analytics(
    db: DBSession,
    clock: AppClock,
    days: int = Query(default=30, ge=1, le=365),
) -> DeliveryAnalytics:
    """Delivery outcomes over the last `days` days."""
    return await analytics.summarize(db, clock.now(), days)


@router.get("/rate-limits", response_model=list[RateLimitCounterResponse])
async def rate_limits(db: DBSession) -> list[RateLimitCounterResponse]:
    """Current usage of every shared rate-limit counter."""
    counters = await rate_limiter.get_counters(db)
    return [RateLimitCounterResponse.model_validate(c) for c in counters]
