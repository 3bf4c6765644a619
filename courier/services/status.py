"""Admin status snapshot."""

from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from courier.models.batch_run import BatchRun
from courier.models.sweep_run import SweepRun
from courier.models.worker_status import WorkerState, WorkerStatus
from courier.schemas.admin import BatchSummary, StatusResponse, SweepSummary
from courier.services import job_queue


async def count_active_workers(db: AsyncSession, now: datetime, heartbeat_timeout: int) -> int:
    """Workers with a fresh heartbeat that have not stopped or errored."""
    cutoff = now - timedelta(seconds=heartbeat_timeout)
    result = await db.execute(
        select(func.count(WorkerStatus.worker_id)).where(
            WorkerStatus.last_heartbeat >= cutoff,
            WorkerStatus.state.in_([WorkerState.ACTIVE, WorkerState.IDLE]),
        )
    )
    return result.scalar_one()


async def list_workers(db: AsyncSession) -> list[WorkerStatus]:
    result = await db.execute(select(WorkerStatus).order_by(WorkerStatus.started_at.desc()))
    return list(result.scalars().all())


async def get_status(db: AsyncSession, now: datetime, heartbeat_timeout: int) -> StatusResponse:
    """Queue depth by status, live worker count, and the latest sweep and batch."""
    queue = await job_queue.queue_depth(db)
    active_workers = await count_active_workers(db, now, heartbeat_timeout)

    last_sweep = (
        await db.execute(select(SweepRun).order_by(SweepRun.started_at.desc()).limit(1))
    ).scalar_one_or_none()
    last_batch = (
        await db.execute(select(BatchRun).order_by(BatchRun.started_at.desc()).limit(1))
    ).scalar_one_or_none()

    # Degraded: work is waiting and nobody is alive to take it
    degraded = active_workers == 0 and (queue.pending + queue.retrying) > 0

    return StatusResponse(
        status="degraded" if degraded else "ok",
        checked_at=now,
        queue=queue,
        active_workers=active_workers,
        last_sweep=SweepSummary.model_validate(last_sweep) if last_sweep else None,
        last_batch=BatchSummary.model_validate(last_batch) if last_batch else None,
    )
