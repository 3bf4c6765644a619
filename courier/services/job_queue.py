"""Durable job queue backed by the jobs table.

Every state change is a single conditional UPDATE on the current status
(and, for in-flight jobs, the owning worker id), so two workers can never
both own a job and a reclaimed job cannot be completed by its old owner.

Lifecycle:
    pending -> processing -> completed
    processing -> retrying -> pending   (transient failure, after backoff)
    processing -> failed                (permanent failure or retries exhausted)
    pending/retrying -> failed          (cancelled)
"""

import uuid
from datetime import date, datetime, timedelta

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from courier.core.database import is_postgres
from courier.core.datetime_utils import to_naive_utc
from courier.core.logging import get_logger
from courier.core.retry import RetryConfig, backoff_delay
from courier.models.batch_run import BatchRun
from courier.models.job import TERMINAL_STATUSES, Job, JobStatus, JobType
from courier.models.worker_status import WorkerState, WorkerStatus
from courier.schemas.admin import QueueDepth
from courier.schemas.job import JobCreate
from courier.services import dedup

logger = get_logger(__name__)

CANCELLED_REASON = "cancelled"

# How many candidates a worker tries before giving up on a poll
CLAIM_CANDIDATES = 5


def _build_job(data: JobCreate, now: datetime, job_id: uuid.UUID | None = None) -> Job:
    return Job(
        id=job_id or uuid.uuid4(),
        job_type=data.job_type,
        user_id=data.user_id,
        user_email=str(data.user_email),
        status=JobStatus.PENDING,
        priority=data.priority,
        scheduled_for=to_naive_utc(data.scheduled_for) if data.scheduled_for else now,
        delivery_date=data.delivery_date,
        retry_count=0,
        max_retries=data.max_retries,
        payload=data.payload,
        batch_id=data.batch_id,
        created_at=now,
        updated_at=now,
    )


async def enqueue(
    db: AsyncSession,
    data: JobCreate,
    now: datetime,
    job_id: uuid.UUID | None = None,
) -> Job:
    """Add a pending job. The caller commits."""
    job = _build_job(data, now, job_id)
    db.add(job)
    await db.flush()

    logger.bind(
        job_id=str(job.id),
        job_type=job.job_type.value,
        user_id=str(job.user_id),
        priority=job.priority,
        scheduled_for=job.scheduled_for.isoformat(),
    ).debug("job_enqueued")
    return job


async def enqueue_many(
    db: AsyncSession,
    items: list[JobCreate],
    now: datetime,
    job_ids: list[uuid.UUID] | None = None,
) -> list[Job]:
    """Add several pending jobs in one flush. The caller commits.

    job_ids, when given, pairs up with items; the tick passes the ids its
    dedup claims were made for.
    """
    ids = job_ids or [None] * len(items)
    jobs = [_build_job(item, now, job_id) for item, job_id in zip(items, ids, strict=True)]
    db.add_all(jobs)
    await db.flush()
    logger.bind(count=len(jobs)).info("jobs_enqueued")
    return jobs


async def record_rejected(
    db: AsyncSession,
    job_id: uuid.UUID,
    job_type: JobType,
    user_id: uuid.UUID,
    user_email: str,
    reason: str,
    now: datetime,
    batch_id: uuid.UUID | None = None,
    delivery_date: date | None = None,
) -> Job:
    """Store a job that failed validation as already failed, so it shows up
    in queue depth and job listings instead of vanishing. The caller commits.
    """
    job = Job(
        id=job_id,
        job_type=job_type,
        user_id=user_id,
        user_email=user_email[:255],
        status=JobStatus.FAILED,
        priority=5,
        scheduled_for=now,
        delivery_date=delivery_date,
        retry_count=0,
        max_retries=0,
        last_error=reason[:2000],
        payload={},
        batch_id=batch_id,
        created_at=now,
        failed_at=now,
        updated_at=now,
    )
    db.add(job)
    await db.flush()
    logger.bind(job_id=str(job_id), user_id=str(user_id), reason=reason).warning("job_rejected")
    return job


async def get_job(db: AsyncSession, job_id: uuid.UUID) -> Job | None:
    return await db.get(Job, job_id, populate_existing=True)


async def list_jobs(
    db: AsyncSession,
    status: JobStatus | None = None,
    user_id: uuid.UUID | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Job]:
    query = select(Job).order_by(Job.created_at.desc())
    if status is not None:
        query = query.where(Job.status == status)
    if user_id is not None:
        query = query.where(Job.user_id == user_id)
    result = await db.execute(query.offset(offset).limit(limit))
    return list(result.scalars().all())


async def promote_due_retries(db: AsyncSession, now: datetime) -> int:
    """Move retrying jobs whose backoff has elapsed back to pending."""
    result = await db.execute(
        update(Job)
        .where(Job.status == JobStatus.RETRYING, Job.scheduled_for <= now)
        .values(status=JobStatus.PENDING, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def try_claim_job(
    db: AsyncSession,
    job_id: uuid.UUID,
    worker_id: str,
    now: datetime,
) -> bool:
    """Flip one pending job to processing for worker_id.

    This conditional update is the claim. Exactly one concurrent caller sees
    rowcount 1; everyone else lost the race.
    """
    result = await db.execute(
        update(Job)
        .where(
            Job.id == job_id,
            Job.status == JobStatus.PENDING,
            Job.scheduled_for <= now,
        )
        .values(
            status=JobStatus.PROCESSING,
            worker_id=worker_id,
            started_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def claim_next(db: AsyncSession, worker_id: str, now: datetime) -> Job | None:
    """Claim the next eligible job for worker_id.

    Eligible means pending and scheduled_for <= now. Candidates are ordered by
    priority (highest first), then age (oldest first). Commits, so the claim
    is durable before the worker starts on it.

    Returns:
        The claimed job, or None if nothing is eligible
    """
    await promote_due_retries(db, now)

    query = (
        select(Job.id)
        .where(Job.status == JobStatus.PENDING, Job.scheduled_for <= now)
        .order_by(Job.priority.desc(), Job.created_at.asc())
        .limit(CLAIM_CANDIDATES)
    )
    if is_postgres(db):
        query = query.with_for_update(skip_locked=True)

    candidate_ids = (await db.execute(query)).scalars().all()

    for job_id in candidate_ids:
        if await try_claim_job(db, job_id, worker_id, now):
            await db.commit()
            job = await get_job(db, job_id)
            logger.bind(
                job_id=str(job_id),
                worker_id=worker_id,
                job_type=job.job_type.value if job else None,
            ).debug("job_claimed")
            return job

    await db.commit()
    return None


def _owned(job_id: uuid.UUID, worker_id: str) -> tuple:
    return (
        Job.id == job_id,
        Job.status == JobStatus.PROCESSING,
        Job.worker_id == worker_id,
    )


async def _bump_batch(db: AsyncSession, batch_id: uuid.UUID | None, completed: bool) -> None:
    if batch_id is None:
        return
    column = BatchRun.completed_jobs if completed else BatchRun.failed_jobs
    await db.execute(
        update(BatchRun)
        .where(BatchRun.id == batch_id)
        .values({column.key: column + 1})
        .execution_options(synchronize_session=False)
    )


async def mark_completed(db: AsyncSession, job: Job, worker_id: str, now: datetime) -> bool:
    """processing -> completed. Returns False if worker_id no longer owns the job."""
    result = await db.execute(
        update(Job)
        .where(*_owned(job.id, worker_id))
        .values(
            status=JobStatus.COMPLETED,
            completed_at=now,
            updated_at=now,
            last_error=None,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.bind(job_id=str(job.id), worker_id=worker_id).warning("job_ownership_lost")
        return False
    await _bump_batch(db, job.batch_id, completed=True)
    return True


async def mark_failed(
    db: AsyncSession,
    job: Job,
    worker_id: str,
    reason: str,
    now: datetime,
) -> bool:
    """processing -> failed, regardless of remaining retries."""
    result = await db.execute(
        update(Job)
        .where(*_owned(job.id, worker_id))
        .values(
            status=JobStatus.FAILED,
            failed_at=now,
            updated_at=now,
            last_error=reason[:2000],
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.bind(job_id=str(job.id), worker_id=worker_id).warning("job_ownership_lost")
        return False
    await _bump_batch(db, job.batch_id, completed=False)
    return True


async def schedule_retry(
    db: AsyncSession,
    job: Job,
    worker_id: str,
    error: str,
    now: datetime,
    retry_config: RetryConfig,
) -> JobStatus | None:
    """Handle a transient failure.

    If retries remain: processing -> retrying with exponential backoff.
    Otherwise: processing -> failed.

    Returns:
        The new status, or None if worker_id no longer owns the job
    """
    if job.retry_count >= job.max_retries:
        failed = await mark_failed(
            db, job, worker_id, f"Failed after {job.max_retries} retries: {error}", now
        )
        return JobStatus.FAILED if failed else None

    next_count = job.retry_count + 1
    delay = backoff_delay(next_count, retry_config)
    retry_at = now + timedelta(seconds=delay)

    result = await db.execute(
        update(Job)
        .where(*_owned(job.id, worker_id), Job.retry_count < Job.max_retries)
        .values(
            status=JobStatus.RETRYING,
            retry_count=next_count,
            scheduled_for=retry_at,
            last_error=error[:2000],
            worker_id=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.bind(job_id=str(job.id), worker_id=worker_id).warning("job_ownership_lost")
        return None

    logger.bind(
        job_id=str(job.id),
        retry=next_count,
        max_retries=job.max_retries,
        delay_seconds=round(delay, 2),
        error=error,
    ).warning("job_retry_scheduled")
    return JobStatus.RETRYING


async def defer(
    db: AsyncSession,
    job: Job,
    worker_id: str,
    until: datetime,
    reason: str,
    now: datetime,
) -> bool:
    """processing -> retrying until a fixed instant without consuming a retry.

    Used when a shared rate limit is exhausted; the job resumes after the
    counter's reset boundary.
    """
    result = await db.execute(
        update(Job)
        .where(*_owned(job.id, worker_id))
        .values(
            status=JobStatus.RETRYING,
            scheduled_for=until,
            last_error=reason[:2000],
            worker_id=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def cancel(db: AsyncSession, job_id: uuid.UUID, now: datetime) -> bool:
    """Cancel a job that has not started processing.

    Processing jobs are not preemptible and are left alone.

    Returns:
        True if the job was cancelled
    """
    result = await db.execute(
        update(Job)
        .where(
            Job.id == job_id,
            Job.status.in_([JobStatus.PENDING, JobStatus.RETRYING]),
        )
        .values(
            status=JobStatus.FAILED,
            last_error=CANCELLED_REASON,
            failed_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False

    await dedup.release_claim(db, job_id)
    logger.bind(job_id=str(job_id)).info("job_cancelled")
    return True


async def reclaim_stale(db: AsyncSession, now: datetime, heartbeat_timeout: int) -> int:
    """Return processing jobs of dead workers to pending.

    A worker is dead when its heartbeat is older than heartbeat_timeout
    seconds, it has stopped, or it never registered. Stale workers are
    flagged ERROR for the admin surface.

    Returns:
        Number of jobs reclaimed
    """
    cutoff = now - timedelta(seconds=heartbeat_timeout)

    await db.execute(
        update(WorkerStatus)
        .where(
            WorkerStatus.last_heartbeat < cutoff,
            WorkerStatus.state.in_([WorkerState.ACTIVE, WorkerState.IDLE]),
        )
        .values(state=WorkerState.ERROR)
        .execution_options(synchronize_session=False)
    )

    live_workers = select(WorkerStatus.worker_id).where(
        WorkerStatus.last_heartbeat >= cutoff,
        WorkerStatus.state != WorkerState.STOPPED,
    )
    result = await db.execute(
        update(Job)
        .where(
            Job.status == JobStatus.PROCESSING,
            or_(Job.worker_id.is_(None), Job.worker_id.not_in(live_workers)),
        )
        .values(status=JobStatus.PENDING, worker_id=None, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    reclaimed = result.rowcount or 0
    if reclaimed:
        logger.bind(reclaimed=reclaimed, cutoff=cutoff.isoformat()).warning("stale_jobs_reclaimed")
    return reclaimed


async def queue_depth(db: AsyncSession) -> QueueDepth:
    """Count jobs by status."""
    result = await db.execute(select(Job.status, func.count(Job.id)).group_by(Job.status))
    counts = {status.value: count for status, count in result.all()}
    return QueueDepth(**counts)


async def purge_finished(db: AsyncSession, older_than: datetime) -> int:
    """Delete completed/failed jobs last touched before older_than."""
    result = await db.execute(
        delete(Job)
        .where(Job.status.in_(TERMINAL_STATUSES), Job.updated_at < older_than)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0
