"""
APScheduler integration for FastAPI.

Drives the delivery engine's periodic work in-process. Every entry goes
through the shared DigestScheduler, so the cron path and the admin/CLI
path run the same code.

Jobs:
- Digest tick: scans for due users and enqueues digests (top of every hour)
- Grace sweep: suspends accounts whose grace period ended (hourly, offset)
- Stale reaper: hands jobs of dead workers back to the queue (interval)
- Job cleanup: purges finished jobs past retention (02:00 UTC)
"""

from typing import Any

from apscheduler import AsyncScheduler, ConflictPolicy, JobOutcome, JobReleased
from apscheduler.datastores.memory import MemoryDataStore
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from courier.config import get_settings
from courier.core.database import AsyncSessionLocal
from courier.core.datetime_utils import to_naive_utc, utc_now
from courier.core.logging import get_logger

logger = get_logger(__name__)

# Global scheduler instance
scheduler: AsyncScheduler | None = None


async def digest_tick_job() -> None:
    """Hourly digest tick."""
    from courier.services.digest_scheduler import get_digest_scheduler

    logger.debug("scheduled_digest_tick_started")
    try:
        result = await get_digest_scheduler().run_tick()
        logger.bind(
            eligible=result.eligible,
            enqueued=result.enqueued,
            deduplicated=result.deduplicated,
            rejected=result.rejected,
            skipped=result.skipped,
        ).info("scheduled_digest_tick_completed")
    except Exception as e:
        logger.bind(error=str(e)).error("scheduled_digest_tick_failed")
        raise  # Re-raise so APScheduler records the failure


async def grace_sweep_job() -> None:
    """Hourly grace-period sweep, independent of the digest pipeline."""
    from courier.services.digest_scheduler import get_digest_scheduler

    try:
        result = await get_digest_scheduler().run_sweep(trigger="scheduled")
        logger.bind(
            examined=result.examined,
            suspended=result.suspended,
            errors=len(result.errors),
        ).info("scheduled_grace_sweep_completed")
    except Exception as e:
        logger.bind(error=str(e)).error("scheduled_grace_sweep_failed")
        raise


async def stale_reaper_job() -> None:
    from courier.services.digest_scheduler import get_digest_scheduler

    try:
        reclaimed = await get_digest_scheduler().reap_stale()
        if reclaimed:
            logger.bind(reclaimed=reclaimed).info("scheduled_reaper_completed")
    except Exception as e:
        logger.bind(error=str(e)).error("scheduled_reaper_failed")
        raise


async def job_cleanup_job() -> None:
    """Daily purge of finished jobs."""
    from courier.services.digest_scheduler import get_digest_scheduler

    try:
        await get_digest_scheduler().purge_finished()
    except Exception as e:
        logger.bind(error=str(e)).error("scheduled_job_cleanup_failed")
        raise


async def _record_job_result(
    schedule_id: str,
    scheduled_at,
    started_at,
    outcome: JobOutcome,
    error: str | None = None,
) -> None:
    """Record job execution result to database."""
    from courier.models.job_run import JobRun

    async with AsyncSessionLocal() as db:
        job_run = JobRun(
            schedule_id=schedule_id,
            scheduled_at=to_naive_utc(scheduled_at),
            started_at=to_naive_utc(started_at),
            finished_at=utc_now(),
            outcome=outcome.name,
            error=error,
        )
        db.add(job_run)
        await db.commit()


async def start_scheduler() -> AsyncScheduler | None:
    """Initialize and start the scheduler."""
    global scheduler

    settings = get_settings()
    if not settings.scheduler_enabled:
        logger.info("scheduler_disabled_by_config")
        return None

    # Schedules are rebuilt from settings on every start; nothing to persist
    data_store = MemoryDataStore()
    scheduler = AsyncScheduler(data_store=data_store)

    # Start the scheduler first (required before calling other methods in APScheduler 4.x)
    await scheduler.__aenter__()

    # Subscribe to job events for history tracking
    scheduler.subscribe(_on_job_completed)

    await scheduler.add_schedule(
        digest_tick_job,
        CronTrigger(minute=settings.digest_tick_minute),
        id="digest_tick",
        conflict_policy=ConflictPolicy.replace,
    )

    await scheduler.add_schedule(
        grace_sweep_job,
        CronTrigger(minute=settings.grace_sweep_minute),
        id="grace_sweep",
        conflict_policy=ConflictPolicy.replace,
    )

    await scheduler.add_schedule(
        stale_reaper_job,
        IntervalTrigger(seconds=settings.reaper_interval_seconds),
        id="stale_reaper",
        conflict_policy=ConflictPolicy.replace,
    )

    await scheduler.add_schedule(
        job_cleanup_job,
        CronTrigger(hour=2, minute=0),
        id="job_cleanup",
        conflict_policy=ConflictPolicy.replace,
    )

    # Start the scheduler's background worker to actually process jobs
    await scheduler.start_in_background()

    logger.bind(jobs=["digest_tick", "grace_sweep", "stale_reaper", "job_cleanup"]).info(
        "scheduler_started"
    )

    return scheduler


async def _on_job_completed(event: Any) -> None:
    """Handle job completion events."""
    if isinstance(event, JobReleased):
        try:
            scheduled_at = (
                getattr(event, "scheduled_start", None)
                or getattr(event, "scheduled_fire_time", None)
                or utc_now()
            )
            started_at = getattr(event, "started_at", None) or utc_now()
            error = getattr(event, "exception_message", None) or getattr(event, "exception", None)
            await _record_job_result(
                schedule_id=event.schedule_id or "manual",
                scheduled_at=scheduled_at,
                started_at=started_at,
                outcome=event.outcome,
                error=str(error) if event.outcome == JobOutcome.error and error else None,
            )
        except Exception as e:
            logger.bind(error=str(e)).error("failed_to_record_job_result")


async def stop_scheduler() -> None:
    """Gracefully stop the scheduler."""
    global scheduler
    if scheduler:
        await scheduler.__aexit__(None, None, None)
        logger.info("scheduler_stopped")
        scheduler = None


async def get_job_schedules() -> list[dict[str, Any]]:
    """Get all registered job schedules."""
    if not scheduler:
        return []

    schedules = await scheduler.get_schedules()
    return [
        {
            "id": s.id,
            "task_id": s.task_id,
            "trigger": str(s.trigger),
            "next_fire_time": s.next_fire_time.isoformat() if s.next_fire_time else None,
            "last_fire_time": s.last_fire_time.isoformat() if s.last_fire_time else None,
        }
        for s in schedules
    ]
