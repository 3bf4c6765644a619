"""Queue workers.

A Worker polls the queue, claims one job at a time and drives it through
composer, rate limiter and mailer. A WorkerPool runs N workers as asyncio
tasks in one process; several processes may run pools against the same
database.

Each worker keeps a worker_status row fresh with a heartbeat task. If the
heartbeat goes stale the reaper hands the worker's jobs to someone else,
and every later transition by the old owner is rejected by the queue.
"""

import asyncio
import contextlib
import uuid
from datetime import date

from pydantic import ValidationError
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from courier.config import Settings, get_settings
from courier.core.clock import Clock, SystemClock
from courier.core.database import insert_if_absent
from courier.core.exceptions import (
    PermanentDeliveryError,
    RateLimitExceeded,
    TransientDeliveryError,
)
from courier.core.logging import get_logger
from courier.core.retry import RetryConfig
from courier.core.security import generate_worker_id
from courier.models.job import Job, JobStatus, JobType
from courier.models.user import User
from courier.models.worker_status import WorkerState, WorkerStatus
from courier.schemas.content import DigestContent
from courier.services import analytics, dedup, job_queue, rate_limiter
from courier.services.composer import BaseComposer, get_composer
from courier.services.mailer import BaseMailer, get_mailer

logger = get_logger(__name__)


def retry_config_from(settings: Settings) -> RetryConfig:
    return RetryConfig(
        backoff_base=settings.backoff_base_seconds,
        backoff_max=settings.backoff_max_seconds,
        jitter=settings.backoff_jitter,
    )


class Worker:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock | None = None,
        settings: Settings | None = None,
        composer: BaseComposer | None = None,
        mailer: BaseMailer | None = None,
        worker_id: str | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()
        self.composer = composer or get_composer()
        self.mailer = mailer or get_mailer()
        self.worker_id = worker_id or generate_worker_id()
        self.retry_config = retry_config_from(self.settings)

        self.state = WorkerState.IDLE
        self.current_job_id: uuid.UUID | None = None
        self.error_count = 0
        self._processed_today = 0
        self._processed_day: date | None = None

    # Heartbeats

    async def register(self) -> None:
        """Create or revive this worker's status row."""
        now = self.clock.now()
        async with self.session_factory() as db:
            inserted = await insert_if_absent(
                db,
                WorkerStatus,
                {
                    "worker_id": self.worker_id,
                    "state": WorkerState.IDLE,
                    "last_heartbeat": now,
                    "jobs_processed_today": 0,
                    "error_count": 0,
                    "started_at": now,
                },
            )
            if not inserted:
                await self._write_status(db, WorkerState.IDLE)
            await db.commit()
        logger.bind(worker_id=self.worker_id).info("worker_registered")

    async def _write_status(self, db: AsyncSession, state: WorkerState) -> None:
        await db.execute(
            update(WorkerStatus)
            .where(WorkerStatus.worker_id == self.worker_id)
            .values(
                state=state,
                current_job_id=self.current_job_id,
                last_heartbeat=self.clock.now(),
                jobs_processed_today=self._processed_today,
                error_count=self.error_count,
            )
            .execution_options(synchronize_session=False)
        )

    async def heartbeat(self, state: WorkerState | None = None) -> None:
        async with self.session_factory() as db:
            await self._write_status(db, state or self.state)
            await db.commit()

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.heartbeat_interval_seconds)
            try:
                await self.heartbeat()
            except Exception as e:
                logger.bind(worker_id=self.worker_id, error=str(e)).error("worker_heartbeat_failed")

    def _count_processed(self) -> None:
        today = self.clock.now().date()
        if self._processed_day != today:
            self._processed_day = today
            self._processed_today = 0
        self._processed_today += 1

    # Processing

    async def run_once(self) -> bool:
        """Claim and process at most one job.

        Returns:
            True if a job was claimed
        """
        async with self.session_factory() as db:
            job = await job_queue.claim_next(db, self.worker_id, self.clock.now())
            if job is None:
                self.state = WorkerState.IDLE
                return False

            self.state = WorkerState.ACTIVE
            self.current_job_id = job.id
            try:
                await self.process(db, job)
            finally:
                self.current_job_id = None
                self._count_processed()
            return True

    async def _compose(self, db: AsyncSession, job: Job) -> DigestContent | None:
        if job.job_type != JobType.DIGEST:
            try:
                return DigestContent.model_validate(job.payload)
            except ValidationError as e:
                raise PermanentDeliveryError(f"Malformed {job.job_type.value} payload: {e}") from e

        await rate_limiter.acquire_all(
            db, rate_limiter.composer_limits(self.settings), self.clock.now()
        )
        await db.commit()

        async with asyncio.timeout(self.settings.external_call_timeout_seconds):
            return await self.composer.compose(job.user_id)

    async def _send(self, db: AsyncSession, job: Job, content: DigestContent) -> None:
        await rate_limiter.acquire_all(
            db, rate_limiter.mailer_limits(self.settings, job.user_id), self.clock.now()
        )
        await db.commit()

        async with asyncio.timeout(self.settings.external_call_timeout_seconds):
            accepted = await self.mailer.send(job.user_email, content)
        if not accepted:
            raise TransientDeliveryError("Mailer did not accept the message")

    async def _deliver(self, db: AsyncSession, job: Job) -> None:
        job_type = job.job_type.value

        if await db.get(User, job.user_id) is None:
            raise PermanentDeliveryError(f"User {job.user_id} no longer exists")

        if job.delivery_date is not None:
            claim = await dedup.try_claim(
                db, job.user_id, job_type, job.delivery_date, job.id, self.clock.now()
            )
            if not claim.claimed:
                now = self.clock.now()
                await job_queue.mark_failed(
                    db, job, self.worker_id, f"duplicate: slot owned by job {claim.owner_job_id}", now
                )
                await analytics.record(
                    db, job.user_id, job_type, analytics.OUTCOME_SKIPPED_DUPLICATE, now, job_id=job.id
                )
                await db.commit()
                return
            await db.commit()

        content = await self._compose(db, job)
        if content is None:
            now = self.clock.now()
            if await job_queue.mark_completed(db, job, self.worker_id, now):
                await dedup.mark_empty(db, job.id, now)
                await analytics.record(db, job.user_id, job_type, analytics.OUTCOME_EMPTY, now, job_id=job.id)
            await db.commit()
            return

        await self._send(db, job, content)

        now = self.clock.now()
        if await job_queue.mark_completed(db, job, self.worker_id, now):
            await dedup.mark_sent(db, job.id, now)
            await analytics.record(db, job.user_id, job_type, analytics.OUTCOME_SENT, now, job_id=job.id)
        await db.commit()
        logger.bind(job_id=str(job.id), worker_id=self.worker_id, job_type=job_type).info("job_completed")

    async def process(self, db: AsyncSession, job: Job) -> None:
        """Run a claimed job to its next state. Never raises for job-level errors."""
        job_type = job.job_type.value
        log = logger.bind(job_id=str(job.id), worker_id=self.worker_id, job_type=job_type)

        try:
            await self._deliver(db, job)
            return
        except PermanentDeliveryError as e:
            await self._reset(db, job)
            now = self.clock.now()
            log.bind(error=str(e)).error("job_failed_permanently")
            if await job_queue.mark_failed(db, job, self.worker_id, str(e), now):
                await dedup.mark_failed(db, job.id, now)
                await analytics.record(
                    db, job.user_id, job_type, analytics.OUTCOME_FAILED, now, job_id=job.id, detail=str(e)
                )
        except RateLimitExceeded as e:
            # Keep the releases acquire_all made for the limits it had already taken
            await db.commit()
            now = self.clock.now()
            log.bind(limit_key=e.limit_key, reset_at=e.reset_at.isoformat()).info("job_deferred")
            if await job_queue.defer(db, job, self.worker_id, e.reset_at, str(e), now):
                await analytics.record(
                    db, job.user_id, job_type, analytics.OUTCOME_DEFERRED, now, job_id=job.id, detail=str(e)
                )
        except Exception as e:
            # Transient errors, timeouts, transport errors and anything unexpected retry
            self.error_count += 1
            await self._reset(db, job)
            now = self.clock.now()
            error = str(e) or type(e).__name__
            log.bind(error=error, error_type=type(e).__name__).warning("job_attempt_failed")
            status = await job_queue.schedule_retry(
                db, job, self.worker_id, error, now, self.retry_config
            )
            if status == JobStatus.FAILED:
                await dedup.mark_failed(db, job.id, now)
                await analytics.record(
                    db, job.user_id, job_type, analytics.OUTCOME_FAILED, now, job_id=job.id, detail=error
                )
        await db.commit()

    async def _reset(self, db: AsyncSession, job: Job) -> None:
        # Discard any half-done statement, then reload the job the rollback expired
        await db.rollback()
        await db.refresh(job)

    # Lifecycle

    async def run(self, stop_event: asyncio.Event) -> None:
        """Poll until stop_event is set. An in-flight job always finishes first."""
        await self.register()
        heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        logger.bind(worker_id=self.worker_id).info("worker_started")

        try:
            while not stop_event.is_set():
                try:
                    processed = await self.run_once()
                except Exception as e:
                    self.error_count += 1
                    self.state = WorkerState.ERROR
                    logger.bind(worker_id=self.worker_id, error=str(e)).error("worker_poll_failed")
                    processed = False

                if not processed:
                    try:
                        await asyncio.wait_for(
                            stop_event.wait(), timeout=self.settings.worker_poll_interval_seconds
                        )
                    except TimeoutError:
                        pass
        finally:
            heartbeat_task.cancel()
            # A beat still in flight must not overwrite the STOPPED state
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat_task
            self.state = WorkerState.STOPPED
            try:
                await self.heartbeat(WorkerState.STOPPED)
            except Exception as e:
                logger.bind(worker_id=self.worker_id, error=str(e)).error("worker_stop_record_failed")
            logger.bind(worker_id=self.worker_id, processed_today=self._processed_today).info(
                "worker_stopped"
            )


class WorkerPool:
    """N workers sharing one event loop."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        size: int | None = None,
        clock: Clock | None = None,
        settings: Settings | None = None,
        composer: BaseComposer | None = None,
        mailer: BaseMailer | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.size = size or settings.worker_pool_size
        self.workers = [
            Worker(session_factory, clock=clock, settings=settings, composer=composer, mailer=mailer)
            for _ in range(self.size)
        ]
        self._stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._tasks = [
            asyncio.create_task(worker.run(self._stop_event), name=worker.worker_id)
            for worker in self.workers
        ]
        logger.bind(size=self.size).info("worker_pool_started")

    async def stop(self) -> None:
        """Stop polling and wait for in-flight jobs to finish."""
        self._stop_event.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.bind(size=self.size).info("worker_pool_stopped")

