"""Digest scheduler: the object every trigger goes through.

Constructed with a session factory and a clock, so the hourly cron, the
admin API, the CLI and tests all drive the same code. It holds no delivery
state of its own; the only in-process state is the lock that keeps ticks
from overlapping within one process.
"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import lru_cache

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from courier.config import AppConfig, Settings, get_config, get_settings
from courier.core.clock import Clock, SystemClock
from courier.core.datetime_utils import InvalidZoneError, resolve_zone, to_naive_utc
from courier.core.exceptions import DuplicateDelivery, PermanentDeliveryError, UserNotFound
from courier.core.logging import get_logger
from courier.models.batch_run import BatchRun
from courier.models.job import Job, JobType
from courier.models.user import User
from courier.schemas.content import DigestContent
from courier.schemas.job import JobCreate
from courier.services import analytics, dedup, eligibility, grace_period, job_queue
from courier.services.cooldown import acquire_cooldown, send_test_key

logger = get_logger(__name__)


@dataclass
class TickResult:
    tick_time: datetime
    skipped: bool = False
    eligible: int = 0
    enqueued: int = 0
    deduplicated: int = 0
    rejected: int = 0
    batch_id: uuid.UUID | None = None


class DigestScheduler:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock | None = None,
        settings: Settings | None = None,
        config: AppConfig | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()
        self.config = config or get_config()
        self._tick_lock = asyncio.Lock()

    @property
    def tick_running(self) -> bool:
        return self._tick_lock.locked()

    async def run_tick(self, tick_time: datetime | None = None) -> TickResult:
        """Scan for due users and enqueue their digests.

        Not reentrant: if a scan is still running, this tick is skipped and
        logged. A persistence failure is logged and re-raised; the next fire
        is the retry.
        """
        tick_time = to_naive_utc(tick_time) if tick_time else self.clock.now()

        if self._tick_lock.locked():
            logger.bind(tick_time=tick_time.isoformat()).warning("tick_overlap_skipped")
            return TickResult(tick_time=tick_time, skipped=True)

        async with self._tick_lock:
            try:
                return await self._run_tick(tick_time)
            except Exception as e:
                logger.bind(tick_time=tick_time.isoformat(), error=str(e)).error("digest_tick_failed")
                raise

    async def _run_tick(self, tick_time: datetime) -> TickResult:
        policy = self.config.delivery.policy_for(JobType.DIGEST.value)
        result = TickResult(tick_time=tick_time)

        async with self.session_factory() as db:
            users = await eligibility.scan(db, tick_time, self.settings.default_timezone_offset)
            result.eligible = len(users)

            now = self.clock.now()
            batch = BatchRun(
                id=uuid.uuid4(),
                tick_time=tick_time,
                target_hour=tick_time.hour,
                eligible_users=len(users),
                started_at=now,
            )
            db.add(batch)
            await db.flush()

            pending: list[JobCreate] = []
            pending_ids: list[uuid.UUID] = []
            for user in users:
                job_id = uuid.uuid4()
                if policy.dedup_daily:
                    claim = await dedup.try_claim(
                        db, user.user_id, JobType.DIGEST.value, user.local_date, job_id, now
                    )
                    if not claim.claimed:
                        result.deduplicated += 1
                        continue

                try:
                    data = self._job_create(
                        job_type=JobType.DIGEST,
                        user_id=user.user_id,
                        user_email=user.email,
                        priority=policy.priority,
                        max_retries=policy.max_retries,
                        delivery_date=user.local_date if policy.dedup_daily else None,
                        batch_id=batch.id,
                    )
                except PermanentDeliveryError as e:
                    await self._reject(db, job_id, user, batch.id, str(e), now)
                    result.rejected += 1
                    continue

                pending.append(data)
                pending_ids.append(job_id)

            if pending:
                await job_queue.enqueue_many(db, pending, now, job_ids=pending_ids)
            result.enqueued = len(pending)

            batch.total_jobs = result.enqueued + result.rejected
            batch.failed_jobs = result.rejected
            batch.skipped_jobs = result.deduplicated
            batch.finished_at = self.clock.now()
            await db.commit()
            result.batch_id = batch.id

        logger.bind(
            tick_time=tick_time.isoformat(),
            eligible=result.eligible,
            enqueued=result.enqueued,
            deduplicated=result.deduplicated,
            rejected=result.rejected,
            batch_id=str(result.batch_id),
        ).info("digest_tick_completed")
        return result

    @staticmethod
    def _job_create(**fields) -> JobCreate:
        """Validate a job, turning bad stored data (e.g. a malformed address) into a permanent error."""
        try:
            return JobCreate(**fields)
        except ValidationError as e:
            invalid = ", ".join(str(err["loc"][0]) for err in e.errors() if err["loc"])
            raise PermanentDeliveryError(
                f"Cannot queue {fields['job_type'].value} for user {fields['user_id']}: invalid {invalid}"
            ) from e

    async def _reject(
        self,
        db: AsyncSession,
        job_id: uuid.UUID,
        user: eligibility.EligibleUser,
        batch_id: uuid.UUID,
        reason: str,
        now: datetime,
    ) -> None:
        """Settle a due user whose digest cannot be queued as a failed delivery."""
        await job_queue.record_rejected(
            db,
            job_id,
            JobType.DIGEST,
            user.user_id,
            user.email,
            reason,
            now,
            batch_id=batch_id,
            delivery_date=user.local_date,
        )
        await dedup.mark_failed(db, job_id, now)
        await analytics.record(
            db,
            user.user_id,
            JobType.DIGEST.value,
            analytics.OUTCOME_FAILED,
            now,
            job_id=job_id,
            detail=reason,
        )

    async def _get_user(self, db: AsyncSession, user_id: uuid.UUID) -> User:
        user = await db.get(User, user_id)
        if user is None:
            raise UserNotFound(f"User {user_id} not found")
        return user

    async def send_test_digest(self, user_id: uuid.UUID) -> Job:
        """Queue a one-off digest for user_id outside the daily dedup guard.

        Raises:
            UserNotFound: If the user does not exist
            PermanentDeliveryError: If the stored address cannot be mailed
            CooldownActive: If a test send for this user ran too recently
        """
        policy = self.config.delivery.policy_for(JobType.DIGEST.value)

        async with self.session_factory() as db:
            user = await self._get_user(db, user_id)
            now = self.clock.now()

            # Validated before the cooldown so a bad address does not use it up
            data = self._job_create(
                job_type=JobType.DIGEST,
                user_id=user.id,
                user_email=user.email,
                priority=self.config.delivery.test_send_priority,
                max_retries=policy.max_retries,
                payload={"test": True},
            )
            await acquire_cooldown(
                db, send_test_key(user_id), self.settings.test_send_cooldown_seconds, now
            )
            job = await job_queue.enqueue(db, data, now)
            await db.commit()

        logger.bind(user_id=str(user_id), job_id=str(job.id)).info("test_digest_queued")
        return job

    async def queue_user_job(
        self,
        user_id: uuid.UUID,
        job_type: JobType,
        payload: dict | None = None,
        scheduled_for: datetime | None = None,
    ) -> Job:
        """Queue an ad-hoc job with the per-type policy from config.yml.

        Non-digest jobs carry their message in payload (subject, html, text).

        Raises:
            UserNotFound: If the user does not exist
            PermanentDeliveryError: If a non-digest payload is not a valid message, or
                the stored address cannot be mailed
            DuplicateDelivery: If the type is deduplicated daily and today's slot is taken
        """
        payload = payload or {}
        if job_type != JobType.DIGEST:
            try:
                DigestContent.model_validate(payload)
            except ValidationError as e:
                raise PermanentDeliveryError(f"Invalid {job_type.value} payload: {e}") from e

        policy = self.config.delivery.policy_for(job_type.value)

        async with self.session_factory() as db:
            user = await self._get_user(db, user_id)
            now = self.clock.now()
            run_at = to_naive_utc(scheduled_for) if scheduled_for else now

            delivery_date = None
            job_id = uuid.uuid4()
            if policy.dedup_daily:
                zone_value = user.preference.timezone if user.preference else None
                try:
                    zone = resolve_zone(zone_value, self.settings.default_timezone_offset)
                except InvalidZoneError:
                    zone = resolve_zone(None, self.settings.default_timezone_offset)
                delivery_date = eligibility.user_local_day(zone, run_at)

            data = self._job_create(
                job_type=job_type,
                user_id=user.id,
                user_email=user.email,
                priority=policy.priority,
                max_retries=policy.max_retries,
                payload=payload,
                scheduled_for=run_at,
                delivery_date=delivery_date,
            )

            if delivery_date is not None:
                claim = await dedup.try_claim(db, user.id, job_type.value, delivery_date, job_id, now)
                if not claim.claimed:
                    raise DuplicateDelivery(
                        f"{job_type.value} for {user_id} on {delivery_date} is already queued or sent"
                    )

            job = await job_queue.enqueue(db, data, now, job_id=job_id)
            await db.commit()

        logger.bind(user_id=str(user_id), job_id=str(job.id), job_type=job_type.value).info(
            "ad_hoc_job_queued"
        )
        return job

    async def run_sweep(self, trigger: str = "scheduled") -> grace_period.SweepResult:
        async with self.session_factory() as db:
            return await grace_period.sweep(db, self.clock.now(), trigger=trigger)

    async def reap_stale(self) -> int:
        """Hand processing jobs of dead workers back to the queue."""
        async with self.session_factory() as db:
            reclaimed = await job_queue.reclaim_stale(
                db, self.clock.now(), self.settings.heartbeat_timeout_seconds
            )
            await db.commit()
        return reclaimed

    async def purge_finished(self) -> int:
        """Delete finished jobs older than the retention window."""
        cutoff = self.clock.now() - timedelta(days=self.settings.job_retention_days)
        async with self.session_factory() as db:
            deleted = await job_queue.purge_finished(db, cutoff)
            await db.commit()
        logger.bind(deleted=deleted, cutoff=cutoff.isoformat()).info("finished_jobs_purged")
        return deleted


@lru_cache(maxsize=1)
def get_digest_scheduler() -> DigestScheduler:
    from courier.core.database import AsyncSessionLocal

    return DigestScheduler(AsyncSessionLocal)
