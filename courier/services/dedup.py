"""Dedup guard: at most one delivery per (user, job type, local day).

The decision is a single unique-constrained insert, never a read followed
by a write, so duplicate ticks, retried jobs and parallel scheduler
instances cannot race past it.
"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from courier.core.database import insert_if_absent
from courier.core.logging import get_logger
from courier.models.delivery_record import DeliveryOutcome, DeliveryRecord

logger = get_logger(__name__)


@dataclass(frozen=True)
class ClaimResult:
    claimed: bool
    owner_job_id: uuid.UUID | None = None
    outcome: DeliveryOutcome | None = None


async def try_claim(
    db: AsyncSession,
    user_id: uuid.UUID,
    job_type: str,
    day: date,
    job_id: uuid.UUID,
    now: datetime,
) -> ClaimResult:
    """Claim the delivery slot for (user, job type, day) on behalf of job_id.

    A claim is re-entrant for the job that owns it while the slot is still
    only CLAIMED, so a retry of the same job may proceed. Any other caller
    must skip.

    Args:
        db: Database session (caller commits)
        user_id: Recipient
        job_type: Job type value
        day: Calendar day in the user's zone
        job_id: Job that will perform the send
        now: Current time (naive UTC)

    Returns:
        ClaimResult with claimed=True if job_id owns the slot
    """
    inserted = await insert_if_absent(
        db,
        DeliveryRecord,
        {
            "id": uuid.uuid4(),
            "user_id": user_id,
            "job_type": job_type,
            "delivery_date": day,
            "job_id": job_id,
            "outcome": DeliveryOutcome.CLAIMED,
            "created_at": now,
            "updated_at": now,
        },
    )
    if inserted:
        return ClaimResult(claimed=True, owner_job_id=job_id, outcome=DeliveryOutcome.CLAIMED)

    result = await db.execute(
        select(DeliveryRecord.job_id, DeliveryRecord.outcome).where(
            DeliveryRecord.user_id == user_id,
            DeliveryRecord.job_type == job_type,
            DeliveryRecord.delivery_date == day,
        )
    )
    row = result.first()
    if row is None:
        # Deleted between the insert attempt and the read; let the next tick retry.
        return ClaimResult(claimed=False)

    owner_job_id, outcome = row
    if owner_job_id == job_id and outcome == DeliveryOutcome.CLAIMED:
        return ClaimResult(claimed=True, owner_job_id=job_id, outcome=outcome)

    logger.bind(
        user_id=str(user_id),
        job_type=job_type,
        day=str(day),
        owner_job_id=str(owner_job_id),
        outcome=outcome.value,
    ).debug("delivery_slot_already_claimed")
    return ClaimResult(claimed=False, owner_job_id=owner_job_id, outcome=outcome)


async def _settle(
    db: AsyncSession,
    job_id: uuid.UUID,
    outcome: DeliveryOutcome,
    now: datetime,
) -> bool:
    result = await db.execute(
        update(DeliveryRecord)
        .where(
            DeliveryRecord.job_id == job_id,
            DeliveryRecord.outcome == DeliveryOutcome.CLAIMED,
        )
        .values(outcome=outcome, updated_at=now)
    )
    return result.rowcount == 1


async def mark_sent(db: AsyncSession, job_id: uuid.UUID, now: datetime) -> bool:
    """Record that job_id delivered its slot."""
    return await _settle(db, job_id, DeliveryOutcome.SENT, now)


async def mark_empty(db: AsyncSession, job_id: uuid.UUID, now: datetime) -> bool:
    """Record that the composer had nothing to send for this slot."""
    return await _settle(db, job_id, DeliveryOutcome.EMPTY, now)


async def mark_failed(db: AsyncSession, job_id: uuid.UUID, now: datetime) -> bool:
    """Record a terminal failure; the user gets no digest that day."""
    return await _settle(db, job_id, DeliveryOutcome.FAILED, now)


async def release_claim(db: AsyncSession, job_id: uuid.UUID) -> bool:
    """Drop an unsettled claim (used when a pending job is cancelled)."""
    result = await db.execute(
        delete(DeliveryRecord).where(
            DeliveryRecord.job_id == job_id,
            DeliveryRecord.outcome == DeliveryOutcome.CLAIMED,
        )
    )
    return result.rowcount == 1
