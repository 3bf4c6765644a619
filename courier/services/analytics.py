"""Analytics recorder.

Appends one delivery_events row per delivery outcome and mirrors it to
PostHog. The delivery pipeline never reads these rows back; only the admin
analytics view summarizes them. A PostHog failure never changes a job's
outcome.
"""

import uuid
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from courier.core.logging import get_logger
from courier.models.delivery_event import DeliveryEvent
from courier.schemas.admin import DeliveryAnalytics, DeliveryEventResponse
from courier.services import posthog_client

logger = get_logger(__name__)

OUTCOME_SENT = "sent"
OUTCOME_EMPTY = "empty"
OUTCOME_FAILED = "failed"
OUTCOME_SKIPPED_DUPLICATE = "skipped_duplicate"
OUTCOME_DEFERRED = "deferred"

_DELIVERED_OUTCOMES = {OUTCOME_SENT, OUTCOME_EMPTY}


async def record(
    db: AsyncSession,
    user_id: uuid.UUID,
    job_type: str,
    outcome: str,
    now: datetime,
    job_id: uuid.UUID | None = None,
    detail: str | None = None,
) -> DeliveryEvent:
    """Append a delivery outcome. The caller commits."""
    event = DeliveryEvent(
        id=uuid.uuid4(),
        user_id=user_id,
        job_type=job_type,
        outcome=outcome,
        job_id=job_id,
        detail=detail[:2000] if detail else None,
        occurred_at=now,
    )
    db.add(event)
    await db.flush()

    posthog_client.track_delivery(
        user_id, job_type, outcome, delivered=outcome in _DELIVERED_OUTCOMES, job_id=job_id
    )

    logger.bind(
        user_id=str(user_id),
        job_type=job_type,
        outcome=outcome,
        job_id=str(job_id) if job_id else None,
    ).info("delivery_outcome_recorded")
    return event


async def count_outcomes(db: AsyncSession, since: datetime) -> dict[str, int]:
    """Outcome counts since a given instant, for the admin surface."""
    result = await db.execute(
        select(DeliveryEvent.outcome, func.count(DeliveryEvent.id))
        .where(DeliveryEvent.occurred_at >= since)
        .group_by(DeliveryEvent.outcome)
    )
    return {outcome: count for outcome, count in result.all()}


async def recent_events(db: AsyncSession, limit: int = 10) -> list[DeliveryEvent]:
    result = await db.execute(select(DeliveryEvent).order_by(DeliveryEvent.occurred_at.desc()).limit(limit))
    return list(result.scalars().all())


async def summarize(db: AsyncSession, now: datetime, days: int = 30) -> DeliveryAnalytics:
    """Delivery outcomes over the last days, with the most recent events."""
    since = now - timedelta(days=days)
    outcomes = await count_outcomes(db, since)
    sent = outcomes.get(OUTCOME_SENT, 0)
    failed = outcomes.get(OUTCOME_FAILED, 0)

    return DeliveryAnalytics(
        days=days,
        since=since,
        outcomes=outcomes,
        total=sum(outcomes.values()),
        sent=sent,
        failed=failed,
        # Share of settled sends that went out; empty, deferred and duplicate outcomes are not attempts
        delivery_rate=round(sent / (sent + failed) * 100, 2) if sent + failed else 0.0,
        recent=[DeliveryEventResponse.model_validate(e) for e in await recent_events(db)],
    )
