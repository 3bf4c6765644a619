"""Shared fixed-window rate limiter.

Counters live in the rate_limit_counters table so every worker process sees
the same usage. Windows end hard at the top of the next UTC hour (hourly
limits and API quotas) or at UTC midnight (daily limits); there is no
sliding window.

Each acquisition is three statements, none of which reads before writing:
1. create the counter if missing (ON CONFLICT DO NOTHING)
2. reset it if its window has ended (WHERE reset_at <= now)
3. increment it if the cost fits (WHERE current_usage + cost <= limit)
"""

import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from courier.config import Settings
from courier.core.database import insert_if_absent
from courier.core.datetime_utils import next_day_boundary, next_hour_boundary
from courier.core.exceptions import RateLimitExceeded
from courier.core.logging import get_logger
from courier.models.rate_limit_counter import LimitType, RateLimitCounter

logger = get_logger(__name__)

COMPOSER_QUOTA_KEY = "api_quota:composer"
MAILER_QUOTA_KEY = "api_quota:mailer"
GLOBAL_HOURLY_KEY = "global_hourly"


@dataclass(frozen=True)
class Limit:
    key: str
    limit_type: LimitType
    limit_value: int


def window_end(limit_type: LimitType, now: datetime) -> datetime:
    """Reset boundary for a window that contains now."""
    if limit_type == LimitType.USER_DAILY:
        return next_day_boundary(now)
    return next_hour_boundary(now)


def composer_limits(settings: Settings) -> list[Limit]:
    """Limits checked before calling the composer."""
    return [Limit(COMPOSER_QUOTA_KEY, LimitType.API_QUOTA, settings.composer_hourly_quota)]


def mailer_limits(settings: Settings, user_id: uuid.UUID) -> list[Limit]:
    """Limits checked before handing a message to the mailer."""
    return [
        Limit(GLOBAL_HOURLY_KEY, LimitType.GLOBAL_HOURLY, settings.global_hourly_limit),
        Limit(f"user_hourly:{user_id}", LimitType.USER_HOURLY, settings.user_hourly_limit),
        Limit(f"user_daily:{user_id}", LimitType.USER_DAILY, settings.user_daily_limit),
        Limit(MAILER_QUOTA_KEY, LimitType.API_QUOTA, settings.mailer_hourly_quota),
    ]


async def try_acquire(
    db: AsyncSession,
    limit: Limit,
    now: datetime,
    cost: int = 1,
) -> bool:
    """Take cost units from limit's current window.

    Returns:
        True if the units were taken, False if the window is exhausted
    """
    reset_at = window_end(limit.limit_type, now)

    await insert_if_absent(
        db,
        RateLimitCounter,
        {
            "limit_key": limit.key,
            "limit_type": limit.limit_type,
            "limit_value": limit.limit_value,
            "current_usage": 0,
            "reset_at": reset_at,
            "updated_at": now,
        },
    )

    await db.execute(
        update(RateLimitCounter)
        .where(RateLimitCounter.limit_key == limit.key, RateLimitCounter.reset_at <= now)
        .values(current_usage=0, reset_at=reset_at, updated_at=now)
        .execution_options(synchronize_session=False)
    )

    result = await db.execute(
        update(RateLimitCounter)
        .where(
            RateLimitCounter.limit_key == limit.key,
            RateLimitCounter.current_usage + cost <= limit.limit_value,
        )
        .values(
            current_usage=RateLimitCounter.current_usage + cost,
            limit_value=limit.limit_value,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def release(db: AsyncSession, limit_key: str, now: datetime, cost: int = 1) -> None:
    """Give back units taken by try_acquire."""
    await db.execute(
        update(RateLimitCounter)
        .where(
            RateLimitCounter.limit_key == limit_key,
            RateLimitCounter.current_usage >= cost,
        )
        .values(current_usage=RateLimitCounter.current_usage - cost, updated_at=now)
        .execution_options(synchronize_session=False)
    )


async def get_reset_at(db: AsyncSession, limit_key: str) -> datetime | None:
    result = await db.execute(
        select(RateLimitCounter.reset_at).where(RateLimitCounter.limit_key == limit_key)
    )
    return result.scalar_one_or_none()


async def acquire_all(
    db: AsyncSession,
    limits: list[Limit],
    now: datetime,
    cost: int = 1,
) -> None:
    """Take cost units from every limit, or from none of them.

    Raises:
        RateLimitExceeded: For the first exhausted limit, carrying its reset instant
    """
    taken: list[Limit] = []
    for limit in limits:
        if await try_acquire(db, limit, now, cost):
            taken.append(limit)
            continue

        for acquired in taken:
            await release(db, acquired.key, now, cost)

        reset_at = await get_reset_at(db, limit.key) or window_end(limit.limit_type, now)
        logger.bind(
            limit_key=limit.key,
            limit_value=limit.limit_value,
            reset_at=reset_at.isoformat(),
        ).info("rate_limit_exhausted")
        raise RateLimitExceeded(limit.key, reset_at)


async def get_counters(db: AsyncSession) -> list[RateLimitCounter]:
    result = await db.execute(
        select(RateLimitCounter)
        .order_by(RateLimitCounter.limit_key)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())
