"""Tests for the shared fixed-window rate limiter."""

import uuid
from datetime import datetime, timedelta

import pytest

from courier.core.exceptions import RateLimitExceeded
from courier.models.rate_limit_counter import LimitType, RateLimitCounter
from courier.services import rate_limiter
from courier.services.rate_limiter import Limit


class TestWindowEnd:
    """Tests for window_end."""

    def test_hourly_windows_end_at_next_hour(self):
        now = datetime(2026, 3, 2, 5, 17)
        assert rate_limiter.window_end(LimitType.USER_HOURLY, now) == datetime(2026, 3, 2, 6, 0)
        assert rate_limiter.window_end(LimitType.GLOBAL_HOURLY, now) == datetime(2026, 3, 2, 6, 0)
        assert rate_limiter.window_end(LimitType.API_QUOTA, now) == datetime(2026, 3, 2, 6, 0)

    def test_daily_window_ends_at_utc_midnight(self):
        now = datetime(2026, 3, 2, 5, 17)
        assert rate_limiter.window_end(LimitType.USER_DAILY, now) == datetime(2026, 3, 3, 0, 0)

    def test_mailer_limits_cover_user_and_global(self, test_settings):
        user_id = uuid.uuid4()
        keys = [limit.key for limit in rate_limiter.mailer_limits(test_settings, user_id)]
        assert keys == [
            rate_limiter.GLOBAL_HOURLY_KEY,
            f"user_hourly:{user_id}",
            f"user_daily:{user_id}",
            rate_limiter.MAILER_QUOTA_KEY,
        ]


@pytest.mark.asyncio
class TestTryAcquire:
    """Tests for try_acquire."""

    async def test_exhausts_at_limit(self, db_session, clock):
        """The (limit + 1)th acquisition in a window fails."""
        limit = Limit("user_hourly:test", LimitType.USER_HOURLY, 2)

        results = [await rate_limiter.try_acquire(db_session, limit, clock.now()) for _ in range(3)]

        assert results == [True, True, False]

    async def test_resets_at_window_boundary(self, db_session, clock):
        """Usage resets once the window's reset instant has passed."""
        limit = Limit("user_hourly:test", LimitType.USER_HOURLY, 1)
        assert await rate_limiter.try_acquire(db_session, limit, clock.now()) is True
        assert await rate_limiter.try_acquire(db_session, limit, clock.now()) is False

        clock.advance(minutes=59)
        assert await rate_limiter.try_acquire(db_session, limit, clock.now()) is False

        clock.advance(minutes=1)
        assert await rate_limiter.try_acquire(db_session, limit, clock.now()) is True

    async def test_cost(self, db_session, clock):
        limit = Limit("api_quota:test", LimitType.API_QUOTA, 10)

        assert await rate_limiter.try_acquire(db_session, limit, clock.now(), cost=7) is True
        assert await rate_limiter.try_acquire(db_session, limit, clock.now(), cost=4) is False
        assert await rate_limiter.try_acquire(db_session, limit, clock.now(), cost=3) is True

    async def test_counter_persisted(self, db_session, clock):
        limit = Limit("global_hourly", LimitType.GLOBAL_HOURLY, 100)
        await rate_limiter.try_acquire(db_session, limit, clock.now())
        await db_session.commit()

        counters = await rate_limiter.get_counters(db_session)

        assert len(counters) == 1
        assert counters[0].current_usage == 1
        assert counters[0].reset_at == datetime(2026, 3, 2, 6, 0)


@pytest.mark.asyncio
class TestAcquireAll:
    """Tests for acquire_all."""

    async def test_all_or_nothing(self, db_session, clock):
        """If one limit is exhausted, units already taken are given back."""
        roomy = Limit("global_hourly", LimitType.GLOBAL_HOURLY, 5)
        full = Limit("user_daily:test", LimitType.USER_DAILY, 0)

        with pytest.raises(RateLimitExceeded) as exc_info:
            await rate_limiter.acquire_all(db_session, [roomy, full], clock.now())
        await db_session.commit()

        assert exc_info.value.limit_key == "user_daily:test"
        assert exc_info.value.reset_at == datetime(2026, 3, 3, 0, 0)

        counter = await db_session.get(RateLimitCounter, "global_hourly", populate_existing=True)
        assert counter.current_usage == 0

    async def test_takes_every_limit(self, db_session, clock):
        limits = [
            Limit("global_hourly", LimitType.GLOBAL_HOURLY, 5),
            Limit("api_quota:mailer", LimitType.API_QUOTA, 5),
        ]

        await rate_limiter.acquire_all(db_session, limits, clock.now())
        await db_session.commit()

        for counter in await rate_limiter.get_counters(db_session):
            assert counter.current_usage == 1

    async def test_reset_at_for_deferral(self, db_session, clock):
        """The exception carries the reset instant of the exhausted window."""
        limit = Limit("global_hourly", LimitType.GLOBAL_HOURLY, 1)
        await rate_limiter.acquire_all(db_session, [limit], clock.now())

        clock.advance(minutes=30)
        with pytest.raises(RateLimitExceeded) as exc_info:
            await rate_limiter.acquire_all(db_session, [limit], clock.now())

        assert exc_info.value.reset_at == clock.now() - timedelta(minutes=30) + timedelta(hours=1)
