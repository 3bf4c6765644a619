"""Tests for the grace-period sweep and subscription lifecycle."""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select

from courier.core.exceptions import SubscriptionNotFound, SubscriptionStateError
from courier.models.subscription import (
    PlanType,
    Subscription,
    SubscriptionEvent,
    SubscriptionEventType,
    SubscriptionStatus,
)
from courier.models.sweep_run import SweepRun
from courier.services import grace_period

pytestmark = pytest.mark.asyncio


async def _status(db_session, subscription) -> SubscriptionStatus:
    stored = await db_session.get(Subscription, subscription.id, populate_existing=True)
    return stored.status


async def _events(db_session, user_id, event_type) -> list[SubscriptionEvent]:
    result = await db_session.execute(
        select(SubscriptionEvent).where(
            SubscriptionEvent.user_id == user_id,
            SubscriptionEvent.event_type == event_type,
        )
    )
    return list(result.scalars().all())


class TestSweep:
    """Tests for sweep."""

    async def test_suspends_expired_accounts(self, db_session, subscription_factory, clock):
        """Accounts past grace_period_end are suspended and audited."""
        expired = await subscription_factory(
            status=SubscriptionStatus.GRACE_PERIOD,
            grace_period_end=clock.now() - timedelta(hours=1),
            failed_payment_count=2,
        )

        result = await grace_period.sweep(db_session, clock.now())

        assert (result.examined, result.suspended, result.errors) == (1, 1, [])
        assert await _status(db_session, expired) == SubscriptionStatus.SUSPENDED

        events = await _events(db_session, expired.user_id, SubscriptionEventType.ACCOUNT_SUSPENDED)
        assert len(events) == 1
        assert events[0].details["failed_payment_count"] == 2
        assert events[0].details["previous_status"] == "grace_period"

    async def test_leaves_unexpired_and_terminal_accounts(self, db_session, subscription_factory, clock):
        future = await subscription_factory(
            status=SubscriptionStatus.GRACE_PERIOD,
            grace_period_end=clock.now() + timedelta(days=2),
        )
        cancelled = await subscription_factory(
            status=SubscriptionStatus.CANCELLED,
            grace_period_end=clock.now() - timedelta(days=2),
        )
        active = await subscription_factory()

        result = await grace_period.sweep(db_session, clock.now())

        assert (result.examined, result.suspended) == (0, 0)
        assert await _status(db_session, future) == SubscriptionStatus.GRACE_PERIOD
        assert await _status(db_session, cancelled) == SubscriptionStatus.CANCELLED
        assert await _status(db_session, active) == SubscriptionStatus.ACTIVE

    async def test_idempotent(self, db_session, subscription_factory, clock):
        """A second sweep at the same instant changes nothing and reports no errors."""
        expired = await subscription_factory(
            status=SubscriptionStatus.GRACE_PERIOD,
            grace_period_end=clock.now() - timedelta(hours=1),
        )

        first = await grace_period.sweep(db_session, clock.now())
        second = await grace_period.sweep(db_session, clock.now())

        assert first.suspended == 1
        assert (second.examined, second.suspended, second.errors) == (0, 0, [])
        events = await _events(db_session, expired.user_id, SubscriptionEventType.ACCOUNT_SUSPENDED)
        assert len(events) == 1

    async def test_one_failure_does_not_stop_the_others(
        self, db_session, subscription_factory, clock, monkeypatch
    ):
        """A failing account is reported while the rest are still suspended."""
        broken = await subscription_factory(
            status=SubscriptionStatus.GRACE_PERIOD,
            grace_period_end=clock.now() - timedelta(hours=2),
        )
        healthy = [
            await subscription_factory(
                status=SubscriptionStatus.GRACE_PERIOD,
                grace_period_end=clock.now() - timedelta(hours=1),
            )
            for _ in range(2)
        ]

        real_suspend = grace_period.suspend_account

        async def flaky_suspend(db, account, now):
            if account.user_id == broken.user_id:
                raise RuntimeError("row locked")
            return await real_suspend(db, account, now)

        monkeypatch.setattr(grace_period, "suspend_account", flaky_suspend)

        result = await grace_period.sweep(db_session, clock.now())

        assert result.examined == 3
        assert result.suspended == 2
        assert result.errors == [{"user_id": str(broken.user_id), "error": "row locked"}]
        assert await _status(db_session, broken) == SubscriptionStatus.GRACE_PERIOD
        for subscription in healthy:
            assert await _status(db_session, subscription) == SubscriptionStatus.SUSPENDED

    async def test_records_sweep_run(self, db_session, subscription_factory, clock):
        await subscription_factory(
            status=SubscriptionStatus.GRACE_PERIOD,
            grace_period_end=clock.now() - timedelta(hours=1),
        )

        result = await grace_period.sweep(db_session, clock.now(), trigger="manual")

        run = await db_session.get(SweepRun, result.sweep_id)
        assert run.trigger == "manual"
        assert run.started_at == clock.now()
        assert (run.examined, run.suspended, run.errors) == (1, 1, [])


class TestLifecycle:
    """Tests for start/extend/restore and status."""

    async def test_start_grace_period(self, db_session, subscription_factory, clock):
        subscription = await subscription_factory()

        updated = await grace_period.start_grace_period(db_session, subscription.user_id, clock.now())
        await db_session.commit()

        assert updated.status == SubscriptionStatus.GRACE_PERIOD
        assert updated.grace_period_end == clock.now() + timedelta(days=7)
        assert updated.failed_payment_count == 1
        events = await _events(db_session, subscription.user_id, SubscriptionEventType.GRACE_PERIOD_STARTED)
        assert events[0].reason == "Payment failed"

    async def test_free_plan_rejected(self, db_session, subscription_factory, clock):
        subscription = await subscription_factory(plan_type=PlanType.FREE)

        with pytest.raises(SubscriptionStateError):
            await grace_period.start_grace_period(db_session, subscription.user_id, clock.now())

    async def test_missing_subscription(self, db_session, clock):
        with pytest.raises(SubscriptionNotFound):
            await grace_period.start_grace_period(db_session, uuid.uuid4(), clock.now())

    async def test_extend_from_current_end(self, db_session, subscription_factory, clock):
        end = clock.now() + timedelta(days=2)
        subscription = await subscription_factory(status=SubscriptionStatus.GRACE_PERIOD, grace_period_end=end)

        updated = await grace_period.extend_grace_period(db_session, subscription.user_id, 5, clock.now())

        assert updated.grace_period_end == end + timedelta(days=5)

    async def test_restore_from_suspension(self, db_session, subscription_factory, clock):
        subscription = await subscription_factory(
            status=SubscriptionStatus.SUSPENDED,
            grace_period_end=clock.now() - timedelta(days=1),
            failed_payment_count=3,
        )

        updated = await grace_period.restore_from_suspension(db_session, subscription.user_id, clock.now())
        await db_session.commit()

        assert updated.status == SubscriptionStatus.ACTIVE
        assert updated.grace_period_end is None
        assert updated.failed_payment_count == 0
        events = await _events(db_session, subscription.user_id, SubscriptionEventType.ACCOUNT_RESTORED)
        assert events[0].details == {"restored_from": "suspended"}

    async def test_status_in_grace(self, db_session, subscription_factory, clock):
        subscription = await subscription_factory(
            status=SubscriptionStatus.GRACE_PERIOD,
            grace_period_end=clock.now() + timedelta(days=2, hours=3),
            failed_payment_count=1,
        )

        status = await grace_period.get_grace_period_status(db_session, subscription.user_id, clock.now())

        assert status.status == "grace_period"
        assert status.is_in_grace_period is True
        assert status.days_remaining == 3
        assert status.failed_payment_count == 1

    async def test_status_without_subscription(self, db_session, clock):
        status = await grace_period.get_grace_period_status(db_session, uuid.uuid4(), clock.now())

        assert status.status == "none"
        assert status.is_in_grace_period is False


class TestClosedAccounts:
    """Payment failures and extensions never reopen a suspended or cancelled account."""

    async def test_start_after_suspension_rejected(
        self, db_session, session_factory, subscription_factory, clock
    ):
        """A late payment failure cannot pull a suspended account back into a grace period."""
        subscription = await subscription_factory(
            status=SubscriptionStatus.GRACE_PERIOD,
            grace_period_end=clock.now() - timedelta(hours=1),
            failed_payment_count=2,
        )
        assert (await grace_period.sweep(db_session, clock.now())).suspended == 1

        async with session_factory() as other:
            with pytest.raises(SubscriptionStateError, match="suspended"):
                await grace_period.start_grace_period(other, subscription.user_id, clock.now())
            await other.rollback()

        stored = await db_session.get(Subscription, subscription.id, populate_existing=True)
        assert stored.status == SubscriptionStatus.SUSPENDED
        assert stored.failed_payment_count == 2

        clock.advance(days=8)
        second = await grace_period.sweep(db_session, clock.now())

        assert (second.examined, second.suspended) == (0, 0)
        events = await _events(db_session, subscription.user_id, SubscriptionEventType.ACCOUNT_SUSPENDED)
        assert len(events) == 1
        started = await _events(db_session, subscription.user_id, SubscriptionEventType.GRACE_PERIOD_STARTED)
        assert started == []

    async def test_extend_after_suspension_rejected(self, db_session, subscription_factory, clock):
        subscription = await subscription_factory(
            status=SubscriptionStatus.SUSPENDED,
            grace_period_end=clock.now() - timedelta(days=1),
        )

        with pytest.raises(SubscriptionStateError, match="suspended"):
            await grace_period.extend_grace_period(db_session, subscription.user_id, 3, clock.now())

        assert await _status(db_session, subscription) == SubscriptionStatus.SUSPENDED

    async def test_start_on_cancelled_rejected(self, db_session, subscription_factory, clock):
        subscription = await subscription_factory(status=SubscriptionStatus.CANCELLED)

        with pytest.raises(SubscriptionStateError, match="cancelled"):
            await grace_period.start_grace_period(db_session, subscription.user_id, clock.now())

    async def test_repeat_failure_counts_up(self, db_session, subscription_factory, clock):
        """A second failure during the grace period bumps the count and restarts the window."""
        subscription = await subscription_factory()

        await grace_period.start_grace_period(db_session, subscription.user_id, clock.now())
        await db_session.commit()
        clock.advance(days=2)
        updated = await grace_period.start_grace_period(db_session, subscription.user_id, clock.now())
        await db_session.commit()

        assert updated.failed_payment_count == 2
        assert updated.grace_period_end == clock.now() + timedelta(days=7)


class TestSweepRaces:
    """Tests for sweeps overlapping with other writers."""

    async def test_account_suspended_elsewhere(
        self, db_session, session_factory, subscription_factory, clock
    ):
        """suspend_account reports False when another sweep already suspended the row."""
        subscription = await subscription_factory(
            status=SubscriptionStatus.GRACE_PERIOD,
            grace_period_end=clock.now() - timedelta(hours=1),
        )
        [account] = await grace_period.find_expired(db_session, clock.now())
        await db_session.commit()

        async with session_factory() as other:
            assert await grace_period.suspend_account(other, account, clock.now()) is True
            await other.commit()

        assert await grace_period.suspend_account(db_session, account, clock.now()) is False
        await db_session.rollback()

        events = await _events(db_session, subscription.user_id, SubscriptionEventType.ACCOUNT_SUSPENDED)
        assert len(events) == 1

    async def test_sweep_tolerates_concurrent_suspension(
        self, db_session, session_factory, subscription_factory, clock, monkeypatch
    ):
        """A row suspended between selection and update is skipped without an error."""
        subscription = await subscription_factory(
            status=SubscriptionStatus.GRACE_PERIOD,
            grace_period_end=clock.now() - timedelta(hours=1),
        )
        real_find = grace_period.find_expired

        async def find_then_lose_race(db, now):
            accounts = await real_find(db, now)
            async with session_factory() as other:
                for account in accounts:
                    await grace_period.suspend_account(other, account, now)
                await other.commit()
            return accounts

        monkeypatch.setattr(grace_period, "find_expired", find_then_lose_race)

        result = await grace_period.sweep(db_session, clock.now())

        assert (result.examined, result.suspended, result.errors) == (1, 0, [])
        assert await _status(db_session, subscription) == SubscriptionStatus.SUSPENDED
        events = await _events(db_session, subscription.user_id, SubscriptionEventType.ACCOUNT_SUSPENDED)
        assert len(events) == 1

    async def test_active_account_with_stale_end_ignored(self, db_session, subscription_factory, clock):
        """Only grace_period rows are swept; a leftover end date on an active row is not a grace period."""
        active = await subscription_factory(
            status=SubscriptionStatus.ACTIVE,
            grace_period_end=clock.now() - timedelta(days=3),
        )

        result = await grace_period.sweep(db_session, clock.now())

        assert result.examined == 0
        assert await _status(db_session, active) == SubscriptionStatus.ACTIVE


class TestOverview:
    async def test_counts_and_details(self, db_session, subscription_factory, clock):
        soon = await subscription_factory(
            status=SubscriptionStatus.GRACE_PERIOD,
            grace_period_end=clock.now() + timedelta(days=1, hours=2),
            failed_payment_count=1,
        )
        later = await subscription_factory(
            status=SubscriptionStatus.GRACE_PERIOD,
            grace_period_end=clock.now() + timedelta(days=5),
        )
        overdue = await subscription_factory(
            status=SubscriptionStatus.GRACE_PERIOD,
            grace_period_end=clock.now() - timedelta(hours=1),
        )
        await subscription_factory(status=SubscriptionStatus.SUSPENDED)
        await subscription_factory()

        overview = await grace_period.get_overview(db_session, clock.now())

        assert overview.active_grace_periods == 2
        assert overview.expired_grace_periods == 1
        assert overview.suspended_accounts == 1
        assert overview.total_affected == 4
        assert [d.user_id for d in overview.details] == [overdue.user_id, soon.user_id, later.user_id]
        assert [d.days_remaining for d in overview.details] == [0, 2, 5]
        assert overview.checked_at == clock.now()
