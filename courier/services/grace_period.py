"""Grace-period lifecycle and expiry sweep.

A premium subscription whose payment fails enters a grace period. If
nothing restores it before grace_period_end, the hourly sweep suspends it.
Suspension is terminal until an explicit restore.

The sweep commits per account so one bad row never takes the others down
with it, and each suspension is a conditional update on the status the
sweep observed, so overlapping sweeps suspend (and audit) an account once.
"""

import math
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from courier.config import get_settings
from courier.core.exceptions import SubscriptionNotFound, SubscriptionStateError
from courier.core.logging import get_logger
from courier.models.subscription import (
    PlanType,
    Subscription,
    SubscriptionEvent,
    SubscriptionEventType,
    SubscriptionStatus,
)
from courier.models.sweep_run import SweepRun
from courier.schemas.subscription import GracePeriodDetail, GracePeriodOverview, GracePeriodStatusResponse
from courier.services import posthog_client
from courier.services.posthog_client import Events

logger = get_logger(__name__)


@dataclass
class SweepResult:
    examined: int = 0
    suspended: int = 0
    errors: list[dict] = field(default_factory=list)
    sweep_id: uuid.UUID | None = None


@dataclass(frozen=True)
class ExpiredAccount:
    user_id: uuid.UUID
    status: SubscriptionStatus
    grace_period_end: datetime
    failed_payment_count: int


def _audit(
    db: AsyncSession,
    user_id: uuid.UUID,
    event_type: SubscriptionEventType,
    now: datetime,
    reason: str | None = None,
    details: dict | None = None,
) -> None:
    db.add(
        SubscriptionEvent(
            id=uuid.uuid4(),
            user_id=user_id,
            event_type=event_type,
            reason=reason,
            details=details or {},
            occurred_at=now,
            created_at=now,
        )
    )


async def find_expired(db: AsyncSession, now: datetime) -> list[ExpiredAccount]:
    """Accounts still in a grace period that ended before now.

    Only grace_period rows qualify: suspended and cancelled accounts are
    closed, and an active account has no running grace period even if a
    stale end date lingers on the row.
    """
    result = await db.execute(
        select(
            Subscription.user_id,
            Subscription.status,
            Subscription.grace_period_end,
            Subscription.failed_payment_count,
        ).where(
            Subscription.grace_period_end.is_not(None),
            Subscription.grace_period_end < now,
            Subscription.status == SubscriptionStatus.GRACE_PERIOD,
        )
    )
    return [ExpiredAccount(*row) for row in result.all()]


async def suspend_account(db: AsyncSession, account: ExpiredAccount, now: datetime) -> bool:
    """Suspend one account if it is still in the status the sweep saw.

    Returns:
        True if this call suspended it, False if someone else got there first
    """
    result = await db.execute(
        update(Subscription)
        .where(
            Subscription.user_id == account.user_id,
            Subscription.status == account.status,
        )
        .values(status=SubscriptionStatus.SUSPENDED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False

    _audit(
        db,
        account.user_id,
        SubscriptionEventType.ACCOUNT_SUSPENDED,
        now,
        reason="Grace period expired",
        details={
            "grace_period_expired": account.grace_period_end.isoformat(),
            "failed_payment_count": account.failed_payment_count,
            "previous_status": account.status.value,
        },
    )
    await db.flush()
    return True


async def sweep(db: AsyncSession, now: datetime, trigger: str = "scheduled") -> SweepResult:
    """Suspend every account whose grace period ended before now.

    Per-account failures are collected in the result and never stop the
    sweep. Running it twice at the same instant suspends nothing the second
    time and reports no errors.

    Args:
        db: Database session (committed per account)
        now: Sweep instant (naive UTC)
        trigger: "scheduled" or "manual", recorded on the sweep_runs row

    Returns:
        SweepResult with counts and per-account errors
    """
    started = time.monotonic()
    result = SweepResult()
    accounts = await find_expired(db, now)
    await db.commit()

    for account in accounts:
        result.examined += 1
        try:
            if await suspend_account(db, account, now):
                await db.commit()
                result.suspended += 1
                logger.bind(user_id=str(account.user_id)).info("account_suspended")
                posthog_client.track_lifecycle(
                    account.user_id,
                    Events.ACCOUNT_SUSPENDED,
                    failed_payment_count=account.failed_payment_count,
                )
            else:
                await db.rollback()
        except Exception as e:
            await db.rollback()
            result.errors.append({"user_id": str(account.user_id), "error": str(e)})
            logger.bind(user_id=str(account.user_id), error=str(e)).error("account_suspend_failed")

    run = SweepRun(
        id=uuid.uuid4(),
        trigger=trigger,
        started_at=now,
        finished_at=now + timedelta(seconds=time.monotonic() - started),
        examined=result.examined,
        suspended=result.suspended,
        errors=result.errors,
    )
    db.add(run)
    await db.commit()
    result.sweep_id = run.id

    log = logger.bind(
        examined=result.examined,
        suspended=result.suspended,
        errors=len(result.errors),
        trigger=trigger,
    )
    if result.errors:
        log.warning("grace_sweep_completed_with_errors")
    else:
        log.info("grace_sweep_completed")
    return result


# Payment failures and admin extensions never revive these
_CLOSED_STATUSES = (SubscriptionStatus.SUSPENDED, SubscriptionStatus.CANCELLED)


async def _get_subscription(db: AsyncSession, user_id: uuid.UUID) -> Subscription:
    result = await db.execute(select(Subscription).where(Subscription.user_id == user_id))
    subscription = result.scalar_one_or_none()
    if subscription is None:
        raise SubscriptionNotFound(f"No subscription for user {user_id}")
    return subscription


async def _closed_error(db: AsyncSession, subscription: Subscription, action: str) -> SubscriptionStateError:
    await db.refresh(subscription)
    return SubscriptionStateError(
        f"Cannot {action}: subscription is {subscription.status.value}; restore it first"
    )


async def start_grace_period(
    db: AsyncSession,
    user_id: uuid.UUID,
    now: datetime,
    reason: str | None = None,
    days: int | None = None,
) -> Subscription:
    """Enter the grace period after a failed payment.

    The transition is a conditional update that skips suspended and
    cancelled accounts, and the failure count is incremented in SQL.

    Raises:
        SubscriptionNotFound: If the user has no subscription
        SubscriptionStateError: If the plan is not premium, or the account is
            suspended or cancelled
    """
    subscription = await _get_subscription(db, user_id)
    if subscription.plan_type != PlanType.PREMIUM:
        raise SubscriptionStateError("Grace periods only apply to premium subscriptions")

    days = days or get_settings().grace_period_days
    end = now + timedelta(days=days)
    result = await db.execute(
        update(Subscription)
        .where(
            Subscription.user_id == user_id,
            Subscription.status.not_in(_CLOSED_STATUSES),
        )
        .values(
            status=SubscriptionStatus.GRACE_PERIOD,
            grace_period_end=end,
            failed_payment_count=func.coalesce(Subscription.failed_payment_count, 0) + 1,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise await _closed_error(db, subscription, "start a grace period")

    await db.refresh(subscription)
    _audit(
        db,
        user_id,
        SubscriptionEventType.GRACE_PERIOD_STARTED,
        now,
        reason=reason or "Payment failed",
        details={
            "grace_period_end": end.isoformat(),
            "failed_payment_count": subscription.failed_payment_count,
        },
    )
    await db.flush()

    logger.bind(user_id=str(user_id), grace_period_end=end.isoformat()).info("grace_period_started")
    posthog_client.track_lifecycle(
        user_id, Events.GRACE_PERIOD_STARTED, failed_payment_count=subscription.failed_payment_count
    )
    return subscription


async def extend_grace_period(
    db: AsyncSession,
    user_id: uuid.UUID,
    days: int,
    now: datetime,
) -> Subscription:
    """Push the grace period end back by days (admin action).

    Extends from the current end, or from now if there is none. The update
    only applies if the end is still the one read here, so two concurrent
    extensions cannot both build on the same value.

    Raises:
        SubscriptionNotFound: If the user has no subscription
        SubscriptionStateError: If the account is suspended or cancelled, or
            its grace period changed underneath this call
    """
    subscription = await _get_subscription(db, user_id)

    observed_end = subscription.grace_period_end
    new_end = (observed_end or now) + timedelta(days=days)
    same_end = (
        Subscription.grace_period_end.is_(None)
        if observed_end is None
        else Subscription.grace_period_end == observed_end
    )
    result = await db.execute(
        update(Subscription)
        .where(
            Subscription.user_id == user_id,
            Subscription.status.not_in(_CLOSED_STATUSES),
            same_end,
        )
        .values(status=SubscriptionStatus.GRACE_PERIOD, grace_period_end=new_end, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.refresh(subscription)
        if subscription.status in _CLOSED_STATUSES:
            raise await _closed_error(db, subscription, "extend the grace period")
        raise SubscriptionStateError("Grace period changed concurrently; retry the extension")

    await db.refresh(subscription)
    _audit(
        db,
        user_id,
        SubscriptionEventType.GRACE_PERIOD_EXTENDED,
        now,
        reason=f"Extended by {days} days",
        details={
            "previous_end": (observed_end or now).isoformat(),
            "grace_period_end": new_end.isoformat(),
        },
    )
    await db.flush()

    logger.bind(user_id=str(user_id), days=days).info("grace_period_extended")
    return subscription


async def restore_from_suspension(db: AsyncSession, user_id: uuid.UUID, now: datetime) -> Subscription:
    """Reactivate an account after a successful payment."""
    subscription = await _get_subscription(db, user_id)

    previous_status = subscription.status
    subscription.status = SubscriptionStatus.ACTIVE
    subscription.grace_period_end = None
    subscription.failed_payment_count = 0
    subscription.updated_at = now

    _audit(
        db,
        user_id,
        SubscriptionEventType.ACCOUNT_RESTORED,
        now,
        details={"restored_from": previous_status.value},
    )
    await db.flush()

    logger.bind(user_id=str(user_id), restored_from=previous_status.value).info("account_restored")
    posthog_client.track_lifecycle(user_id, Events.ACCOUNT_RESTORED, restored_from=previous_status.value)
    return subscription


async def get_grace_period_status(
    db: AsyncSession,
    user_id: uuid.UUID,
    now: datetime,
) -> GracePeriodStatusResponse:
    result = await db.execute(select(Subscription).where(Subscription.user_id == user_id))
    subscription = result.scalar_one_or_none()
    if subscription is None:
        return GracePeriodStatusResponse(status="none", is_in_grace_period=False)

    end = subscription.grace_period_end
    in_grace = subscription.status == SubscriptionStatus.GRACE_PERIOD and end is not None and end > now
    days_remaining = _days_remaining(end, now)

    return GracePeriodStatusResponse(
        status=subscription.status.value,
        is_in_grace_period=in_grace,
        grace_period_end=end,
        days_remaining=days_remaining,
        failed_payment_count=subscription.failed_payment_count,
    )


def _days_remaining(end: datetime | None, now: datetime) -> int:
    return max(0, math.ceil((end - now).total_seconds() / 86400)) if end else 0


async def get_overview(db: AsyncSession, now: datetime, limit: int = 20) -> GracePeriodOverview:
    """Counts of running, expired-but-unswept and suspended accounts, and the next to expire."""
    in_grace = Subscription.status == SubscriptionStatus.GRACE_PERIOD
    counts = (
        await db.execute(
            select(
                func.count(Subscription.id).filter(in_grace, Subscription.grace_period_end > now),
                func.count(Subscription.id).filter(in_grace, Subscription.grace_period_end <= now),
                func.count(Subscription.id).filter(Subscription.status == SubscriptionStatus.SUSPENDED),
            )
        )
    ).one()
    active, expired, suspended = (count or 0 for count in counts)

    result = await db.execute(
        select(Subscription).where(in_grace).order_by(Subscription.grace_period_end.asc()).limit(limit)
    )
    details = [
        GracePeriodDetail(
            user_id=s.user_id,
            grace_period_end=s.grace_period_end,
            days_remaining=_days_remaining(s.grace_period_end, now),
            failed_payment_count=s.failed_payment_count,
            status=s.status.value,
        )
        for s in result.scalars()
    ]

    return GracePeriodOverview(
        active_grace_periods=active,
        expired_grace_periods=expired,
        suspended_accounts=suspended,
        total_affected=active + expired + suspended,
        details=details,
        checked_at=now,
    )
