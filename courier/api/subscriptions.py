"""Admin subscription lifecycle endpoints (grace periods and restores)."""

import uuid

from fastapi import APIRouter, HTTPException, status

from courier.core.exceptions import SubscriptionNotFound, SubscriptionStateError
from courier.dependencies import AppClock, DBSession, RequireAdmin
from courier.schemas.subscription import (
    ExtendGracePeriodRequest,
    GracePeriodOverview,
    GracePeriodStatusResponse,
    StartGracePeriodRequest,
    SubscriptionActionResponse,
)
from courier.services import grace_period

router = APIRouter(dependencies=[RequireAdmin])


def _not_found(e: SubscriptionNotFound) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get("/grace-period/overview", response_model=GracePeriodOverview)
async def grace_period_overview(db: DBSession, clock: AppClock) -> GracePeriodOverview:
    """Running, expired and suspended counts, and the 20 accounts closest to suspension."""
    return await grace_period.get_overview(db, clock.now())


@router.get("/{user_id}/grace-period", response_model=GracePeriodStatusResponse)
async def grace_period_status(
    user_id: uuid.UUID, db: DBSession, clock: AppClock
) -> GracePeriodStatusResponse:
    return await grace_period.get_grace_period_status(db, user_id, clock.now())


@router.post("/{user_id}/grace-period", response_model=SubscriptionActionResponse)
async def start_grace_period(
    user_id: uuid.UUID,
    body: StartGracePeriodRequest,
    db: DBSession,
    clock: AppClock,
) -> SubscriptionActionResponse:
    """Start a grace period after a failed payment (premium plans only)."""
    try:
        subscription = await grace_period.start_grace_period(db, user_id, clock.now(), reason=body.reason)
    except SubscriptionNotFound as e:
        raise _not_found(e) from e
    except SubscriptionStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    await db.commit()

    return SubscriptionActionResponse(
        message="Grace period started",
        grace_period_end=subscription.grace_period_end,
    )


@router.post("/{user_id}/grace-period/extend", response_model=SubscriptionActionResponse)
async def extend_grace_period(
    user_id: uuid.UUID,
    body: ExtendGracePeriodRequest,
    db: DBSession,
    clock: AppClock,
) -> SubscriptionActionResponse:
    try:
        subscription = await grace_period.extend_grace_period(db, user_id, body.days, clock.now())
    except SubscriptionNotFound as e:
        raise _not_found(e) from e
    except SubscriptionStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    await db.commit()

    return SubscriptionActionResponse(
        message=f"Grace period extended by {body.days} days",
        grace_period_end=subscription.grace_period_end,
    )


@router.post("/{user_id}/restore", response_model=SubscriptionActionResponse)
async def restore_account(user_id: uuid.UUID, db: DBSession, clock: AppClock) -> SubscriptionActionResponse:
    """Reactivate a suspended account after payment."""
    try:
        await grace_period.restore_from_suspension(db, user_id, clock.now())
    except SubscriptionNotFound as e:
        raise _not_found(e) from e
    await db.commit()

    return SubscriptionActionResponse(message="Account restored")
