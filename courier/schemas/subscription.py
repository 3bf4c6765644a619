import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class StartGracePeriodRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=255)


class ExtendGracePeriodRequest(BaseModel):
    days: int = Field(ge=1, le=90)


class GracePeriodStatusResponse(BaseModel):
    status: str
    is_in_grace_period: bool
    grace_period_end: datetime | None = None
    days_remaining: int = 0
    failed_payment_count: int = 0


class SubscriptionActionResponse(BaseModel):
    success: bool = True
    message: str
    grace_period_end: datetime | None = None


class GracePeriodDetail(BaseModel):
    user_id: uuid.UUID
    grace_period_end: datetime | None
    days_remaining: int
    failed_payment_count: int
    status: str


class GracePeriodOverview(BaseModel):
    """Admin dashboard counts plus the accounts closest to suspension."""

    active_grace_periods: int
    expired_grace_periods: int
    suspended_accounts: int
    total_affected: int
    details: list[GracePeriodDetail]
    checked_at: datetime
