"""Subscription lifecycle state."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Enum, ForeignKey, Integer, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from courier.models.base import Base, TimestampMixin, str_enum_values

if TYPE_CHECKING:
    from courier.models.user import User


class PlanType(str, enum.Enum):
    FREE = "free"
    PREMIUM = "premium"


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "active"
    GRACE_PERIOD = "grace_period"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class SubscriptionEventType(str, enum.Enum):
    GRACE_PERIOD_STARTED = "grace_period_started"
    GRACE_PERIOD_EXTENDED = "grace_period_extended"
    ACCOUNT_SUSPENDED = "account_suspended"
    ACCOUNT_RESTORED = "account_restored"


class Subscription(Base, TimestampMixin):
    """Plan and payment status for a user.

    SUSPENDED is terminal until an explicit restore.
    """

    __tablename__ = "subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, index=True
    )
    plan_type: Mapped[PlanType] = mapped_column(
        Enum(PlanType, native_enum=False, length=20, values_callable=str_enum_values),
        default=PlanType.FREE,
    )
    status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus, native_enum=False, length=20, values_callable=str_enum_values),
        default=SubscriptionStatus.ACTIVE,
        index=True,
    )
    grace_period_end: Mapped[datetime | None] = mapped_column(default=None, index=True)
    failed_payment_count: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(default=func.now(), onupdate=func.now())

    # Relationships
    user: Mapped[User] = relationship(back_populates="subscription", lazy="selectin")

    def __repr__(self) -> str:
        return f"<Subscription user={self.user_id} {self.plan_type.value} {self.status.value}>"


class SubscriptionEvent(Base, TimestampMixin):
    """Append-only audit trail of lifecycle transitions."""

    __tablename__ = "subscription_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    event_type: Mapped[SubscriptionEventType] = mapped_column(
        Enum(SubscriptionEventType, native_enum=False, length=30, values_callable=str_enum_values)
    )
    reason: Mapped[str | None] = mapped_column(String(255), default=None)
    details: Mapped[dict] = mapped_column(JSON, default=dict)
    occurred_at: Mapped[datetime] = mapped_column()
