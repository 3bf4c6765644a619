"""Daily delivery ledger used as the dedup guard."""

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import Date, Enum, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from courier.models.base import Base, TimestampMixin, str_enum_values


class DeliveryOutcome(str, enum.Enum):
    """State of a (user, job type, day) delivery slot."""

    CLAIMED = "claimed"
    SENT = "sent"
    EMPTY = "empty"
    FAILED = "failed"


class DeliveryRecord(Base, TimestampMixin):
    """One row per (user, job type, local calendar day).

    The unique constraint is the dedup guard: whoever inserts the row owns
    the send for that day. The row is written before sending, so a crash
    after the send still leaves the slot visibly taken.
    """

    __tablename__ = "delivery_records"
    __table_args__ = (
        UniqueConstraint("user_id", "job_type", "delivery_date", name="uq_delivery_user_type_day"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    job_type: Mapped[str] = mapped_column(String(20))
    delivery_date: Mapped[date] = mapped_column(Date, index=True)
    job_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    outcome: Mapped[DeliveryOutcome] = mapped_column(
        Enum(DeliveryOutcome, native_enum=False, length=20, values_callable=str_enum_values),
        default=DeliveryOutcome.CLAIMED,
    )
    updated_at: Mapped[datetime] = mapped_column(default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<DeliveryRecord user={self.user_id} {self.job_type} {self.delivery_date} {self.outcome.value}>"
