"""Append-only delivery analytics."""

import uuid
from datetime import datetime

from sqlalchemy import String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from courier.models.base import Base


class DeliveryEvent(Base):
    """Outcome of a delivery attempt. Written, never updated."""

    __tablename__ = "delivery_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    job_type: Mapped[str] = mapped_column(String(20), index=True)
    outcome: Mapped[str] = mapped_column(String(30), index=True)  # sent, empty, failed, ...
    job_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, default=None)
    detail: Mapped[str | None] = mapped_column(Text, default=None)
    occurred_at: Mapped[datetime] = mapped_column(index=True)
