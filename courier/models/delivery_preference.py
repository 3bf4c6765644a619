"""Per-user digest delivery preferences."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, ForeignKey, Integer, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from courier.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from courier.models.user import User


class DeliveryPreference(Base, TimestampMixin):
    """When and how a user wants their digest.

    Never deleted; users opt out by disabling.
    """

    __tablename__ = "delivery_preferences"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, index=True
    )
    send_hour: Mapped[int] = mapped_column(Integer, default=8, index=True)
    # IANA name ("Africa/Johannesburg") or fixed offset ("+02:00"); empty = deployment default
    timezone: Mapped[str] = mapped_column(String(50), default="")
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    content_preferences: Mapped[dict] = mapped_column(JSON, default=dict)
    updated_at: Mapped[datetime] = mapped_column(default=func.now(), onupdate=func.now())

    # Relationships
    user: Mapped[User] = relationship(back_populates="preference", lazy="selectin")

    def __repr__(self) -> str:
        return f"<DeliveryPreference user={self.user_id} hour={self.send_hour} tz={self.timezone!r}>"
