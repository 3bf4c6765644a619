from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from courier.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from courier.models.delivery_preference import DeliveryPreference
    from courier.models.subscription import Subscription


class User(Base, TimestampMixin):
    """Account owner. Profile data lives in the main application."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    full_name: Mapped[str | None] = mapped_column(String(255), default=None)

    # Relationships
    preference: Mapped[DeliveryPreference | None] = relationship(
        back_populates="user", lazy="selectin", uselist=False
    )
    subscription: Mapped[Subscription | None] = relationship(
        back_populates="user", lazy="selectin", uselist=False
    )

    def __repr__(self) -> str:
        return f"<User {self.email}>"
