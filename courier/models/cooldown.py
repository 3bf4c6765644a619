"""Durable cooldown records for rate-limited admin actions."""

from datetime import datetime

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from courier.models.base import Base


class Cooldown(Base):
    __tablename__ = "cooldowns"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    last_triggered_at: Mapped[datetime] = mapped_column()
    expires_at: Mapped[datetime] = mapped_column()
