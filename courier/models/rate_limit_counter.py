"""Shared fixed-window rate limit counters."""

import enum
from datetime import datetime

from sqlalchemy import Enum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from courier.models.base import Base, str_enum_values


class LimitType(str, enum.Enum):
    USER_HOURLY = "user_hourly"
    USER_DAILY = "user_daily"
    GLOBAL_HOURLY = "global_hourly"
    API_QUOTA = "api_quota"


class RateLimitCounter(Base):
    """Usage within the current window. The window ends hard at reset_at."""

    __tablename__ = "rate_limit_counters"

    limit_key: Mapped[str] = mapped_column(String(100), primary_key=True)
    limit_type: Mapped[LimitType] = mapped_column(
        Enum(LimitType, native_enum=False, length=20, values_callable=str_enum_values)
    )
    limit_value: Mapped[int] = mapped_column(Integer)
    current_usage: Mapped[int] = mapped_column(Integer, default=0)
    reset_at: Mapped[datetime] = mapped_column()
    updated_at: Mapped[datetime | None] = mapped_column(default=None)

    def __repr__(self) -> str:
        return f"<RateLimitCounter {self.limit_key} {self.current_usage}/{self.limit_value}>"
