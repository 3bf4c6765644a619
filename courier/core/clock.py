"""Injectable clocks.

Services read time through a clock: the wall clock in production, a
manually advanced one in tests.
"""

from datetime import datetime, timedelta
from typing import Protocol

from courier.core.datetime_utils import to_naive_utc, utc_now


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock returning naive UTC."""

    def now(self) -> datetime:
        return utc_now()


class FixedClock:
    """Manually advanced clock for tests and replays."""

    def __init__(self, start: datetime) -> None:
        self._now = to_naive_utc(start)

    def now(self) -> datetime:
        return self._now

    def set(self, instant: datetime) -> None:
        self._now = to_naive_utc(instant)

    def advance(self, **delta: float) -> datetime:
        self._now += timedelta(**delta)
        return self._now
