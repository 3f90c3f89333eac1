from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo
from typing import Protocol


class Clock(Protocol):
    offset_days: int

    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in the configured zone.

    `offset_days` is the non-production test offset applied to newly created orders.
    """

    def __init__(self, tz: tzinfo = timezone.utc, offset_days: int = 0) -> None:
        self._tz = tz
        self.offset_days = offset_days

    def now(self) -> datetime:
        return datetime.now(self._tz)


class FixedClock:
    def __init__(self, instant: datetime, offset_days: int = 0) -> None:
        if instant.tzinfo is None:
            raise ValueError("FixedClock requires a timezone-aware instant")
        self._instant = instant
        self.offset_days = offset_days

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            raise ValueError("FixedClock requires a timezone-aware instant")
        self._instant = instant

    def advance(self, delta: timedelta) -> datetime:
        self._instant = self._instant + delta
        return self._instant
