"""Pickup schedule arithmetic.

Pickups recur weekly on one weekday at a fixed local time. Each pickup has an edit deadline a
fixed number of calendar days earlier, at a fixed local time (default: Thursday 00:00 pickups,
Tuesday 23:59:59 deadlines). All arithmetic is done on local calendar dates and then converted
back to aware instants, so DST shifts never move a pickup off its wall-clock time.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone, tzinfo
from enum import Enum

from services.api.app.config import EngineConfig


def _utc(instant: datetime) -> datetime:
    # Aware datetimes sharing a tzinfo compare and subtract on wall time.
    return instant.astimezone(timezone.utc)


class OrderWindowStatus(str, Enum):
    OPEN = "OPEN"
    DEADLINE_PASSED = "DEADLINE_PASSED"
    PICKUP_PASSED = "PICKUP_PASSED"


class DeadlineWarningLevel(str, Enum):
    NONE = "NONE"
    INFO = "INFO"
    WARNING = "WARNING"
    URGENT = "URGENT"
    CRITICAL = "CRITICAL"
    EXPIRED = "EXPIRED"


class PickupScheduleCalculator:
    def __init__(self, config: EngineConfig | None = None) -> None:
        self._config = config or EngineConfig()
        self._tz: tzinfo = self._config.tz

    def localize(self, instant: datetime) -> datetime:
        if instant.tzinfo is None:
            return instant.replace(tzinfo=self._tz)
        return instant.astimezone(self._tz)

    def _pickup_on(self, day: date) -> datetime:
        return datetime.combine(day, self._config.pickup_time, tzinfo=self._tz)

    def next_pickup_instants(self, from_: datetime, count: int) -> list[datetime]:
        """Next `count` pickups strictly after `from_` whose edit deadline is still open.

        A pickup whose deadline has already passed is skipped even when it is the
        chronologically next one.
        """

        if count <= 0:
            return []

        local_from = self.localize(from_)
        days_ahead = (self._config.pickup_weekday - local_from.weekday()) % 7
        day = local_from.date() + timedelta(days=days_ahead)
        if _utc(self._pickup_on(day)) <= _utc(local_from):
            day += timedelta(days=7)

        pickups: list[datetime] = []
        while len(pickups) < count:
            candidate = self._pickup_on(day)
            if self.is_editable_at(candidate, local_from):
                pickups.append(candidate)
            day += timedelta(days=7)
        return pickups

    def edit_deadline(self, pickup_at: datetime) -> datetime:
        deadline_day = self.localize(pickup_at).date() - timedelta(
            days=self._config.deadline_days_before
        )
        return datetime.combine(deadline_day, self._config.deadline_time, tzinfo=self._tz)

    def is_editable_at(self, pickup_at: datetime, now: datetime) -> bool:
        # Inclusive: the deadline instant itself is still editable.
        return _utc(self.localize(now)) <= _utc(self.edit_deadline(pickup_at))

    def is_valid_pickup_instant(self, instant: datetime) -> bool:
        local = self.localize(instant)
        return (
            local.weekday() == self._config.pickup_weekday
            and local.time() == self._config.pickup_time
        )

    def window_status(self, pickup_at: datetime, now: datetime) -> OrderWindowStatus:
        if self.is_editable_at(pickup_at, now):
            return OrderWindowStatus.OPEN
        if _utc(self.localize(now)) > _utc(self.localize(pickup_at)):
            return OrderWindowStatus.PICKUP_PASSED
        return OrderWindowStatus.DEADLINE_PASSED

    def time_until_deadline(self, pickup_at: datetime, now: datetime) -> timedelta | None:
        remaining = _utc(self.edit_deadline(pickup_at)) - _utc(self.localize(now))
        if remaining < timedelta(0):
            return None
        return remaining

    def deadline_warning_level(self, pickup_at: datetime, now: datetime) -> DeadlineWarningLevel:
        remaining = self.time_until_deadline(pickup_at, now)
        if remaining is None:
            return DeadlineWarningLevel.EXPIRED

        hours = remaining.total_seconds() / 3600
        if hours > 48:
            return DeadlineWarningLevel.NONE
        if hours > 24:
            return DeadlineWarningLevel.INFO
        if hours > 6:
            return DeadlineWarningLevel.WARNING
        if hours > 1:
            return DeadlineWarningLevel.URGENT
        return DeadlineWarningLevel.CRITICAL

    def date_key(self, instant: datetime) -> str:
        return self.localize(instant).strftime("%Y%m%d")
