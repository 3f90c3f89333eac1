from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import time, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

_WEEKDAYS = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}

_TRUTHY = {"1", "true", "yes", "y"}


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Order schedule and engine policy.

    Weekdays use Python numbering (Monday is 0). `test_offset_days` only shifts the stored
    pickup instant of newly created orders; deadline arithmetic never sees it.
    """

    pickup_weekday: int = 3
    pickup_time: time = time(0, 0)
    deadline_days_before: int = 2
    deadline_time: time = time(23, 59, 59)
    timezone: str = "UTC"
    test_offset_days: int = 0
    allows_unauthenticated_basket: bool = False
    persistence: str = "memory"
    environment: str = "development"

    @property
    def tz(self) -> tzinfo:
        return ZoneInfo(self.timezone)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def _parse_weekday(raw: str) -> int:
    value = raw.strip().lower()
    if value in _WEEKDAYS:
        return _WEEKDAYS[value]

    if value.isdigit() and 1 <= int(value) <= 7:
        # ISO numbering: Monday is 1.
        return int(value) - 1

    raise ValueError(f"Unknown PICKUP_WEEKDAY={raw!r}. Expected a weekday name or 1-7.")


def _parse_time(name: str, raw: str) -> time:
    try:
        return time.fromisoformat(raw.strip())
    except ValueError as e:
        raise ValueError(f"Invalid {name}={raw!r}. Expected HH:MM or HH:MM:SS.") from e


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw.strip())
    except ValueError as e:
        raise ValueError(f"Invalid {name}={raw!r}. Expected an integer.") from e


def load_config() -> EngineConfig:
    """Build the engine configuration from PICKUP_* environment variables."""

    environment = os.getenv("ENVIRONMENT", "development").strip().lower()

    timezone = os.getenv("PICKUP_TIMEZONE", "UTC").strip()
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown PICKUP_TIMEZONE={timezone!r}.") from e

    deadline_days_before = _parse_int(
        "PICKUP_DEADLINE_DAYS_BEFORE", os.getenv("PICKUP_DEADLINE_DAYS_BEFORE", "2")
    )
    if deadline_days_before < 0:
        raise ValueError("PICKUP_DEADLINE_DAYS_BEFORE must not be negative.")

    offset_days = _parse_int("PICKUP_TEST_OFFSET_DAYS", os.getenv("PICKUP_TEST_OFFSET_DAYS", "0"))
    if environment == "production":
        offset_days = 0

    persistence = os.getenv("PICKUP_PERSISTENCE", "memory").strip().lower()

    return EngineConfig(
        pickup_weekday=_parse_weekday(os.getenv("PICKUP_WEEKDAY", "thursday")),
        pickup_time=_parse_time("PICKUP_TIME", os.getenv("PICKUP_TIME", "00:00")),
        deadline_days_before=deadline_days_before,
        deadline_time=_parse_time(
            "PICKUP_DEADLINE_TIME", os.getenv("PICKUP_DEADLINE_TIME", "23:59:59")
        ),
        timezone=timezone,
        test_offset_days=offset_days,
        allows_unauthenticated_basket=(
            os.getenv("PICKUP_ALLOWS_GUEST_BASKET", "false").strip().lower() in _TRUTHY
        ),
        persistence=persistence,
        environment=environment,
    )
