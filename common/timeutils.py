"""Time handling shared by the scheduling core.

Timestamps are persisted as naive UTC. Anything that depends on a calendar
(weekdays, "today", rendered times) is evaluated in the configured
scheduling time zone.
"""
from __future__ import annotations

from datetime import datetime, time, timezone
from enum import Enum
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from .config import get_settings


class Weekday(str, Enum):
    """Days of the week in Sunday-first order (SUNDAY has index 0)."""

    SUNDAY = "SUNDAY"
    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"

    @property
    def index(self) -> int:
        return list(Weekday).index(self)

    @classmethod
    def from_index(cls, index: int) -> "Weekday":
        return list(cls)[index % 7]


def schedule_zone() -> ZoneInfo:
    return ZoneInfo(get_settings().schedule_timezone)


def utcnow() -> datetime:
    """Current time as naive UTC, the representation used in storage."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise a datetime to naive UTC. Naive input is assumed to already be UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_local(value: datetime) -> datetime:
    """Convert a stored (naive UTC) datetime into the scheduling time zone."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(schedule_zone())


def weekday_of(value: datetime) -> Weekday:
    # datetime.weekday() is Monday-first
    return Weekday.from_index(to_local(value).weekday() + 1)


def start_of_local_day(now: Optional[datetime] = None) -> datetime:
    """Midnight of the current local calendar day, returned as naive UTC."""

    local_now = to_local(now or utcnow())
    midnight = datetime.combine(local_now.date(), time.min, tzinfo=schedule_zone())
    return midnight.astimezone(timezone.utc).replace(tzinfo=None)


def format_local(value: datetime) -> str:
    """Render a stored datetime like ``March 3, 2026, 4:30 PM``."""

    local = to_local(value)
    hour = local.hour % 12 or 12
    meridiem = "AM" if local.hour < 12 else "PM"
    return f"{local:%B} {local.day}, {local.year}, {hour}:{local:%M} {meridiem}"


def normalize_days(days: Iterable[str | Weekday]) -> list[Weekday]:
    """Deduplicate weekday names and return them in Sunday-first order."""

    wanted = {Weekday(day.upper()) for day in days}
    return [day for day in Weekday if day in wanted]
