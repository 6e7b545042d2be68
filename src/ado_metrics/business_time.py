"""Business-hours duration calculator.

Schedules are interpreted in UTC. Weekdays follow Python numbering
(Monday is ``0``, Sunday is ``6``).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Callable, FrozenSet, Optional, Tuple

from .timeutil import millis

_HH_MM = re.compile(r"^(\d{2}):(\d{2})$")


@dataclass(frozen=True)
class WorkSchedule:
    """Working hours ``[start, end)`` on the included weekdays."""

    start: str = "09:00"
    end: str = "17:00"
    days: FrozenSet[int] = frozenset({0, 1, 2, 3, 4})


def parse_hh_mm(value: str) -> Optional[Tuple[int, int]]:
    """Parse ``HH:mm`` in the range 00:00-23:59, or return ``None``."""
    match = _HH_MM.match(value.strip()) if isinstance(value, str) else None
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return hours, minutes


def business_duration(start: datetime, end: datetime, schedule: WorkSchedule) -> int:
    """Return milliseconds of working time between ``start`` and ``end``.

    Iterates UTC calendar days from the date of ``start`` to the date of
    ``end`` inclusive and sums the overlap of each included day's work window
    with ``[start, end)``. Returns ``0`` for invalid schedules or when
    ``end <= start``.
    """
    if start is None or end is None:
        return 0
    start_utc = _as_utc(start)
    end_utc = _as_utc(end)
    if end_utc <= start_utc:
        return 0

    opens = parse_hh_mm(schedule.start)
    closes = parse_hh_mm(schedule.end)
    if opens is None or closes is None:
        return 0

    total = timedelta(0)
    day = start_utc.date()
    last_day = end_utc.date()
    while day <= last_day:
        if day.weekday() in schedule.days:
            window_start = datetime.combine(day, time(*opens), tzinfo=timezone.utc)
            window_end = datetime.combine(day, time(*closes), tzinfo=timezone.utc)
            overlap = min(end_utc, window_end) - max(start_utc, window_start)
            if overlap > timedelta(0):
                total += overlap
        day += timedelta(days=1)

    return millis(total)


def business_time_fn(schedule: WorkSchedule) -> Callable[[datetime, datetime], int]:
    """Bind ``schedule`` into a ``(start, end) -> ms`` callable for the aggregators."""

    def _duration(start: datetime, end: datetime) -> int:
        return business_duration(start, end, schedule)

    return _duration


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
