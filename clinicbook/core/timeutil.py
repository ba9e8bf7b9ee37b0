# clinicbook/core/timeutil.py
"""
Wall-clock helpers used by the scheduling engine.

All times of day are clinic-local "HH:MM" strings (24h). No timezone
conversion is performed anywhere: instants are naive datetimes expressed
in the clinic's wall-clock time.
"""
from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta

from clinicbook.core.errors import MalformedInput

MINUTES_PER_DAY = 24 * 60

_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{1,2})\s*$")


def parse_time(value: str) -> tuple[int, int]:
    """
    Parse "HH:MM" (leading zeros optional) into (hour, minute).
    Raises MalformedInput on non-numeric or out-of-range components.
    """
    if not isinstance(value, str):
        raise MalformedInput("invalid_time", f"Expected 'HH:MM' string, got {value!r}")
    match = _TIME_RE.match(value)
    if not match:
        raise MalformedInput("invalid_time", f"Invalid time {value!r}, expected 'HH:MM'")
    hour, minute = int(match.group(1)), int(match.group(2))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise MalformedInput("invalid_time", f"Time {value!r} is out of range")
    return hour, minute


def to_minutes_since_midnight(hour: int, minute: int) -> int:
    return hour * 60 + minute


def time_to_minutes(value: str) -> int:
    return to_minutes_since_midnight(*parse_time(value))


def minutes_to_time(minutes: int) -> str:
    minutes %= MINUTES_PER_DAY
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def canonical_time(value: str) -> str:
    """Zero-pad a wall-clock value: "9:5" -> "09:05"."""
    return minutes_to_time(time_to_minutes(value))


def is_within_range(t: str, start: str, end: str) -> bool:
    """Half-open [start, end) membership, compared on numeric minute offsets."""
    return time_to_minutes(start) <= time_to_minutes(t) < time_to_minutes(end)


def add_minutes(instant: datetime, n: int) -> datetime:
    return instant + timedelta(minutes=n)


def day_of_week(day: date) -> int:
    """0 = Sunday, 1 = Monday, ..., 6 = Saturday."""
    return (day.isoweekday()) % 7


def format_time(instant: datetime | time) -> str:
    return f"{instant.hour:02d}:{instant.minute:02d}"


def at_time(day: date, value: str) -> datetime:
    """Combine a calendar date with an "HH:MM" wall-clock value."""
    hour, minute = parse_time(value)
    return datetime.combine(day, time(hour, minute))


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """[00:00 of day, 00:00 of next day)"""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)
