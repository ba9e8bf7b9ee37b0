# clinicbook/core/clock.py
from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """Source of the current clinic-local wall-clock time (naive datetime)."""

    def now(self) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now().replace(microsecond=0)


class FixedClock:
    """
    Clock frozen at a given instant; tests move it with `advance`.
    """

    def __init__(self, current: datetime):
        self.current = current

    def now(self) -> datetime:
        return self.current

    def advance(self, *, minutes: int = 0, days: int = 0) -> None:
        self.current = self.current + timedelta(minutes=minutes, days=days)


def today_of(clock: Clock) -> date:
    return clock.now().date()
