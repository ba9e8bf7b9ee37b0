# clinicbook/modules/scheduling/slots.py
"""
Slot Generator: walks a working window in fixed steps and yields the
bookable start times ("HH:MM", ascending).

A candidate is dropped when it falls inside [break_start, break_end) or when
its time of day equals the time of day of an occupied instant. Occupied
instants must already be restricted to PENDING/CONFIRMED appointments of the
same doctor on the same date; pairing the result with a date is the caller's job.
"""
from __future__ import annotations

import datetime as dt
from typing import Iterable, Iterator, Optional, Union

from clinicbook.core.timeutil import minutes_to_time, time_to_minutes
from clinicbook.modules.scheduling.availability import TimeWindow

DEFAULT_SLOT_MINUTES = 30

Occupied = Union[dt.datetime, dt.time, str]


def _minute_of_day(value: Occupied) -> int:
    if isinstance(value, str):
        return time_to_minutes(value)
    return value.hour * 60 + value.minute


class SlotSequence:
    """
    Lazy, finite and restartable: every iteration walks the window again.
    """

    def __init__(
        self,
        window: Optional[TimeWindow],
        occupied: Iterable[Occupied] = (),
        slot_minutes: int = DEFAULT_SLOT_MINUTES,
    ):
        if slot_minutes <= 0:
            raise ValueError("slot_minutes must be positive")
        self.window = window
        self.slot_minutes = slot_minutes
        self._occupied = frozenset(_minute_of_day(v) for v in occupied)

    def __iter__(self) -> Iterator[str]:
        window = self.window
        if window is None:
            return

        current = time_to_minutes(window.start_time)
        end = time_to_minutes(window.end_time)
        if window.has_break:
            break_start = time_to_minutes(window.break_start)
            break_end = time_to_minutes(window.break_end)
        else:
            break_start = break_end = None

        while current < end:
            on_break = break_start is not None and break_start <= current < break_end
            if not on_break and current not in self._occupied:
                yield minutes_to_time(current)
            current += self.slot_minutes

    def __bool__(self) -> bool:
        return next(iter(self), None) is not None

    def __repr__(self) -> str:
        return f"<SlotSequence window={self.window!r} step={self.slot_minutes}>"


def generate_slots(
    window: Optional[TimeWindow],
    occupied: Iterable[Occupied] = (),
    slot_minutes: int = DEFAULT_SLOT_MINUTES,
) -> SlotSequence:
    return SlotSequence(window, occupied, slot_minutes)
