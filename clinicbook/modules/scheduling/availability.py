# clinicbook/modules/scheduling/availability.py
"""
Availability Resolver.

A doctor's working window for one calendar date comes from exactly one of
two layers:

1. a date-specific override (`Availability`) whose date equals the target
   date: it fully defines the window, the weekly schedule is ignored;
2. otherwise the weekly `Schedule` for the date's day of week (0 = Sunday).

No merge between layers ever happens. No matching row means no window.
"""
from __future__ import annotations

import datetime as dt
from typing import Iterable, Literal, Optional, Protocol

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from clinicbook.core.errors import MalformedInput
from clinicbook.core.timeutil import canonical_time, day_of_week, time_to_minutes


class TimeWindow(BaseModel):
    """
    start/end with an optional break, all canonical "HH:MM".
    Invariant: start < end and, with a break, start <= break_start < break_end <= end.
    """

    model_config = ConfigDict(frozen=True, from_attributes=True)

    start_time: str
    end_time: str
    break_start: Optional[str] = None
    break_end: Optional[str] = None

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _canonical_required(cls, v):
        try:
            return canonical_time(v)
        except MalformedInput as exc:
            raise ValueError(exc.message) from exc

    @field_validator("break_start", "break_end", mode="before")
    @classmethod
    def _canonical_optional(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        try:
            return canonical_time(v)
        except MalformedInput as exc:
            raise ValueError(exc.message) from exc

    @model_validator(mode="after")
    def _check_order(self):
        start, end = time_to_minutes(self.start_time), time_to_minutes(self.end_time)
        if start >= end:
            raise ValueError("start_time must be before end_time")
        if (self.break_start is None) != (self.break_end is None):
            raise ValueError("break_start and break_end must be given together")
        if self.break_start is not None:
            b_start = time_to_minutes(self.break_start)
            b_end = time_to_minutes(self.break_end)
            if not (start <= b_start < b_end <= end):
                raise ValueError("break must lie inside the working window")
        return self

    @property
    def has_break(self) -> bool:
        return self.break_start is not None


class WorkingWindow(TimeWindow):
    """Resolved window for one date, tagged with the layer it came from."""

    source: Literal["override", "schedule"] = "schedule"


class ScheduleLike(Protocol):
    day_of_week: int
    start_time: str
    end_time: str
    break_start: Optional[str]
    break_end: Optional[str]


class OverrideLike(Protocol):
    date: dt.date
    start_time: str
    end_time: str
    break_start: Optional[str]
    break_end: Optional[str]


def _as_day(value) -> dt.date:
    # Exact calendar-day match: datetimes are reduced to their date
    if isinstance(value, dt.datetime):
        return value.date()
    return value


def _window_from(row, source: str) -> WorkingWindow:
    return WorkingWindow(
        start_time=row.start_time,
        end_time=row.end_time,
        break_start=row.break_start,
        break_end=row.break_end,
        source=source,
    )


def resolve_window(
    schedules: Iterable[ScheduleLike],
    overrides: Iterable[OverrideLike],
    target: dt.date,
) -> Optional[WorkingWindow]:
    """
    Effective working window for `target`, or None when the doctor does not work.
    """
    target = _as_day(target)

    for override in overrides:
        if _as_day(override.date) == target:
            return _window_from(override, "override")

    weekday = day_of_week(target)
    for schedule in schedules:
        if schedule.day_of_week == weekday:
            return _window_from(schedule, "schedule")

    return None
