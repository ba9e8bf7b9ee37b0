# clinicbook/modules/doctors/schemas.py
from __future__ import annotations

import datetime as dt
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from clinicbook.modules.scheduling.availability import TimeWindow, WorkingWindow


class ScheduleEntry(TimeWindow):
    """
    One weekly working window. day_of_week: 0 = Sunday ... 6 = Saturday.
    """

    day_of_week: int = Field(..., ge=0, le=6)


class AvailabilityEntry(TimeWindow):
    """Date-specific override entry (future dates only)."""

    date: dt.date

    @field_validator("date", mode="before")
    @classmethod
    def _date_only(cls, v):
        # "2025-03-10T00:00:00" and datetime values collapse to the calendar day
        if isinstance(v, dt.datetime):
            return v.date()
        if isinstance(v, str) and "T" in v:
            return v.split("T", 1)[0]
        return v


class SchedulePublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    doctor_id: UUID
    day_of_week: int
    start_time: str
    end_time: str
    break_start: Optional[str] = None
    break_end: Optional[str] = None


class AvailabilityPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    doctor_id: UUID
    date: dt.date
    start_time: str
    end_time: str
    break_start: Optional[str] = None
    break_end: Optional[str] = None


class AvailabilityReplaceResult(BaseModel):
    """
    `skipped` is True when the deployment has no override store.
    """

    count: int
    skipped: bool = False


class AvailableSlots(BaseModel):
    doctor_id: UUID
    date: dt.date
    window: Optional[WorkingWindow] = None
    slots: List[str]
