# clinicbook/modules/appointments/schemas.py
from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from clinicbook.modules.appointments.models import ApptStatus


def _wall_clock(v: datetime) -> datetime:
    """
    Appointment instants are clinic-local wall-clock values with minute precision.
    """
    if v.tzinfo is not None:
        raise ValueError("date_time must be a clinic-local (naive) datetime")
    return v.replace(second=0, microsecond=0)


class AppointmentCreateRequest(BaseModel):
    """
    Payload to book a slot. `duration` falls back to DEFAULT_APPOINTMENT_MINUTES.
    """

    patient_id: UUID
    doctor_id: UUID
    clinic_id: UUID
    date_time: datetime
    duration: Optional[int] = Field(default=None, gt=0, le=24 * 60)
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("date_time")
    @classmethod
    def _normalize_date_time(cls, v: datetime) -> datetime:
        return _wall_clock(v)


class AppointmentRescheduleRequest(BaseModel):
    date_time: datetime

    @field_validator("date_time")
    @classmethod
    def _normalize_date_time(cls, v: datetime) -> datetime:
        return _wall_clock(v)


class AppointmentPatchRequest(BaseModel):
    """
    Changes that never touch the (doctor, date_time) key.
    Moving an appointment goes through AppointmentRescheduleRequest instead.
    """

    model_config = ConfigDict(extra="forbid")

    notes: Optional[str] = Field(default=None, max_length=2000)
    admin_notes: Optional[str] = Field(default=None, max_length=2000)
    status: Optional[Literal["CANCELLED"]] = None


class AppointmentFilters(BaseModel):
    patient_id: Optional[UUID] = None
    doctor_id: Optional[UUID] = None
    clinic_id: Optional[UUID] = None
    status: Optional[ApptStatus] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None


class AppointmentPublic(BaseModel):
    """
    DTO returned by the ledger. The confirmation code is never exposed.
    """

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    patient_id: UUID
    doctor_id: UUID
    clinic_id: UUID
    date_time: datetime
    duration: int
    status: ApptStatus
    confirmed: bool
    sms_sent: bool
    code_expires_at: Optional[datetime] = None
    notes: Optional[str] = None
    admin_notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class AppointmentList(BaseModel):
    items: List[AppointmentPublic]
    total: int
