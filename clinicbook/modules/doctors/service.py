# clinicbook/modules/doctors/service.py
from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Iterable, List, Optional
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from clinicbook.core.clock import Clock, SystemClock, today_of
from clinicbook.core.config import get_settings
from clinicbook.core.errors import Forbidden, MalformedInput, NotFound
from clinicbook.core.timeutil import day_bounds, format_time, time_to_minutes
from clinicbook.modules.appointments import repository as appt_repo
from clinicbook.modules.clinics import repository as clinics_repo
from clinicbook.modules.doctors import repository as doctors_repo
from clinicbook.modules.doctors.models import Doctor
from clinicbook.modules.doctors.schemas import (
    AvailabilityEntry,
    AvailabilityPublic,
    AvailabilityReplaceResult,
    AvailableSlots,
    ScheduleEntry,
    SchedulePublic,
)
from clinicbook.modules.log import write_audit_log
from clinicbook.modules.scheduling.availability import WorkingWindow, resolve_window
from clinicbook.modules.scheduling.slots import generate_slots

logger = logging.getLogger(__name__)


async def _require_doctor(session: AsyncSession, doctor_id: UUID) -> Doctor:
    doctor = await doctors_repo.get_doctor(session, doctor_id)
    if not doctor:
        raise NotFound("doctor_not_found", "Doctor not found")
    return doctor


def _require_self(doctor: Doctor, acting_user_id: UUID) -> None:
    if doctor.user_id != acting_user_id:
        raise Forbidden("not_doctor", "Only the doctor can manage their availability")


def _validate_entries(model, entries: Iterable[Any]) -> list:
    try:
        return [e if isinstance(e, model) else model.model_validate(e) for e in entries]
    except ValidationError as exc:
        raise MalformedInput("invalid_time_window", str(exc)) from exc


# WEEKLY SCHEDULE
async def set_weekly_schedule(
    session: AsyncSession,
    doctor_id: UUID,
    entries: Iterable[ScheduleEntry | dict],
    acting_user_id: UUID,
) -> List[SchedulePublic]:
    """
    Replace the doctor's whole weekly schedule (not incremental).
    Allowed for the doctor and for admins of the doctor's clinic.
    """
    doctor = await _require_doctor(session, doctor_id)
    if doctor.user_id != acting_user_id and not await clinics_repo.is_clinic_admin(
        session, clinic_id=doctor.clinic_id, user_id=acting_user_id
    ):
        raise Forbidden("not_authorized", "Not authorized to edit this schedule")

    parsed = _validate_entries(ScheduleEntry, entries)
    days = [e.day_of_week for e in parsed]
    if len(days) != len(set(days)):
        raise MalformedInput("duplicate_day_of_week", "At most one schedule per day of week")

    rows = await doctors_repo.replace_schedules(session, doctor_id=doctor_id, entries=parsed)
    await write_audit_log(
        session, acting_user_id, "REPLACE_SCHEDULE", doctor=doctor_id, days=sorted(days)
    )
    await session.commit()
    logger.info(f"Weekly schedule of doctor {doctor_id} replaced ({len(rows)} days)")
    return [SchedulePublic.model_validate(r) for r in sorted(rows, key=lambda r: r.day_of_week)]


async def get_weekly_schedule(session: AsyncSession, doctor_id: UUID) -> List[SchedulePublic]:
    await _require_doctor(session, doctor_id)
    rows = await doctors_repo.find_schedules(session, doctor_id=doctor_id)
    return [SchedulePublic.model_validate(r) for r in rows]


# DATE OVERRIDES
async def replace_future_availabilities(
    session: AsyncSession,
    doctor_id: UUID,
    entries: Iterable[AvailabilityEntry | dict],
    acting_user_id: UUID,
    *,
    clock: Optional[Clock] = None,
) -> AvailabilityReplaceResult:
    """
    Drop every override dated today or later and insert `entries` instead.
    Past overrides stay as history.
    """
    clock = clock or SystemClock()
    doctor = await _require_doctor(session, doctor_id)
    _require_self(doctor, acting_user_id)

    parsed = _validate_entries(AvailabilityEntry, entries)
    today = today_of(clock)
    dates = [e.date for e in parsed]
    if any(d < today for d in dates):
        raise MalformedInput("availability_in_past", "Overrides can only be set for future dates")
    if len(dates) != len(set(dates)):
        raise MalformedInput("duplicate_date", "At most one override per date")

    if not await doctors_repo.overrides_supported(session):
        logger.warning("Override store missing; availability replace skipped")
        return AvailabilityReplaceResult(count=0, skipped=True)

    count = await doctors_repo.replace_availabilities_from(
        session, doctor_id=doctor_id, from_date=today, entries=parsed
    )
    await write_audit_log(
        session, acting_user_id, "REPLACE_AVAILABILITIES", doctor=doctor_id, count=count
    )
    await session.commit()
    logger.info(f"Future overrides of doctor {doctor_id} replaced ({count} dates)")
    return AvailabilityReplaceResult(count=count)


async def list_future_availabilities(
    session: AsyncSession,
    doctor_id: UUID,
    acting_user_id: UUID,
    *,
    clock: Optional[Clock] = None,
) -> List[AvailabilityPublic]:
    clock = clock or SystemClock()
    doctor = await _require_doctor(session, doctor_id)
    _require_self(doctor, acting_user_id)
    rows = await doctors_repo.list_availabilities_from(
        session, doctor_id=doctor_id, from_date=today_of(clock)
    )
    return [AvailabilityPublic.model_validate(r) for r in rows]


async def delete_availability(
    session: AsyncSession,
    doctor_id: UUID,
    availability_id: UUID,
    acting_user_id: UUID,
) -> None:
    doctor = await _require_doctor(session, doctor_id)
    _require_self(doctor, acting_user_id)

    if not await doctors_repo.overrides_supported(session):
        raise NotFound("override_store_missing", "Availability overrides are not supported")

    row = await doctors_repo.get_availability(session, availability_id=availability_id)
    if not row or row.doctor_id != doctor_id:
        raise NotFound("availability_not_found", "Availability not found")

    await doctors_repo.delete_availability(session, availability_id=availability_id)
    await write_audit_log(
        session,
        acting_user_id,
        "DELETE_AVAILABILITY",
        doctor=doctor_id,
        date=row.date,
    )
    await session.commit()
    logger.info(f"Override {availability_id} of doctor {doctor_id} deleted")


# READ PATH (Availability Resolver + Slot Generator)
async def resolve_window_for(
    session: AsyncSession, doctor_id: UUID, day: dt.date
) -> Optional[WorkingWindow]:
    """
    Effective working window of the doctor on `day`. A missing override
    store counts as zero overrides.
    """
    override = await doctors_repo.find_availability_override(
        session, doctor_id=doctor_id, day=day
    )
    schedules = await doctors_repo.find_schedules(session, doctor_id=doctor_id)
    return resolve_window(schedules, [override] if override else [], day)


async def get_available_slots(
    session: AsyncSession,
    doctor_id: UUID,
    day: dt.date,
    *,
    clock: Optional[Clock] = None,
) -> AvailableSlots:
    clock = clock or SystemClock()
    await _require_doctor(session, doctor_id)

    now = clock.now()
    if day < now.date():
        return AvailableSlots(doctor_id=doctor_id, date=day, window=None, slots=[])

    window = await resolve_window_for(session, doctor_id, day)
    if window is None:
        return AvailableSlots(doctor_id=doctor_id, date=day, window=None, slots=[])

    range_start, range_end = day_bounds(day)
    occupied = await appt_repo.find_occupied_instants(
        session, doctor_id=doctor_id, range_start=range_start, range_end=range_end
    )
    slots = list(generate_slots(window, occupied, get_settings().SLOT_MINUTES))

    if day == now.date():
        current = time_to_minutes(format_time(now))
        slots = [s for s in slots if time_to_minutes(s) > current]

    return AvailableSlots(doctor_id=doctor_id, date=day, window=window, slots=slots)
