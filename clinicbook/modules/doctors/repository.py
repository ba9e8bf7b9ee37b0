# clinicbook/modules/doctors/repository.py
from __future__ import annotations

import datetime as dt
from typing import Iterable, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, inspect, select
from sqlalchemy.ext.asyncio import AsyncSession

from clinicbook.modules.doctors.models import Availability, Doctor, Schedule
from clinicbook.modules.doctors.schemas import AvailabilityEntry, ScheduleEntry


async def get_doctor(session: AsyncSession, doctor_id: UUID) -> Optional[Doctor]:
    return await session.get(Doctor, doctor_id)


async def create_doctor(
    session: AsyncSession,
    *,
    user_id: UUID,
    clinic_id: UUID,
    first_name: str,
    last_name: str,
) -> Doctor:
    doctor = Doctor(
        user_id=user_id,
        clinic_id=clinic_id,
        first_name=first_name.strip(),
        last_name=last_name.strip(),
    )
    session.add(doctor)
    await session.flush()
    await session.refresh(doctor)
    return doctor


async def find_schedules(session: AsyncSession, *, doctor_id: UUID) -> Sequence[Schedule]:
    rows = await session.execute(
        select(Schedule)
        .where(Schedule.doctor_id == doctor_id)
        .order_by(Schedule.day_of_week)
    )
    return rows.scalars().all()


async def replace_schedules(
    session: AsyncSession, *, doctor_id: UUID, entries: Iterable[ScheduleEntry]
) -> Sequence[Schedule]:
    """
    Replace-all semantics: every existing weekly schedule of the doctor is removed.
    """
    await session.execute(delete(Schedule).where(Schedule.doctor_id == doctor_id))
    rows = [
        Schedule(
            doctor_id=doctor_id,
            day_of_week=e.day_of_week,
            start_time=e.start_time,
            end_time=e.end_time,
            break_start=e.break_start,
            break_end=e.break_end,
        )
        for e in entries
    ]
    session.add_all(rows)
    await session.flush()
    return rows


# --- Overrides (the table may be missing in older deployments) ---

async def overrides_supported(session: AsyncSession) -> bool:
    """
    Capability check at the store boundary: does the override table exist?
    """

    def _has_table(sync_session) -> bool:
        return inspect(sync_session.connection()).has_table(Availability.__tablename__)

    return await session.run_sync(_has_table)


async def find_availability_override(
    session: AsyncSession, *, doctor_id: UUID, day: dt.date
) -> Optional[Availability]:
    if not await overrides_supported(session):
        return None
    row = await session.execute(
        select(Availability).where(
            Availability.doctor_id == doctor_id,
            Availability.date == day,
        )
    )
    return row.scalar_one_or_none()


async def list_availabilities_from(
    session: AsyncSession, *, doctor_id: UUID, from_date: dt.date
) -> Sequence[Availability]:
    if not await overrides_supported(session):
        return []
    rows = await session.execute(
        select(Availability)
        .where(Availability.doctor_id == doctor_id, Availability.date >= from_date)
        .order_by(Availability.date)
    )
    return rows.scalars().all()


async def replace_availabilities_from(
    session: AsyncSession,
    *,
    doctor_id: UUID,
    from_date: dt.date,
    entries: Iterable[AvailabilityEntry],
) -> int:
    """
    Delete the doctor's overrides dated on/after `from_date`, insert `entries`.
    Returns the number of inserted rows. Past overrides are left untouched.
    """
    await session.execute(
        delete(Availability).where(
            Availability.doctor_id == doctor_id,
            Availability.date >= from_date,
        )
    )
    rows = [
        Availability(
            doctor_id=doctor_id,
            date=e.date,
            start_time=e.start_time,
            end_time=e.end_time,
            break_start=e.break_start,
            break_end=e.break_end,
        )
        for e in entries
    ]
    session.add_all(rows)
    await session.flush()
    return len(rows)


async def get_availability(
    session: AsyncSession, *, availability_id: UUID
) -> Optional[Availability]:
    return await session.get(Availability, availability_id)


async def delete_availability(session: AsyncSession, *, availability_id: UUID) -> int:
    res = await session.execute(
        delete(Availability).where(Availability.id == availability_id)
    )
    return res.rowcount or 0  # type: ignore
