# clinicbook/modules/appointments/repository.py
from __future__ import annotations

import datetime as dt
from typing import Any, Iterable, Optional, Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clinicbook.core.errors import Conflict, MalformedInput
from clinicbook.modules.appointments.models import (
    ACTIVE_SLOT_INDEX,
    ACTIVE_STATUSES,
    Appointment,
)
from clinicbook.modules.appointments.schemas import AppointmentFilters


def _translate_integrity_error(exc: IntegrityError) -> Exception:
    """
    Map DB constraint violations to service errors.
    Postgres names the index; sqlite only says "UNIQUE constraint failed".
    """
    message = str(exc.orig).lower() if exc.orig else str(exc).lower()
    if ACTIVE_SLOT_INDEX in message or "unique" in message or "duplicate key" in message:
        return Conflict("slot_already_booked", "This time slot is already booked")
    return MalformedInput("invalid_appointment", "Appointment violates DB constraints")


async def find_active_at(
    session: AsyncSession,
    *,
    doctor_id: UUID,
    date_time: dt.datetime,
    exclude_id: Optional[UUID] = None,
) -> Optional[Appointment]:
    """
    The PENDING/CONFIRMED appointment holding (doctor, date_time), if any.
    """
    stmt = select(Appointment).where(
        Appointment.doctor_id == doctor_id,
        Appointment.date_time == date_time,
        Appointment.status.in_(ACTIVE_STATUSES),
    )
    if exclude_id is not None:
        stmt = stmt.where(Appointment.id != exclude_id)
    return (await session.execute(stmt.limit(1))).scalar_one_or_none()


async def find_occupied_instants(
    session: AsyncSession,
    *,
    doctor_id: UUID,
    range_start: dt.datetime,
    range_end: dt.datetime,
    statuses: Iterable[str] = ACTIVE_STATUSES,
) -> set[dt.datetime]:
    """
    Instants in [range_start, range_end) claimed by appointments in `statuses`.
    """
    stmt = select(Appointment.date_time).where(
        Appointment.doctor_id == doctor_id,
        Appointment.date_time >= range_start,
        Appointment.date_time < range_end,
        Appointment.status.in_(list(statuses)),
    )
    return set((await session.execute(stmt)).scalars().all())


async def _flush_or_translate(session: AsyncSession) -> None:
    """
    Flush pending changes. On a constraint violation the transaction is rolled
    back so the session stays usable, and the violation is raised as a service
    error. Instances loaded in this session are expired by the rollback.
    """
    try:
        await session.flush()
    except IntegrityError as exc:
        await session.rollback()
        raise _translate_integrity_error(exc) from exc


async def try_create_appointment(
    session: AsyncSession, candidate: Appointment
) -> Appointment:
    """
    Atomic insert guarded by the partial unique index on active slots.
    A concurrent winner surfaces here as Conflict.
    """
    session.add(candidate)
    # Flush to force INSERT and surface the unique index here
    await _flush_or_translate(session)
    await session.refresh(candidate)
    return candidate


async def get_appointment(
    session: AsyncSession, appointment_id: UUID, *, fresh: bool = False
) -> Optional[Appointment]:
    return await session.get(Appointment, appointment_id, populate_existing=fresh)


async def set_appointment_status(
    session: AsyncSession,
    appointment_id: UUID,
    new_status: str,
    *,
    expected_statuses: Optional[Iterable[str]] = None,
    require_unconfirmed: bool = False,
    **extra_fields: Any,
) -> Optional[Appointment]:
    """
    Compare-and-set status update. Returns the refreshed appointment, or None
    when the row no longer matches the expected state (someone else won).
    """
    stmt = (
        update(Appointment)
        .where(Appointment.id == appointment_id)
        .values(status=new_status, **extra_fields)
        .execution_options(synchronize_session=False)
    )
    if expected_statuses is not None:
        stmt = stmt.where(Appointment.status.in_(list(expected_statuses)))
    if require_unconfirmed:
        stmt = stmt.where(Appointment.confirmed.is_(False))

    res = await session.execute(stmt)
    if not res.rowcount:
        return None
    return await get_appointment(session, appointment_id, fresh=True)


async def move_appointment(
    session: AsyncSession, appt: Appointment, *, date_time: dt.datetime
) -> Appointment:
    appt.date_time = date_time
    await _flush_or_translate(session)
    await session.refresh(appt)
    return appt


async def save(session: AsyncSession, appt: Appointment) -> Appointment:
    """Flush attribute changes and reload server-side values (updated_at)."""
    await session.flush()
    await session.refresh(appt)
    return appt


async def list_appointments(
    session: AsyncSession, filters: AppointmentFilters
) -> tuple[Sequence[Appointment], int]:
    conditions = []
    if filters.patient_id:
        conditions.append(Appointment.patient_id == filters.patient_id)
    if filters.doctor_id:
        conditions.append(Appointment.doctor_id == filters.doctor_id)
    if filters.clinic_id:
        conditions.append(Appointment.clinic_id == filters.clinic_id)
    if filters.status:
        conditions.append(Appointment.status == filters.status.value)
    if filters.date_from:
        conditions.append(Appointment.date_time >= filters.date_from)
    if filters.date_to:
        conditions.append(Appointment.date_time <= filters.date_to)

    total_stmt = select(func.count()).select_from(Appointment).where(*conditions)
    total = (await session.execute(total_stmt)).scalar_one()

    stmt = (
        select(Appointment)
        .where(*conditions)
        .order_by(Appointment.date_time, Appointment.id)
    )
    rows = (await session.execute(stmt)).scalars().all()
    return rows, total
