# clinicbook/modules/appointments/service.py
"""
Booking Ledger and Confirmation State Machine.

    PENDING --confirm(code)--> CONFIRMED
    PENDING --resend code----> PENDING (new code, new expiry)
    PENDING --cancel---------> CANCELLED
    CONFIRMED --cancel-------> CANCELLED

Nothing leaves CANCELLED. Every write commits before any SMS goes out, and
an SMS outcome never rolls a write back.
"""
from __future__ import annotations

import asyncio
import hmac
import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, List, Optional, Type, TypeVar
from uuid import UUID

from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from clinicbook.core.clock import Clock, SystemClock
from clinicbook.core.config import get_settings
from clinicbook.core.errors import (
    AlreadyConfirmed,
    Conflict,
    Forbidden,
    InvalidCode,
    MalformedInput,
    NotFound,
)
from clinicbook.core.timeutil import format_time
from clinicbook.modules.appointments import repository as appt_repo
from clinicbook.modules.appointments.models import (
    ACTIVE_STATUSES,
    Appointment,
    ApptStatus,
)
from clinicbook.modules.appointments.schemas import (
    AppointmentCreateRequest,
    AppointmentFilters,
    AppointmentList,
    AppointmentPatchRequest,
    AppointmentPublic,
    AppointmentRescheduleRequest,
)
from clinicbook.modules.clinics import repository as clinics_repo
from clinicbook.modules.doctors import repository as doctors_repo
from clinicbook.modules.log import write_audit_log
from clinicbook.modules.notifications.sms import Notifier, get_notifier, mask_phone
from clinicbook.modules.users import repository as users_repo

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

CANCELLATION_MESSAGE = (
    "Your appointment has been cancelled. Please contact the clinic for more information."
)


def _to_public(appt: Appointment) -> AppointmentPublic:
    return AppointmentPublic.model_validate(appt)


def _parse(model: Type[M], data: Any) -> M:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise MalformedInput("malformed_input", str(exc)) from exc


def generate_confirmation_code() -> str:
    """6-digit numeric code, never starting with 0."""
    return str(100000 + secrets.randbelow(900000))


def _codes_match(stored: str, supplied: Optional[str]) -> bool:
    supplied = (supplied or "").strip()
    return hmac.compare_digest(stored.encode(), supplied.encode())


def _issue_code(clock: Clock) -> tuple[str, Optional[datetime]]:
    """Fresh code and its expiry (None when CONFIRMATION_CODE_TTL_MINUTES is 0)."""
    ttl = get_settings().CONFIRMATION_CODE_TTL_MINUTES
    expires_at = clock.now() + timedelta(minutes=ttl) if ttl else None
    return generate_confirmation_code(), expires_at


def _code_message(code: str) -> str:
    ttl = get_settings().CONFIRMATION_CODE_TTL_MINUTES
    message = f"Your appointment confirmation code is: {code}."
    if ttl:
        message = f"{message} Valid for {ttl} minutes."
    return message


def _format_day(value: datetime) -> str:
    return value.strftime("%d.%m.%Y")


async def _deliver(notifier: Notifier, phone: Optional[str], message: str) -> bool:
    """
    Best-effort SMS after commit. Returns the delivery flag; never raises.
    """
    if not phone:
        logger.info("No phone number on file; SMS skipped")
        return False
    timeout = get_settings().SMS_TIMEOUT_SECONDS
    try:
        return bool(await asyncio.wait_for(notifier.send_text(phone, message), timeout=timeout))
    except asyncio.TimeoutError:
        logger.warning(f"Notifier did not answer within {timeout}s for {mask_phone(phone)}")
        return False
    except Exception:
        logger.exception(f"Notifier failed for {mask_phone(phone)}")
        return False


async def _patient_phone(session: AsyncSession, patient_id: UUID) -> Optional[str]:
    patient = await users_repo.get_patient(session, patient_id)
    if patient is None:
        return None
    user = await users_repo.get_by_id(session, patient.user_id)
    return user.phone if user else None


async def _authorize(
    session: AsyncSession, appt: Appointment, acting_user_id: UUID
) -> tuple[bool, bool]:
    """
    Acting user must be the appointment's patient or an admin of its clinic.
    Returns (is_patient, is_clinic_admin).
    """
    patient = await users_repo.get_patient(session, appt.patient_id)
    is_patient = patient is not None and patient.user_id == acting_user_id
    is_admin = await clinics_repo.is_clinic_admin(
        session, clinic_id=appt.clinic_id, user_id=acting_user_id
    )
    if not is_patient and not is_admin:
        raise Forbidden("not_authorized", "Not authorized to modify this appointment")
    return is_patient, is_admin


async def _load(session: AsyncSession, appointment_id: UUID) -> Appointment:
    appt = await appt_repo.get_appointment(session, appointment_id)
    if not appt:
        raise NotFound("appointment_not_found", "Appointment not found")
    return appt


# CREATE (Booking Ledger)
async def create_appointment_svc(
    session: AsyncSession,
    payload: AppointmentCreateRequest | dict,
    *,
    notifier: Optional[Notifier] = None,
    clock: Optional[Clock] = None,
) -> AppointmentPublic:
    """
    Book a slot in PENDING state and text the confirmation code to the patient.

    Logic:
    - patient must exist, doctor must exist and work at the given clinic;
    - no PENDING/CONFIRMED appointment may hold (doctor, date_time). The pre-check
      gives an early answer; the partial unique index is what makes it atomic;
    - the SMS is sent after commit; `sms_sent` records the outcome.
    """
    payload = _parse(AppointmentCreateRequest, payload)
    settings = get_settings()
    notifier = notifier or get_notifier()
    clock = clock or SystemClock()

    patient = await users_repo.get_patient(session, payload.patient_id)
    if not patient:
        raise NotFound("patient_not_found", "Patient not found")

    doctor = await doctors_repo.get_doctor(session, payload.doctor_id)
    if not doctor:
        raise NotFound("doctor_not_found", "Doctor not found")
    if doctor.clinic_id != payload.clinic_id:
        raise MalformedInput("doctor_not_in_clinic", "Doctor does not work at this clinic")

    if await appt_repo.find_active_at(
        session, doctor_id=payload.doctor_id, date_time=payload.date_time
    ):
        raise Conflict("slot_already_booked", "This time slot is already booked")

    code, expires_at = _issue_code(clock)

    appt = await appt_repo.try_create_appointment(
        session,
        Appointment(
            patient_id=payload.patient_id,
            doctor_id=payload.doctor_id,
            clinic_id=payload.clinic_id,
            date_time=payload.date_time,
            duration=payload.duration or settings.DEFAULT_APPOINTMENT_MINUTES,
            notes=payload.notes,
            status=ApptStatus.PENDING.value,
            confirmation_code=code,
            code_expires_at=expires_at,
            confirmed=False,
            sms_sent=False,
        ),
    )
    await write_audit_log(
        session,
        patient.user_id,
        "CREATE_APPOINTMENT",
        appointment=appt.id,
        doctor=appt.doctor_id,
        at=appt.date_time,
    )
    await session.commit()
    logger.info(
        f"Appointment {appt.id} booked: doctor={appt.doctor_id} at={appt.date_time.isoformat()}"
    )

    phone = await _patient_phone(session, appt.patient_id)
    if await _deliver(notifier, phone, _code_message(code)):
        appt.sms_sent = True
        await appt_repo.save(session, appt)
        await session.commit()
    else:
        logger.warning(f"Confirmation code for appointment {appt.id} was not delivered")

    return _to_public(appt)


# CONFIRM
async def confirm_appointment_svc(
    session: AsyncSession,
    appointment_id: UUID,
    code: str,
    *,
    notifier: Optional[Notifier] = None,
    clock: Optional[Clock] = None,
) -> AppointmentPublic:
    """
    Verify the one-time code and move PENDING -> CONFIRMED exactly once.
    A wrong or expired code leaves the appointment untouched.
    """
    notifier = notifier or get_notifier()
    clock = clock or SystemClock()

    appt = await _load(session, appointment_id)
    if appt.confirmed:
        raise AlreadyConfirmed("appointment_already_confirmed", "Appointment already confirmed")
    if appt.status == ApptStatus.CANCELLED.value:
        raise Conflict("appointment_cancelled", "Appointment has been cancelled")
    if not _codes_match(appt.confirmation_code, code):
        raise InvalidCode("invalid_confirmation_code", "Invalid confirmation code")
    if appt.code_expires_at is not None and clock.now() > appt.code_expires_at:
        raise InvalidCode("confirmation_code_expired", "Confirmation code has expired")

    # Compare-and-set: of two concurrent confirms only one matches confirmed = false
    updated = await appt_repo.set_appointment_status(
        session,
        appointment_id,
        ApptStatus.CONFIRMED.value,
        expected_statuses=[ApptStatus.PENDING.value],
        require_unconfirmed=True,
        confirmed=True,
    )
    if updated is None:
        current = await appt_repo.get_appointment(session, appointment_id, fresh=True)
        if current is not None and current.status == ApptStatus.CANCELLED.value:
            raise Conflict("appointment_cancelled", "Appointment has been cancelled")
        raise AlreadyConfirmed("appointment_already_confirmed", "Appointment already confirmed")

    patient = await users_repo.get_patient(session, updated.patient_id)
    await write_audit_log(
        session,
        patient.user_id if patient else None,
        "CONFIRM_APPOINTMENT",
        appointment=updated.id,
    )
    await session.commit()
    logger.info(f"Appointment {updated.id} confirmed")

    clinic = await clinics_repo.get_clinic(session, updated.clinic_id)
    doctor = await doctors_repo.get_doctor(session, updated.doctor_id)
    message = (
        f"Your appointment at {clinic.name if clinic else 'the clinic'}"
        f" with Dr. {doctor.last_name if doctor else ''}"
        f" on {_format_day(updated.date_time)} at {format_time(updated.date_time)} is confirmed!"
    )
    await _deliver(notifier, await _patient_phone(session, updated.patient_id), message)
    return _to_public(updated)


# RESEND CODE
async def resend_confirmation_code_svc(
    session: AsyncSession,
    appointment_id: UUID,
    acting_user_id: UUID,
    *,
    notifier: Optional[Notifier] = None,
    clock: Optional[Clock] = None,
) -> AppointmentPublic:
    """
    Replace the code of a PENDING appointment with a fresh one and text it.

    A PENDING appointment keeps its slot whether or not its code has expired;
    the hold ends by confirming with a resent code or by cancelling.
    The previous code stops working immediately.
    """
    notifier = notifier or get_notifier()
    clock = clock or SystemClock()

    appt = await _load(session, appointment_id)
    await _authorize(session, appt, acting_user_id)
    if appt.confirmed:
        raise AlreadyConfirmed("appointment_already_confirmed", "Appointment already confirmed")
    if appt.status == ApptStatus.CANCELLED.value:
        raise Conflict("appointment_cancelled", "Appointment has been cancelled")

    code, expires_at = _issue_code(clock)
    updated = await appt_repo.set_appointment_status(
        session,
        appointment_id,
        ApptStatus.PENDING.value,
        expected_statuses=[ApptStatus.PENDING.value],
        require_unconfirmed=True,
        confirmation_code=code,
        code_expires_at=expires_at,
        sms_sent=False,
    )
    if updated is None:
        current = await appt_repo.get_appointment(session, appointment_id, fresh=True)
        if current is not None and current.status == ApptStatus.CANCELLED.value:
            raise Conflict("appointment_cancelled", "Appointment has been cancelled")
        raise AlreadyConfirmed("appointment_already_confirmed", "Appointment already confirmed")

    await write_audit_log(
        session, acting_user_id, "RESEND_CONFIRMATION_CODE", appointment=updated.id
    )
    await session.commit()
    logger.info(f"New confirmation code issued for appointment {updated.id}")

    phone = await _patient_phone(session, updated.patient_id)
    if await _deliver(notifier, phone, _code_message(code)):
        updated.sms_sent = True
        await appt_repo.save(session, updated)
        await session.commit()
    else:
        logger.warning(f"Confirmation code for appointment {updated.id} was not delivered")

    return _to_public(updated)


# CANCEL
async def cancel_appointment_svc(
    session: AsyncSession,
    appointment_id: UUID,
    acting_user_id: UUID,
    *,
    notifier: Optional[Notifier] = None,
) -> AppointmentPublic:
    """
    Patient or clinic admin cancels. The row is kept; its slot becomes free.
    Cancelling twice returns the cancelled appointment without a second notice.
    """
    notifier = notifier or get_notifier()

    appt = await _load(session, appointment_id)
    await _authorize(session, appt, acting_user_id)

    if appt.status == ApptStatus.CANCELLED.value:
        return _to_public(appt)

    updated = await appt_repo.set_appointment_status(
        session,
        appointment_id,
        ApptStatus.CANCELLED.value,
        expected_statuses=ACTIVE_STATUSES,
    )
    if updated is None:
        # Cancelled concurrently by someone else
        current = await appt_repo.get_appointment(session, appointment_id, fresh=True)
        return _to_public(current)

    await write_audit_log(
        session, acting_user_id, "CANCEL_APPOINTMENT", appointment=updated.id
    )
    await session.commit()
    logger.info(f"Appointment {updated.id} cancelled by {acting_user_id}")

    await _deliver(
        notifier, await _patient_phone(session, updated.patient_id), CANCELLATION_MESSAGE
    )
    return _to_public(updated)


# PATCH (never touches the slot key)
async def patch_appointment_svc(
    session: AsyncSession,
    appointment_id: UUID,
    patch: AppointmentPatchRequest | dict,
    acting_user_id: UUID,
    *,
    notifier: Optional[Notifier] = None,
) -> AppointmentPublic:
    """
    Update notes (patient or clinic admin), admin notes (clinic admin only) or
    cancel via status=CANCELLED. Moving the appointment is reschedule's job.
    """
    patch = _parse(AppointmentPatchRequest, patch)
    appt = await _load(session, appointment_id)
    _, is_admin = await _authorize(session, appt, acting_user_id)

    fields_set = patch.model_fields_set
    if "admin_notes" in fields_set and not is_admin:
        raise Forbidden("admin_notes_restricted", "Only clinic admins can edit admin notes")

    changed = []
    if "notes" in fields_set:
        appt.notes = patch.notes
        changed.append("notes")
    if "admin_notes" in fields_set:
        appt.admin_notes = patch.admin_notes
        changed.append("admin_notes")

    if changed:
        appt = await appt_repo.save(session, appt)
        await write_audit_log(
            session,
            acting_user_id,
            "PATCH_APPOINTMENT",
            appointment=appt.id,
            fields=changed,
        )
        await session.commit()

    if patch.status == ApptStatus.CANCELLED.value:
        return await cancel_appointment_svc(
            session, appointment_id, acting_user_id, notifier=notifier
        )
    return _to_public(appt)


# RESCHEDULE (goes back through the ledger's conflict guard)
async def reschedule_appointment_svc(
    session: AsyncSession,
    appointment_id: UUID,
    payload: AppointmentRescheduleRequest | dict,
    acting_user_id: UUID,
    *,
    notifier: Optional[Notifier] = None,
) -> AppointmentPublic:
    payload = _parse(AppointmentRescheduleRequest, payload)
    notifier = notifier or get_notifier()

    appt = await _load(session, appointment_id)
    await _authorize(session, appt, acting_user_id)

    if appt.status == ApptStatus.CANCELLED.value:
        raise Conflict("appointment_cancelled", "Cancelled appointments cannot be moved")
    if appt.date_time == payload.date_time:
        return _to_public(appt)

    if await appt_repo.find_active_at(
        session,
        doctor_id=appt.doctor_id,
        date_time=payload.date_time,
        exclude_id=appt.id,
    ):
        raise Conflict("slot_already_booked", "This time slot is already booked")

    previous = appt.date_time
    appt = await appt_repo.move_appointment(session, appt, date_time=payload.date_time)
    await write_audit_log(
        session,
        acting_user_id,
        "RESCHEDULE_APPOINTMENT",
        appointment=appt.id,
        previous=previous,
        to=appt.date_time,
    )
    await session.commit()
    logger.info(f"Appointment {appt.id} moved from {previous} to {appt.date_time}")

    message = (
        f"Your appointment has been moved to {_format_day(appt.date_time)}"
        f" at {format_time(appt.date_time)}."
    )
    await _deliver(notifier, await _patient_phone(session, appt.patient_id), message)
    return _to_public(appt)


# QUERIES
async def get_appointment_svc(session: AsyncSession, appointment_id: UUID) -> AppointmentPublic:
    return _to_public(await _load(session, appointment_id))


async def list_appointments_svc(
    session: AsyncSession, filters: AppointmentFilters | dict | None = None
) -> AppointmentList:
    filters = _parse(AppointmentFilters, filters or {})
    rows, total = await appt_repo.list_appointments(session, filters)
    return AppointmentList(items=[_to_public(a) for a in rows], total=total)


async def get_clinic_calendar_svc(
    session: AsyncSession,
    clinic_id: UUID,
    date_from: datetime,
    date_to: datetime,
    acting_user_id: UUID,
) -> List[AppointmentPublic]:
    """
    All appointments of a clinic in [date_from, date_to]; clinic admins only.
    """
    if not await clinics_repo.is_clinic_admin(
        session, clinic_id=clinic_id, user_id=acting_user_id
    ):
        raise Forbidden("not_clinic_admin", "Not authorized to view this calendar")
    rows, _ = await appt_repo.list_appointments(
        session,
        AppointmentFilters(clinic_id=clinic_id, date_from=date_from, date_to=date_to),
    )
    return [_to_public(a) for a in rows]
