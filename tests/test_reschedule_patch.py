import datetime as dt

import pytest

from clinicbook.core.errors import Conflict, Forbidden, MalformedInput
from clinicbook.modules.appointments import repository as appt_repo
from clinicbook.modules.appointments.models import ApptStatus
from clinicbook.modules.appointments.service import (
    cancel_appointment_svc,
    create_appointment_svc,
    patch_appointment_svc,
    reschedule_appointment_svc,
)

SLOT = dt.datetime(2030, 3, 11, 10, 0)
LATER = dt.datetime(2030, 3, 11, 11, 0)


@pytest.fixture
async def appt(session, world, booking, notifier, clock):
    return await create_appointment_svc(session, booking(SLOT), notifier=notifier, clock=clock)


async def test_reschedule_to_a_free_slot(session, world, appt, notifier):
    moved = await reschedule_appointment_svc(
        session, appt.id, {"date_time": LATER}, world.patient_user.id, notifier=notifier
    )
    assert moved.date_time == LATER
    assert notifier.messages[-1] == "Your appointment has been moved to 11.03.2030 at 11:00."


async def test_reschedule_frees_the_old_slot(
    session, world, appt, booking, notifier, clock
):
    await reschedule_appointment_svc(
        session, appt.id, {"date_time": LATER}, world.admin.id, notifier=notifier
    )
    other = await create_appointment_svc(
        session, booking(SLOT, patient=world.other_patient), notifier=notifier, clock=clock
    )
    assert other.date_time == SLOT


async def test_reschedule_into_a_taken_slot_conflicts(
    session, world, appt, booking, notifier, clock
):
    await create_appointment_svc(
        session, booking(LATER, patient=world.other_patient), notifier=notifier, clock=clock
    )
    with pytest.raises(Conflict) as exc:
        await reschedule_appointment_svc(
            session, appt.id, {"date_time": LATER}, world.patient_user.id, notifier=notifier
        )
    assert exc.value.code == "slot_already_booked"


async def test_reschedule_to_same_instant_is_a_no_op(session, world, appt, notifier):
    sent = len(notifier.sent)
    same = await reschedule_appointment_svc(
        session, appt.id, {"date_time": SLOT}, world.patient_user.id, notifier=notifier
    )
    assert same.date_time == SLOT
    assert len(notifier.sent) == sent


async def test_cancelled_appointment_cannot_be_rescheduled(session, world, appt, notifier):
    await cancel_appointment_svc(session, appt.id, world.patient_user.id, notifier=notifier)
    with pytest.raises(Conflict) as exc:
        await reschedule_appointment_svc(
            session, appt.id, {"date_time": LATER}, world.patient_user.id, notifier=notifier
        )
    assert exc.value.code == "appointment_cancelled"


async def test_reschedule_requires_patient_or_clinic_admin(session, world, appt, notifier):
    with pytest.raises(Forbidden):
        await reschedule_appointment_svc(
            session, appt.id, {"date_time": LATER}, world.stranger.id, notifier=notifier
        )


async def test_patch_notes(session, world, appt, notifier):
    patched = await patch_appointment_svc(
        session, appt.id, {"notes": "bring previous scans"}, world.patient_user.id,
        notifier=notifier,
    )
    assert patched.notes == "bring previous scans"
    assert patched.status == ApptStatus.PENDING


async def test_admin_notes_are_for_clinic_admins_only(session, world, appt, notifier):
    with pytest.raises(Forbidden) as exc:
        await patch_appointment_svc(
            session, appt.id, {"admin_notes": "VIP"}, world.patient_user.id, notifier=notifier
        )
    assert exc.value.code == "admin_notes_restricted"

    patched = await patch_appointment_svc(
        session, appt.id, {"admin_notes": "VIP"}, world.admin.id, notifier=notifier
    )
    assert patched.admin_notes == "VIP"


async def test_patch_cannot_move_the_appointment(session, world, appt, notifier):
    with pytest.raises(MalformedInput):
        await patch_appointment_svc(
            session, appt.id, {"date_time": LATER}, world.patient_user.id, notifier=notifier
        )
    with pytest.raises(MalformedInput):
        await patch_appointment_svc(
            session, appt.id, {"status": "CONFIRMED"}, world.patient_user.id, notifier=notifier
        )


async def test_patch_status_cancelled_runs_the_cancel_transition(session, world, appt, notifier):
    patched = await patch_appointment_svc(
        session,
        appt.id,
        {"notes": "cannot make it", "status": "CANCELLED"},
        world.patient_user.id,
        notifier=notifier,
    )
    assert patched.status == ApptStatus.CANCELLED
    assert patched.notes == "cannot make it"


async def test_lost_reschedule_race_leaves_session_usable(
    sessionmaker, session, world, appt, booking, notifier, clock, monkeypatch
):
    patient_user_id = world.patient_user.id
    async with sessionmaker() as other:
        await create_appointment_svc(
            other, booking(LATER, patient=world.other_patient), notifier=notifier, clock=clock
        )

    async def nothing_held(*args, **kwargs):
        return None

    monkeypatch.setattr(appt_repo, "find_active_at", nothing_held)

    with pytest.raises(Conflict) as exc:
        await reschedule_appointment_svc(
            session, appt.id, {"date_time": LATER}, patient_user_id, notifier=notifier
        )
    assert exc.value.code == "slot_already_booked"

    noon = dt.datetime(2030, 3, 11, 12, 0)
    moved = await reschedule_appointment_svc(
        session, appt.id, {"date_time": noon}, patient_user_id, notifier=notifier
    )
    assert moved.date_time == noon
    assert moved.status == ApptStatus.PENDING
