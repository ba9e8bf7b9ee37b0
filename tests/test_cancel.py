import datetime as dt
import uuid

import pytest
from sqlalchemy import select

from clinicbook.core.errors import Forbidden, NotFound
from clinicbook.modules.appointments import repository as appt_repo
from clinicbook.modules.appointments.models import ApptStatus
from clinicbook.modules.appointments.service import (
    CANCELLATION_MESSAGE,
    cancel_appointment_svc,
    confirm_appointment_svc,
    create_appointment_svc,
)
from clinicbook.modules.users.models import AuditLog

SLOT = dt.datetime(2030, 3, 11, 10, 0)


@pytest.fixture
async def confirmed_appt(session, world, booking, notifier, clock):
    appt = await create_appointment_svc(session, booking(SLOT), notifier=notifier, clock=clock)
    stored = await appt_repo.get_appointment(session, appt.id)
    return await confirm_appointment_svc(
        session, appt.id, stored.confirmation_code, notifier=notifier, clock=clock
    )


async def test_patient_cancels_confirmed_appointment(session, world, confirmed_appt, notifier):
    result = await cancel_appointment_svc(
        session, confirmed_appt.id, world.patient_user.id, notifier=notifier
    )

    assert result.status == ApptStatus.CANCELLED
    assert notifier.sent[-1] == ("+40700000001", CANCELLATION_MESSAGE)

    # the row is kept
    stored = await appt_repo.get_appointment(session, confirmed_appt.id, fresh=True)
    assert stored.status == ApptStatus.CANCELLED.value

    actions = (await session.execute(select(AuditLog.action))).scalars().all()
    assert "CANCEL_APPOINTMENT" in actions


async def test_clinic_admin_cancels(session, world, confirmed_appt, notifier):
    result = await cancel_appointment_svc(
        session, confirmed_appt.id, world.admin.id, notifier=notifier
    )
    assert result.status == ApptStatus.CANCELLED


@pytest.mark.parametrize(
    "who", ["stranger", "other_admin", "doctor_user", "other_patient_user"]
)
async def test_anyone_else_is_forbidden(session, world, confirmed_appt, notifier, who):
    with pytest.raises(Forbidden):
        await cancel_appointment_svc(
            session, confirmed_appt.id, getattr(world, who).id, notifier=notifier
        )

    stored = await appt_repo.get_appointment(session, confirmed_appt.id, fresh=True)
    assert stored.status == ApptStatus.CONFIRMED.value


async def test_cancel_is_idempotent(session, world, confirmed_appt, notifier):
    await cancel_appointment_svc(session, confirmed_appt.id, world.patient_user.id, notifier=notifier)
    sent = len(notifier.sent)

    again = await cancel_appointment_svc(
        session, confirmed_appt.id, world.admin.id, notifier=notifier
    )
    assert again.status == ApptStatus.CANCELLED
    assert len(notifier.sent) == sent


async def test_pending_appointment_can_be_cancelled(session, world, booking, notifier, clock):
    appt = await create_appointment_svc(session, booking(SLOT), notifier=notifier, clock=clock)
    result = await cancel_appointment_svc(
        session, appt.id, world.patient_user.id, notifier=notifier
    )
    assert result.status == ApptStatus.CANCELLED
    assert result.confirmed is False


async def test_cancel_unknown_appointment(session, world, notifier):
    with pytest.raises(NotFound):
        await cancel_appointment_svc(session, uuid.uuid4(), world.admin.id, notifier=notifier)
