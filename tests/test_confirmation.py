import asyncio
import datetime as dt
import uuid

import pytest
from sqlalchemy import select

from clinicbook.core.config import get_settings
from clinicbook.core.errors import AlreadyConfirmed, Conflict, Forbidden, InvalidCode, NotFound
from clinicbook.modules.appointments import repository as appt_repo
from clinicbook.modules.appointments import service as appt_service
from clinicbook.modules.appointments.models import ApptStatus
from clinicbook.modules.appointments.service import (
    cancel_appointment_svc,
    confirm_appointment_svc,
    create_appointment_svc,
    resend_confirmation_code_svc,
)
from clinicbook.modules.users.models import AuditLog

from fakes import FakeNotifier

SLOT = dt.datetime(2030, 3, 11, 10, 0)


async def _book(session, booking, notifier, clock):
    appt = await create_appointment_svc(session, booking(SLOT), notifier=notifier, clock=clock)
    stored = await appt_repo.get_appointment(session, appt.id)
    return appt, stored.confirmation_code


def _wrong(code: str) -> str:
    return "000000" if code != "000000" else "111111"


async def test_correct_code_confirms_exactly_once(session, world, booking, notifier, clock):
    appt, code = await _book(session, booking, notifier, clock)

    confirmed = await confirm_appointment_svc(
        session, appt.id, code, notifier=notifier, clock=clock
    )
    assert confirmed.status == ApptStatus.CONFIRMED
    assert confirmed.confirmed is True
    assert notifier.messages[-1] == (
        "Your appointment at Central Clinic with Dr. House on 11.03.2030 at 10:00 is confirmed!"
    )

    with pytest.raises(AlreadyConfirmed):
        await confirm_appointment_svc(session, appt.id, code, notifier=notifier, clock=clock)
    assert len(notifier.sent) == 2


async def test_wrong_code_leaves_appointment_pending(session, world, booking, notifier, clock):
    appt, code = await _book(session, booking, notifier, clock)

    with pytest.raises(InvalidCode) as exc:
        await confirm_appointment_svc(
            session, appt.id, _wrong(code), notifier=notifier, clock=clock
        )
    assert exc.value.code == "invalid_confirmation_code"

    stored = await appt_repo.get_appointment(session, appt.id, fresh=True)
    assert stored.status == ApptStatus.PENDING.value
    assert stored.confirmed is False


async def test_code_is_matched_after_trimming_whitespace(session, world, booking, notifier, clock):
    appt, code = await _book(session, booking, notifier, clock)
    confirmed = await confirm_appointment_svc(
        session, appt.id, f" {code}\n", notifier=notifier, clock=clock
    )
    assert confirmed.confirmed is True


async def test_expired_code_is_rejected(session, world, booking, notifier, clock):
    appt, code = await _book(session, booking, notifier, clock)
    clock.advance(minutes=11)

    with pytest.raises(InvalidCode) as exc:
        await confirm_appointment_svc(session, appt.id, code, notifier=notifier, clock=clock)
    assert exc.value.code == "confirmation_code_expired"


async def test_code_is_still_valid_at_the_expiry_instant(session, world, booking, notifier, clock):
    appt, code = await _book(session, booking, notifier, clock)
    clock.advance(minutes=10)

    confirmed = await confirm_appointment_svc(
        session, appt.id, code, notifier=notifier, clock=clock
    )
    assert confirmed.status == ApptStatus.CONFIRMED


async def test_zero_ttl_disables_expiry(session, world, booking, notifier, clock, monkeypatch):
    monkeypatch.setattr(get_settings(), "CONFIRMATION_CODE_TTL_MINUTES", 0)
    appt, code = await _book(session, booking, notifier, clock)

    assert appt.code_expires_at is None
    assert notifier.messages[0].endswith(f"{code}.")

    clock.advance(days=3)
    confirmed = await confirm_appointment_svc(
        session, appt.id, code, notifier=notifier, clock=clock
    )
    assert confirmed.confirmed is True


async def test_cancelled_appointment_cannot_be_confirmed(session, world, booking, notifier, clock):
    appt, code = await _book(session, booking, notifier, clock)
    await cancel_appointment_svc(session, appt.id, world.patient_user.id, notifier=notifier)

    with pytest.raises(Conflict) as exc:
        await confirm_appointment_svc(session, appt.id, code, notifier=notifier, clock=clock)
    assert exc.value.code == "appointment_cancelled"


async def test_unknown_appointment(session, world, notifier, clock):
    with pytest.raises(NotFound):
        await confirm_appointment_svc(
            session, uuid.uuid4(), "123456", notifier=notifier, clock=clock
        )


async def test_concurrent_confirms_have_a_single_winner(
    sessionmaker, session, world, booking, notifier, clock
):
    appt, code = await _book(session, booking, notifier, clock)

    async def attempt():
        async with sessionmaker() as s:
            try:
                return await confirm_appointment_svc(
                    s, appt.id, code, notifier=FakeNotifier(), clock=clock
                )
            except AlreadyConfirmed as exc:
                return exc

    results = await asyncio.gather(attempt(), attempt())

    assert sum(isinstance(r, AlreadyConfirmed) for r in results) == 1
    assert sum(not isinstance(r, AlreadyConfirmed) for r in results) == 1


async def test_resend_after_expiry_issues_a_new_code(
    session, world, booking, notifier, clock, monkeypatch
):
    codes = iter(["111111", "222222"])
    monkeypatch.setattr(appt_service, "generate_confirmation_code", lambda: next(codes))
    appt, old_code = await _book(session, booking, notifier, clock)
    assert old_code == "111111"
    clock.advance(minutes=30)

    resent = await resend_confirmation_code_svc(
        session, appt.id, world.patient_user.id, notifier=notifier, clock=clock
    )
    assert resent.status == ApptStatus.PENDING
    assert resent.sms_sent is True
    assert resent.code_expires_at == clock.now() + dt.timedelta(minutes=10)

    stored = await appt_repo.get_appointment(session, appt.id, fresh=True)
    new_code = stored.confirmation_code
    assert new_code == "222222"
    assert notifier.sent[-1] == (
        "+40700000001",
        f"Your appointment confirmation code is: {new_code}. Valid for 10 minutes.",
    )

    with pytest.raises(InvalidCode):
        await confirm_appointment_svc(session, appt.id, old_code, notifier=notifier, clock=clock)

    confirmed = await confirm_appointment_svc(
        session, appt.id, new_code, notifier=notifier, clock=clock
    )
    assert confirmed.status == ApptStatus.CONFIRMED


async def test_resend_is_audited(session, world, booking, notifier, clock):
    appt, _ = await _book(session, booking, notifier, clock)
    await resend_confirmation_code_svc(
        session, appt.id, world.admin.id, notifier=notifier, clock=clock
    )

    rows = (await session.execute(select(AuditLog))).scalars().all()
    resends = [r for r in rows if r.action == "RESEND_CONFIRMATION_CODE"]
    assert len(resends) == 1
    assert resends[0].user_id == world.admin.id
    assert str(appt.id) in resends[0].details


async def test_resend_requires_patient_or_clinic_admin(session, world, booking, notifier, clock):
    appt, _ = await _book(session, booking, notifier, clock)
    for outsider in (world.stranger, world.other_admin):
        with pytest.raises(Forbidden):
            await resend_confirmation_code_svc(
                session, appt.id, outsider.id, notifier=notifier, clock=clock
            )
    assert len(notifier.sent) == 1


async def test_resend_on_confirmed_appointment(session, world, booking, notifier, clock):
    appt, code = await _book(session, booking, notifier, clock)
    await confirm_appointment_svc(session, appt.id, code, notifier=notifier, clock=clock)

    with pytest.raises(AlreadyConfirmed):
        await resend_confirmation_code_svc(
            session, appt.id, world.patient_user.id, notifier=notifier, clock=clock
        )


async def test_resend_on_cancelled_appointment(session, world, booking, notifier, clock):
    appt, _ = await _book(session, booking, notifier, clock)
    await cancel_appointment_svc(session, appt.id, world.patient_user.id, notifier=notifier)

    with pytest.raises(Conflict) as exc:
        await resend_confirmation_code_svc(
            session, appt.id, world.patient_user.id, notifier=notifier, clock=clock
        )
    assert exc.value.code == "appointment_cancelled"


async def test_undelivered_resend_is_recorded(session, world, booking, notifier, clock):
    appt, _ = await _book(session, booking, notifier, clock)

    resent = await resend_confirmation_code_svc(
        session,
        appt.id,
        world.patient_user.id,
        notifier=FakeNotifier(delivered=False),
        clock=clock,
    )
    assert resent.sms_sent is False
    stored = await appt_repo.get_appointment(session, appt.id, fresh=True)
    assert stored.sms_sent is False
