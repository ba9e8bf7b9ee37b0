# tests/conftest.py
from __future__ import annotations

import datetime as dt
from types import SimpleNamespace

import pytest

from clinicbook.core.clock import FixedClock
from clinicbook.db.sql import build_engine, build_sessionmaker, init_db
from clinicbook.modules.clinics import repository as clinics_repo
from clinicbook.modules.doctors import repository as doctors_repo
from clinicbook.modules.users import repository as users_repo
from clinicbook.modules.users.models import UserRole

from fakes import FakeNotifier

# Monday 2030-03-04, 09:00 clinic time
NOW = dt.datetime(2030, 3, 4, 9, 0)


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'clinicbook.db'}", echo=False)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def sessionmaker(engine):
    return build_sessionmaker(engine)


@pytest.fixture
async def session(sessionmaker):
    async with sessionmaker() as s:
        yield s


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def notifier():
    return FakeNotifier()


async def _patient(session, email, phone, first, last):
    user = await users_repo.create_user(session, email=email, phone=phone)
    patient = await users_repo.create_patient(
        session, user_id=user.id, first_name=first, last_name=last
    )
    return user, patient


@pytest.fixture
async def world(session):
    """
    Two clinics, one admin per clinic, a doctor at the main clinic,
    two patients (one without a phone) and an unrelated user.
    """
    clinic = await clinics_repo.create_clinic(session, name="Central Clinic")
    other_clinic = await clinics_repo.create_clinic(session, name="Harbor Clinic")

    admin = await users_repo.create_user(
        session, email="admin@central.test", role=UserRole.CLINIC_ADMIN
    )
    await clinics_repo.add_clinic_admin(session, clinic_id=clinic.id, user_id=admin.id)
    other_admin = await users_repo.create_user(
        session, email="admin@harbor.test", role=UserRole.CLINIC_ADMIN
    )
    await clinics_repo.add_clinic_admin(
        session, clinic_id=other_clinic.id, user_id=other_admin.id
    )

    doctor_user = await users_repo.create_user(
        session, email="house@central.test", role=UserRole.DOCTOR
    )
    doctor = await doctors_repo.create_doctor(
        session,
        user_id=doctor_user.id,
        clinic_id=clinic.id,
        first_name="Gregory",
        last_name="House",
    )
    other_doctor_user = await users_repo.create_user(
        session, email="wilson@harbor.test", role=UserRole.DOCTOR
    )
    other_doctor = await doctors_repo.create_doctor(
        session,
        user_id=other_doctor_user.id,
        clinic_id=other_clinic.id,
        first_name="James",
        last_name="Wilson",
    )

    patient_user, patient = await _patient(
        session, "ana@example.test", "+40700000001", "Ana", "Pop"
    )
    other_patient_user, other_patient = await _patient(
        session, "dan@example.test", None, "Dan", "Ionescu"
    )
    stranger = await users_repo.create_user(session, email="nobody@example.test")

    await session.commit()
    return SimpleNamespace(
        clinic=clinic,
        other_clinic=other_clinic,
        admin=admin,
        other_admin=other_admin,
        doctor_user=doctor_user,
        doctor=doctor,
        other_doctor_user=other_doctor_user,
        other_doctor=other_doctor,
        patient_user=patient_user,
        patient=patient,
        other_patient_user=other_patient_user,
        other_patient=other_patient,
        stranger=stranger,
    )


@pytest.fixture
def booking(world):
    """Factory for create-appointment payloads at the main clinic."""

    def _make(when: dt.datetime, patient=None, **extra):
        return {
            "patient_id": (patient or world.patient).id,
            "doctor_id": world.doctor.id,
            "clinic_id": world.clinic.id,
            "date_time": when,
            **extra,
        }

    return _make
