import pytest
from sqlalchemy import select

from clinicbook.core.config import Settings
from clinicbook.db.sql import ping_db, session_scope
from clinicbook.modules.clinics.models import Clinic


async def test_ping(engine):
    assert await ping_db(engine) is True


async def test_session_scope_commits(sessionmaker):
    async with session_scope(sessionmaker) as s:
        s.add(Clinic(name="North"))

    async with sessionmaker() as s:
        names = (await s.execute(select(Clinic.name))).scalars().all()
    assert names == ["North"]


async def test_session_scope_rolls_back_on_error(sessionmaker):
    with pytest.raises(RuntimeError):
        async with session_scope(sessionmaker) as s:
            s.add(Clinic(name="South"))
            await s.flush()
            raise RuntimeError("boom")

    async with sessionmaker() as s:
        assert (await s.execute(select(Clinic))).first() is None


def test_settings_read_from_environment(monkeypatch):
    monkeypatch.setenv("SLOT_MINUTES", "15")
    monkeypatch.setenv("CONFIRMATION_CODE_TTL_MINUTES", "0")

    settings = Settings(_env_file=None)

    assert settings.SLOT_MINUTES == 15
    assert settings.CONFIRMATION_CODE_TTL_MINUTES == 0
    assert settings.DEFAULT_APPOINTMENT_MINUTES == 30


async def test_duplicate_email_is_rejected(session):
    from clinicbook.modules.users import repository as users_repo

    user = await users_repo.create_user(session, email="  Ana@Example.test ")
    assert user.email == "ana@example.test"
    assert user.role_enum.value == "patient"

    with pytest.raises(users_repo.EmailAlreadyExistsError):
        await users_repo.create_user(session, email="ana@example.test")
    await session.rollback()
