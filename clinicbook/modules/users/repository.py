# clinicbook/modules/users/repository.py
from __future__ import annotations

from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clinicbook.modules.users.models import Patient, User, UserRole


class EmailAlreadyExistsError(Exception):
    """Raised when trying to insert a user with an email that already exists."""


async def get_by_id(session: AsyncSession, user_id: UUID) -> Optional[User]:
    """
    Returns a User by primary key or None if not found.
    """
    return await session.get(User, user_id)


async def create_user(
    session: AsyncSession,
    *,
    email: str,
    phone: Optional[str] = None,
    role: UserRole | str = UserRole.PATIENT,
    is_active: bool = True,
) -> User:
    """
    Inserts a new user row and returns the persisted ORM instance.
    Email is normalized to lowercase; a duplicate email raises EmailAlreadyExistsError.
    """
    role_value = role.value if isinstance(role, UserRole) else str(role)
    user = User(
        email=email.strip().lower(),
        phone=phone,
        role=role_value,
        is_active=is_active,
    )
    session.add(user)
    try:
        await session.flush()
    except IntegrityError as exc:
        raise EmailAlreadyExistsError("Email already registered") from exc
    await session.refresh(user)
    return user


async def create_patient(
    session: AsyncSession,
    *,
    user_id: UUID,
    first_name: str,
    last_name: str,
) -> Patient:
    patient = Patient(
        user_id=user_id,
        first_name=first_name.strip(),
        last_name=last_name.strip(),
    )
    session.add(patient)
    await session.flush()
    await session.refresh(patient)
    return patient


async def get_patient(session: AsyncSession, patient_id: UUID) -> Optional[Patient]:
    """
    Return a patient by UUID or None if not found.
    """
    return await session.get(Patient, patient_id)
