# clinicbook/modules/clinics/repository.py
from __future__ import annotations

from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinicbook.modules.clinics.models import Clinic, ClinicAdmin


async def get_clinic(session: AsyncSession, clinic_id: UUID) -> Optional[Clinic]:
    return await session.get(Clinic, clinic_id)


async def is_clinic_admin(
    session: AsyncSession, *, clinic_id: UUID, user_id: UUID
) -> bool:
    """
    True when `user_id` administers `clinic_id`.
    """
    stmt = select(ClinicAdmin.id).where(
        ClinicAdmin.clinic_id == clinic_id,
        ClinicAdmin.user_id == user_id,
    )
    return (await session.execute(stmt)).first() is not None


async def create_clinic(
    session: AsyncSession,
    *,
    name: str,
    address: Optional[str] = None,
    phone: Optional[str] = None,
) -> Clinic:
    clinic = Clinic(name=name.strip(), address=address, phone=phone)
    session.add(clinic)
    await session.flush()
    await session.refresh(clinic)
    return clinic


async def add_clinic_admin(
    session: AsyncSession, *, clinic_id: UUID, user_id: UUID
) -> ClinicAdmin:
    membership = ClinicAdmin(clinic_id=clinic_id, user_id=user_id)
    session.add(membership)
    await session.flush()
    return membership
