# clinicbook/modules/clinics/models.py
from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from clinicbook.db.base import Base, ReprMixin, TimestampMixin, UUIDPKMixin


class Clinic(UUIDPKMixin, TimestampMixin, ReprMixin, Base):
    __tablename__ = "clinics"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)


class ClinicAdmin(UUIDPKMixin, Base):
    """
    Membership row: `user_id` administers `clinic_id`.
    """

    __tablename__ = "clinic_admins"

    clinic_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("clinic_id", "user_id", name="uq_clinic_admins_clinic_user"),
    )
