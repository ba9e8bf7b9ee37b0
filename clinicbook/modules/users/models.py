# clinicbook/modules/users/models.py
from __future__ import annotations

import datetime as dt
import uuid
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    func,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column

from clinicbook.db.base import Base, ReprMixin, TimestampMixin, UUIDPKMixin


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    action: Mapped[str] = mapped_column(String(120), nullable=False)
    details: Mapped[str | None] = mapped_column()
    timestamp: Mapped[dt.datetime] = mapped_column(server_default=func.now())

    __table_args__ = (Index("ix_audit_logs_timestamp", "timestamp"),)


class UserRole(PyEnum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    CLINIC_ADMIN = "clinic_admin"
    SUPER_ADMIN = "super_admin"


class User(UUIDPKMixin, TimestampMixin, ReprMixin, Base):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    role: Mapped[str] = mapped_column(
        String(20), nullable=False, server_default=UserRole.PATIENT.value
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=true()
    )

    __table_args__ = (
        UniqueConstraint("email", name="uq_users_email"),
        CheckConstraint(
            "role IN ('patient', 'doctor', 'clinic_admin', 'super_admin')",
            name="role_valid",
        ),
    )

    @property
    def role_enum(self) -> UserRole:
        return UserRole(self.role)


class Patient(UUIDPKMixin, TimestampMixin, ReprMixin, Base):
    """
    Patient profile; the phone number used for SMS lives on the linked User row.
    """

    __tablename__ = "patients"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)

    __table_args__ = (UniqueConstraint("user_id", name="uq_patients_user_id"),)
