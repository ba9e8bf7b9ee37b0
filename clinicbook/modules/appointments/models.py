# clinicbook/modules/appointments/models.py
from __future__ import annotations

import datetime as dt
import uuid
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    false,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from clinicbook.db.base import Base, ReprMixin, TimestampMixin, UUIDPKMixin


class ApptStatus(PyEnum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


# Statuses that occupy a (doctor, date_time) slot
ACTIVE_STATUSES = (ApptStatus.PENDING.value, ApptStatus.CONFIRMED.value)

_ACTIVE_WHERE = text("status IN ('PENDING', 'CONFIRMED')")

ACTIVE_SLOT_INDEX = "uq_appointments_doctor_slot_active"


class Appointment(UUIDPKMixin, TimestampMixin, ReprMixin, Base):
    """
    Ledger entry linking patient, doctor and clinic. Never deleted on
    cancellation: CANCELLED is a status, and it frees the slot.
    """

    __tablename__ = "appointments"

    patient_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("patients.id", ondelete="RESTRICT"), nullable=False
    )
    doctor_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("doctors.id", ondelete="RESTRICT"), nullable=False
    )
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("clinics.id", ondelete="RESTRICT"), nullable=False
    )

    # Clinic-local wall-clock instant, minute precision
    date_time: Mapped[dt.datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, server_default="30")

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ApptStatus.PENDING.value,
        server_default=ApptStatus.PENDING.value,
    )
    confirmation_code: Mapped[str] = mapped_column(String(6), nullable=False)
    code_expires_at: Mapped[Optional[dt.datetime]] = mapped_column(
        DateTime(timezone=False), nullable=True
    )
    confirmed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    sms_sent: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'CANCELLED')", name="status_valid"
        ),
        CheckConstraint("duration > 0", name="duration_positive"),
        # No double booking: one active appointment per doctor and instant
        Index(
            ACTIVE_SLOT_INDEX,
            "doctor_id",
            "date_time",
            unique=True,
            postgresql_where=_ACTIVE_WHERE,
            sqlite_where=_ACTIVE_WHERE,
        ),
        Index("ix_appointments_doctor_date_time", "doctor_id", "date_time"),
        Index("ix_appointments_clinic_date_time", "clinic_id", "date_time"),
        Index("ix_appointments_patient_date_time", "patient_id", "date_time"),
    )

    @property
    def status_enum(self) -> ApptStatus:
        return ApptStatus(self.status)
