# clinicbook/modules/doctors/models.py
from __future__ import annotations

import datetime as dt
import uuid
from typing import List, Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    SmallInteger,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinicbook.db.base import Base, ReprMixin, TimestampMixin, UUIDPKMixin


class Doctor(UUIDPKMixin, TimestampMixin, ReprMixin, Base):
    """
    A doctor working at exactly one clinic. Owns its weekly schedules and
    date-specific availability overrides (deleted together with the doctor).
    """

    __tablename__ = "doctors"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False, index=True
    )
    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)

    schedules: Mapped[List["Schedule"]] = relationship(
        back_populates="doctor",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise",
    )
    availabilities: Mapped[List["Availability"]] = relationship(
        back_populates="doctor",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise",
    )

    __table_args__ = (UniqueConstraint("user_id", name="uq_doctors_user_id"),)


class Schedule(UUIDPKMixin, ReprMixin, Base):
    """
    Recurring weekly working window. One row per (doctor, day_of_week);
    times are canonical "HH:MM" clinic-local strings.
    """

    __tablename__ = "schedules"

    doctor_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False
    )
    # 0 = Sunday ... 6 = Saturday
    day_of_week: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    break_start: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    break_end: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)

    doctor: Mapped[Doctor] = relationship(back_populates="schedules", lazy="raise")

    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="day_of_week_range"),
        CheckConstraint("start_time < end_time", name="time_order"),
        UniqueConstraint("doctor_id", "day_of_week", name="uq_schedules_doctor_day"),
    )


class Availability(UUIDPKMixin, TimestampMixin, ReprMixin, Base):
    """
    Date-specific override. When present for a date it replaces the weekly
    schedule for that date entirely.
    """

    __tablename__ = "availabilities"

    doctor_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    break_start: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    break_end: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)

    doctor: Mapped[Doctor] = relationship(back_populates="availabilities", lazy="raise")

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="time_order"),
        UniqueConstraint("doctor_id", "date", name="uq_availabilities_doctor_date"),
    )
