"""Clinic and operating-hours model definitions."""

import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Time, UniqueConstraint
from clinic_booking.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class Clinic(Base):
    """Represents a bookable clinic location."""
    __tablename__ = "clinics"

    id = Column(String, primary_key=True, default=_new_id)
    slug = Column(String, unique=True, index=True)
    name = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class ClinicSchedule(Base):
    """Operating hours for one clinic on one weekday (0 = Sunday)."""
    __tablename__ = "clinic_schedules"
    __table_args__ = (
        UniqueConstraint("clinic_id", "day_of_week", name="uq_clinic_schedules_clinic_day"),
    )

    id = Column(String, primary_key=True, default=_new_id)
    clinic_id = Column(String, ForeignKey("clinics.id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)
    open_time = Column(Time, nullable=False)
    close_time = Column(Time, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
