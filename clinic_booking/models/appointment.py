"""Appointment model definitions."""

import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String
from clinic_booking.database import Base

RESERVED = "reserved"
BOOKED = "booked"
WALKIN = "walkin"
COMPLETED = "completed"
CANCELLED = "cancelled"

APPOINTMENT_STATUSES = (RESERVED, BOOKED, WALKIN, COMPLETED, CANCELLED)


class Appointment(Base):
    """Represents a scheduled appointment in clinic-local wall-clock time."""
    __tablename__ = "appointments"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    clinic_id = Column(String, ForeignKey("clinics.id"), nullable=False)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(String, default=BOOKED, nullable=False)
    intake_answers = Column(JSON)


class AppointmentService(Base):
    """Service line item attached to an appointment."""
    __tablename__ = "appointment_services"

    appointment_id = Column(String, ForeignKey("appointments.id", ondelete="CASCADE"), primary_key=True)
    service_id = Column(String, ForeignKey("services.id", ondelete="CASCADE"), primary_key=True)
