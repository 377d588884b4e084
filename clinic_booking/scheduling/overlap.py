"""Half-open interval overlap checks against existing appointments.

Two intervals ``[start, end)`` overlap when each starts before the other
ends. Appointments that merely touch at a boundary (one ends at 10:00, the
next starts at 10:00) do not overlap. Cancelled appointments never take part.
"""

from datetime import datetime
from typing import Iterable

from sqlalchemy.orm import Session

from clinic_booking.models.appointment import CANCELLED, Appointment


def intervals_overlap(
    start: datetime,
    end: datetime,
    other_start: datetime,
    other_end: datetime,
) -> bool:
    return start < other_end and end > other_start


def overlaps_any(start: datetime, end: datetime, appointments: Iterable[Appointment]) -> bool:
    return any(
        intervals_overlap(start, end, appointment.start_time, appointment.end_time)
        for appointment in appointments
    )


def active_appointments(db: Session, clinic_id: str):
    """Query of the clinic's appointments that still hold their time."""
    return db.query(Appointment).filter(
        Appointment.clinic_id == clinic_id,
        Appointment.status != CANCELLED,
    )


def find_conflicting_appointment(
    db: Session,
    clinic_id: str,
    start_time: datetime,
    end_time: datetime,
) -> Appointment | None:
    return active_appointments(db, clinic_id).filter(
        Appointment.start_time < end_time,
        Appointment.end_time > start_time,
    ).order_by(Appointment.start_time.asc()).first()
