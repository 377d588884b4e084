"""Read and write access to schedules and appointments.

Every function takes the caller's ``Session``; none of them commits.
"""

from datetime import date, datetime, time, timedelta
from typing import Iterable

from sqlalchemy.orm import Session

from clinic_booking.models.appointment import Appointment, AppointmentService
from clinic_booking.models.clinic import Clinic, ClinicSchedule
from clinic_booking.scheduling.overlap import active_appointments


def day_bounds(day: date) -> tuple[datetime, datetime]:
    day_start = datetime.combine(day, time.min)
    return day_start, day_start + timedelta(days=1)


def fetch_operating_hours(db: Session, clinic_id: str, day_of_week: int) -> ClinicSchedule | None:
    return db.query(ClinicSchedule).filter(
        ClinicSchedule.clinic_id == clinic_id,
        ClinicSchedule.day_of_week == day_of_week,
        ClinicSchedule.is_active.is_(True),
    ).first()


def fetch_appointments_overlapping_day(db: Session, clinic_id: str, day: date) -> list[Appointment]:
    day_start, day_end = day_bounds(day)

    return active_appointments(db, clinic_id).filter(
        Appointment.start_time < day_end,
        Appointment.end_time > day_start,
    ).order_by(Appointment.start_time.asc()).all()


def lock_clinic(db: Session, clinic_id: str) -> Clinic | None:
    # Row lock on Postgres; SQLite compiles FOR UPDATE away.
    return db.query(Clinic).filter(Clinic.id == clinic_id).with_for_update().first()


def insert_appointment(db: Session, appointment: Appointment, service_ids: Iterable[str] = ()) -> str:
    db.add(appointment)
    db.flush()

    for service_id in dict.fromkeys(service_ids):
        db.add(AppointmentService(appointment_id=appointment.id, service_id=service_id))
    db.flush()

    return appointment.id
