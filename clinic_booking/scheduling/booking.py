"""Conflict-checked appointment creation and appointment lifecycle."""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from threading import Lock
from typing import Any, Iterable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_booking.database import APPOINTMENT_OVERLAP_CONSTRAINT
from clinic_booking.models.appointment import (
    BOOKED,
    CANCELLED,
    COMPLETED,
    RESERVED,
    WALKIN,
    Appointment,
)
from clinic_booking.models.clinic import Clinic
from clinic_booking.models.service import Service
from clinic_booking.models.user import User
from clinic_booking.scheduling.overlap import active_appointments, find_conflicting_appointment
from clinic_booking.scheduling.stores import day_bounds, insert_appointment, lock_clinic

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_DURATION_MINUTES = 30
DEFAULT_UPSELL_DURATION_MINUTES = 15
WALK_IN_DURATION_MINUTES = 30
WALK_IN_INTAKE_TYPE = 'walkin_call_ahead'
# One retry when a concurrent request inserts the same patron first.
BOOKING_ATTEMPTS = 2

BOOKABLE_STATUSES = (RESERVED, BOOKED, WALKIN)
ALLOWED_STATUS_TRANSITIONS = {
    RESERVED: {BOOKED, CANCELLED},
    BOOKED: {COMPLETED, CANCELLED},
    WALKIN: {COMPLETED, CANCELLED},
    COMPLETED: set(),
    CANCELLED: set(),
}


class BookingError(Exception):
    """Base exception for booking operations."""


class ClinicNotFound(BookingError):
    """Raised when a booking targets a clinic that does not exist."""


class AppointmentNotFound(BookingError):
    """Raised when an appointment cannot be located."""


class InvalidStatusTransition(BookingError):
    """Raised when a status change is not allowed from the current status."""


class NoBookableService(BookingError):
    """Raised when a clinic has no base service to book."""


@dataclass(frozen=True)
class PatronDetails:
    email: str
    name: str | None = None
    phone: str | None = None


@dataclass(frozen=True)
class BookingServices:
    service_ids: list[str]
    duration_minutes: int


@dataclass(frozen=True)
class BookingConfirmed:
    appointment_id: str
    start_time: datetime
    end_time: datetime


@dataclass(frozen=True)
class SlotConflict:
    clinic_id: str
    start_time: datetime
    end_time: datetime
    conflicting_appointment_id: str | None = None
    message: str = 'Slot already taken'


BookingResult = BookingConfirmed | SlotConflict

_clinic_locks: dict[str, Lock] = {}
_clinic_locks_guard = Lock()


def clinic_booking_lock(clinic_id: str) -> Lock:
    with _clinic_locks_guard:
        return _clinic_locks.setdefault(clinic_id, Lock())


def _is_overlap_violation(exc: IntegrityError) -> bool:
    return APPOINTMENT_OVERLAP_CONSTRAINT in str(exc.orig)


def _is_patron_email_violation(exc: IntegrityError) -> bool:
    # SQLite names the column, PostgreSQL names the unique index.
    message = str(exc.orig)
    return 'users.email' in message or 'ix_users_email' in message


def upsert_patron(db: Session, patron: PatronDetails) -> User:
    email = patron.email.strip().lower()
    if not email:
        raise ValueError('Patron email is required.')

    user = db.query(User).filter(User.email == email).first()
    if user is None:
        user = User(email=email, name=patron.name, phone=patron.phone)
        db.add(user)
    else:
        user.name = patron.name
        user.phone = patron.phone

    db.flush()
    return user


def resolve_booking_services(db: Session, clinic_id: str, upsell_accepted: bool = False) -> BookingServices:
    services = db.query(Service).filter(
        Service.clinic_id == clinic_id,
    ).order_by(Service.name.asc(), Service.id.asc()).all()

    base_service = next((service for service in services if not service.is_upsell), None)
    upsell_service = next((service for service in services if service.is_upsell), None)

    if base_service is None:
        if db.get(Clinic, clinic_id) is None:
            raise ClinicNotFound(f'Clinic {clinic_id} not found.')
        raise NoBookableService(f'Clinic {clinic_id} has no bookable service.')

    service_ids = [base_service.id]
    duration_minutes = base_service.duration or DEFAULT_SERVICE_DURATION_MINUTES

    if upsell_accepted and upsell_service is not None:
        service_ids.append(upsell_service.id)
        duration_minutes += upsell_service.duration or DEFAULT_UPSELL_DURATION_MINUTES

    return BookingServices(service_ids=service_ids, duration_minutes=duration_minutes)


def create_appointment(
    db: Session,
    clinic_id: str,
    start_time: datetime,
    duration_minutes: int,
    patron: PatronDetails | None = None,
    service_ids: Iterable[str] = (),
    intake_answers: dict[str, Any] | None = None,
    status: str = BOOKED,
) -> BookingResult:
    """Book ``[start_time, start_time + duration)`` unless it overlaps.

    The overlap check and the insert run under a per-clinic lock and inside
    one transaction that also row-locks the clinic. On conflict nothing is
    written and a ``SlotConflict`` is returned. Database failures are rolled
    back and re-raised. If another request creates the same patron between
    our lookup and our insert, the booking is retried once with that patron.
    """
    if duration_minutes <= 0:
        raise ValueError('Appointment duration must be a positive number of minutes.')
    if status not in BOOKABLE_STATUSES:
        raise ValueError(f'Cannot create an appointment with status {status!r}.')
    if start_time.tzinfo is not None:
        raise ValueError('Appointment times are clinic-local and must not carry a timezone.')
    if patron is not None and not patron.email.strip():
        raise ValueError('Patron email is required.')
    if db.get(Clinic, clinic_id) is None:
        raise ClinicNotFound(f'Clinic {clinic_id} not found.')

    end_time = start_time + timedelta(minutes=duration_minutes)
    service_ids = list(service_ids)

    with clinic_booking_lock(clinic_id):
        for attempt in range(1, BOOKING_ATTEMPTS + 1):
            try:
                result = _check_and_insert(
                    db, clinic_id, start_time, end_time, status, patron, service_ids, intake_answers,
                )
                break
            except IntegrityError as exc:
                db.rollback()
                if _is_overlap_violation(exc):
                    logger.info('Slot conflict for clinic %s at %s-%s (constraint)', clinic_id, start_time, end_time)
                    return SlotConflict(clinic_id=clinic_id, start_time=start_time, end_time=end_time)
                if _is_patron_email_violation(exc) and attempt < BOOKING_ATTEMPTS:
                    logger.info('Patron %s was created concurrently; retrying booking', patron.email if patron else None)
                    continue
                raise
            except SQLAlchemyError:
                db.rollback()
                raise

    if isinstance(result, BookingConfirmed):
        logger.info('Booked appointment %s for clinic %s at %s-%s', result.appointment_id, clinic_id, start_time, end_time)
    return result


def _check_and_insert(
    db: Session,
    clinic_id: str,
    start_time: datetime,
    end_time: datetime,
    status: str,
    patron: PatronDetails | None,
    service_ids: Iterable[str],
    intake_answers: dict[str, Any] | None,
) -> BookingResult:
    lock_clinic(db, clinic_id)

    existing = find_conflicting_appointment(db, clinic_id, start_time, end_time)
    if existing is not None:
        conflicting_id = existing.id
        db.rollback()
        logger.info(
            'Slot conflict for clinic %s at %s-%s (held by %s)',
            clinic_id, start_time, end_time, conflicting_id,
        )
        return SlotConflict(
            clinic_id=clinic_id,
            start_time=start_time,
            end_time=end_time,
            conflicting_appointment_id=conflicting_id,
        )

    user_id = upsert_patron(db, patron).id if patron is not None else None
    appointment_id = insert_appointment(
        db,
        Appointment(
            clinic_id=clinic_id,
            user_id=user_id,
            start_time=start_time,
            end_time=end_time,
            status=status,
            intake_answers=intake_answers,
        ),
        service_ids,
    )
    db.commit()
    return BookingConfirmed(appointment_id=appointment_id, start_time=start_time, end_time=end_time)


def create_walk_in(db: Session, clinic_id: str, phone: str, now: datetime | None = None) -> BookingResult:
    start_time = (now or datetime.now()).replace(second=0, microsecond=0)

    return create_appointment(
        db,
        clinic_id,
        start_time,
        WALK_IN_DURATION_MINUTES,
        intake_answers={'phone': phone, 'type': WALK_IN_INTAKE_TYPE},
        status=WALKIN,
    )


def update_appointment_status(db: Session, appointment_id: str, new_status: str) -> Appointment:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if appointment is None:
        raise AppointmentNotFound(f'Appointment {appointment_id} not found.')

    current_status = appointment.status or BOOKED
    if new_status not in ALLOWED_STATUS_TRANSITIONS.get(current_status, set()):
        raise InvalidStatusTransition(f'Cannot change appointment from {current_status} to {new_status}.')

    try:
        appointment.status = new_status
        db.commit()
        db.refresh(appointment)
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info('Appointment %s moved from %s to %s', appointment_id, current_status, new_status)
    return appointment


def list_clinic_appointments(
    db: Session,
    clinic_id: str,
    day: date,
    include_cancelled: bool = False,
) -> list[Appointment]:
    day_start, day_end = day_bounds(day)

    if include_cancelled:
        query = db.query(Appointment).filter(Appointment.clinic_id == clinic_id)
    else:
        query = active_appointments(db, clinic_id)

    return query.filter(
        Appointment.start_time < day_end,
        Appointment.end_time > day_start,
    ).order_by(Appointment.start_time.asc()).all()
