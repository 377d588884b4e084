from datetime import date, datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_booking.database import ensure_appointment_schema, get_db
from clinic_booking.models.appointment import APPOINTMENT_STATUSES, Appointment
from clinic_booking.scheduling.booking import (
    AppointmentNotFound,
    ClinicNotFound,
    InvalidStatusTransition,
    NoBookableService,
    PatronDetails,
    SlotConflict,
    create_appointment,
    create_walk_in,
    list_clinic_appointments,
    resolve_booking_services,
    update_appointment_status,
)
from clinic_booking.scheduling.slots import combine_slot, compute_available_slots, parse_time_slot

router = APIRouter(tags=['availability'])

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'
MAX_PHONE_LENGTH = 32


class AvailableSlotsResponse(BaseModel):
    clinic_id: str
    date: date
    duration_minutes: int
    slots: list[str]


class PatronRequest(BaseModel):
    email: str
    name: str | None = None
    phone: str | None = None

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError('Patron email is required.')
        if '@' not in normalized:
            raise ValueError('Patron email is invalid.')
        return normalized

    @field_validator('name', 'phone')
    @classmethod
    def strip_optional(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class CreateAppointmentRequest(BaseModel):
    clinic_id: str
    date: date
    time_slot: str
    upsell_accepted: bool = False
    patron: PatronRequest
    intake_answers: dict[str, Any] | None = None

    @field_validator('time_slot')
    @classmethod
    def validate_time_slot(cls, value: str) -> str:
        return parse_time_slot(value).strftime('%H:%M')


class CreateWalkInRequest(BaseModel):
    clinic_id: str
    phone: str

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Phone number is required.')
        if len(normalized) > MAX_PHONE_LENGTH:
            raise ValueError(f'Phone number must be {MAX_PHONE_LENGTH} characters or fewer.')
        return normalized


class UpdateAppointmentStatusRequest(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in APPOINTMENT_STATUSES:
            raise ValueError('Invalid appointment status.')
        return normalized


class AppointmentResponse(BaseModel):
    id: str
    clinic_id: str
    user_id: str | None = None
    start_time: datetime
    end_time: datetime
    status: str
    intake_answers: dict[str, Any] | None = None

    class Config:
        from_attributes = True


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def clinic_not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail='Clinic not found.',
    )


@router.get('/slots', response_model=AvailableSlotsResponse)
def get_available_slots(
    clinic_id: str = Query(...),
    day: date = Query(..., alias='date'),
    duration_minutes: int | None = Query(default=None, ge=1),
    upsell_accepted: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        if duration_minutes is None:
            duration_minutes = resolve_booking_services(db, clinic_id, upsell_accepted).duration_minutes

        slots = compute_available_slots(db, clinic_id, day, duration_minutes)

        return AvailableSlotsResponse(
            clinic_id=clinic_id,
            date=day,
            duration_minutes=duration_minutes,
            slots=slots,
        )
    except ClinicNotFound as exc:
        raise clinic_not_found() from exc
    except NoBookableService as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='This clinic has no bookable service.',
        ) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/appointments', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def book_appointment(data: CreateAppointmentRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        booking_services = resolve_booking_services(db, data.clinic_id, data.upsell_accepted)
        result = create_appointment(
            db,
            data.clinic_id,
            combine_slot(data.date, data.time_slot),
            booking_services.duration_minutes,
            patron=PatronDetails(email=data.patron.email, name=data.patron.name, phone=data.patron.phone),
            service_ids=booking_services.service_ids,
            intake_answers=data.intake_answers,
        )

        if isinstance(result, SlotConflict):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=result.message,
            )

        return db.get(Appointment, result.appointment_id)
    except ClinicNotFound as exc:
        raise clinic_not_found() from exc
    except NoBookableService as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='This clinic has no bookable service.',
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/appointments', response_model=list[AppointmentResponse])
def list_appointments(
    clinic_id: str = Query(...),
    day: date = Query(..., alias='date'),
    include_cancelled: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return list_clinic_appointments(db, clinic_id, day, include_cancelled=include_cancelled)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/walk-ins', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def start_walk_in(data: CreateWalkInRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        result = create_walk_in(db, data.clinic_id, data.phone, now=datetime.now())

        if isinstance(result, SlotConflict):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='The clinic is busy right now.',
            )

        return db.get(Appointment, result.appointment_id)
    except ClinicNotFound as exc:
        raise clinic_not_found() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.patch('/appointments/{appointment_id}/status', response_model=AppointmentResponse)
def change_appointment_status(
    appointment_id: str,
    data: UpdateAppointmentStatusRequest,
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return update_appointment_status(db, appointment_id, data.status)
    except AppointmentNotFound as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Appointment not found.',
        ) from exc
    except InvalidStatusTransition as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
