import os
from datetime import time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from clinic_booking.database import Base  # noqa: E402
from clinic_booking.models.appointment import Appointment, AppointmentService  # noqa: E402,F401
from clinic_booking.models.clinic import Clinic, ClinicSchedule  # noqa: E402
from clinic_booking.models.service import Service  # noqa: E402
from clinic_booking.models.user import User  # noqa: E402,F401

MONDAY = 1
CLINIC_ID = 'clinic-downtown'


def seed_clinic(db, clinic_id: str = CLINIC_ID, with_services: bool = True) -> str:
    db.add(Clinic(id=clinic_id, slug=clinic_id, name='Downtown Clinic', is_active=True))
    db.add(
        ClinicSchedule(
            clinic_id=clinic_id,
            day_of_week=MONDAY,
            open_time=time(9, 0),
            close_time=time(17, 0),
            is_active=True,
        )
    )
    if with_services:
        db.add(Service(id=f'{clinic_id}-exam', clinic_id=clinic_id, name='Evaluation', duration=30, is_upsell=False))
        db.add(Service(id=f'{clinic_id}-addon', clinic_id=clinic_id, name='Express Card', duration=15, is_upsell=True))
    db.commit()
    return clinic_id


@pytest.fixture
def booking_db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def clinic_id(booking_db) -> str:
    return seed_clinic(booking_db)


@pytest.fixture
def make_clinic(booking_db):
    def _make_clinic(clinic_id: str, with_services: bool = True) -> str:
        return seed_clinic(booking_db, clinic_id=clinic_id, with_services=with_services)

    return _make_clinic


@pytest.fixture
def clinic_seeder():
    return seed_clinic
