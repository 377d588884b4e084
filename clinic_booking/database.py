import logging
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from clinic_booking.core import config


logger = logging.getLogger(__name__)

APPOINTMENT_OVERLAP_CONSTRAINT = 'appointments_no_overlap'


def build_engine(database_url: str) -> Engine:
    connect_args = {}
    if database_url.startswith('sqlite'):
        # FastAPI runs sync routes in a threadpool
        connect_args['check_same_thread'] = False

    return create_engine(
        database_url,
        pool_pre_ping=config.DB_POOL_PRE_PING,
        connect_args=connect_args,
    )


engine = build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_appointment_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_appointment_schema(bind: Engine | None = None) -> None:
    """Bring an existing ``appointments`` table up to date.

    Adds columns introduced after the table was first created, the lookup
    indexes used by the availability queries, and, on PostgreSQL, the
    exclusion constraint that forbids overlapping non-cancelled appointments
    within a clinic.
    """
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    bind = bind or engine

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(bind)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('intake_answers', 'ALTER TABLE appointments ADD COLUMN intake_answers JSON'),
            ('status', "ALTER TABLE appointments ADD COLUMN status VARCHAR DEFAULT 'booked'"),
        ]

        with bind.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_clinic_time_range '
                    'ON appointments(clinic_id, start_time, end_time)'
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_clinic_status ON appointments(clinic_id, status)')
            )

        if supports_overlap_constraint(bind):
            install_overlap_constraint(bind)

        _appointment_schema_checked = True


def supports_overlap_constraint(bind: Engine) -> bool:
    return bind.dialect.name == 'postgresql'


def install_overlap_constraint(bind: Engine) -> bool:
    """Install the exclusion constraint in its own transaction.

    Missing extension privileges or legacy overlapping rows leave the table
    without the constraint; bookings still serialize on the clinic row lock.
    """
    try:
        with bind.begin() as connection:
            _ensure_overlap_constraint(connection)
    except SQLAlchemyError:
        logger.exception('Could not install %s exclusion constraint', APPOINTMENT_OVERLAP_CONSTRAINT)
        return False
    return True


def _ensure_overlap_constraint(connection) -> None:
    exists = connection.execute(
        text('SELECT 1 FROM pg_constraint WHERE conname = :name'),
        {'name': APPOINTMENT_OVERLAP_CONSTRAINT},
    ).first()
    if exists:
        return

    connection.execute(text('CREATE EXTENSION IF NOT EXISTS btree_gist'))
    connection.execute(
        text(
            f'ALTER TABLE appointments ADD CONSTRAINT {APPOINTMENT_OVERLAP_CONSTRAINT} '
            "EXCLUDE USING gist (clinic_id WITH =, tsrange(start_time, end_time, '[)') WITH &&) "
            "WHERE (status <> 'cancelled')"
        )
    )
    logger.info('Installed %s exclusion constraint', APPOINTMENT_OVERLAP_CONSTRAINT)
