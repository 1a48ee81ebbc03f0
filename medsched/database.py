from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from medsched.core import config


engine = create_engine(config.DATABASE_URL, echo=config.DATABASE_ECHO)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

BLOCKING_STATUSES_SQL = "('SCHEDULED', 'CONFIRMED')"
DOUBLE_BOOKING_CONSTRAINT = 'appointments_no_double_booking'

_schema_lock = Lock()
_availability_schema_checked = False
_appointment_schema_checked = False


def ensure_availability_schema() -> None:
    global _availability_schema_checked

    if _availability_schema_checked:
        return

    with _schema_lock:
        if _availability_schema_checked:
            return

        inspector = inspect(engine)

        if 'availability_windows' not in inspector.get_table_names():
            _availability_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('availability_windows')}
        migration_steps = [
            ('break_start', 'ALTER TABLE availability_windows ADD COLUMN break_start TIME'),
            ('break_end', 'ALTER TABLE availability_windows ADD COLUMN break_end TIME'),
            ('blocked_from', 'ALTER TABLE availability_windows ADD COLUMN blocked_from TIMESTAMP'),
            ('blocked_until', 'ALTER TABLE availability_windows ADD COLUMN blocked_until TIMESTAMP'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_availability_doctor_day '
                    'ON availability_windows(doctor_id, day_of_week, start_time)'
                )
            )
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_availability_doctor_blocked '
                    'ON availability_windows(doctor_id, blocked_from, blocked_until)'
                )
            )

        _availability_schema_checked = True


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('end_time', 'ALTER TABLE appointments ADD COLUMN end_time TIMESTAMP'),
            ('is_follow_up', 'ALTER TABLE appointments ADD COLUMN is_follow_up BOOLEAN DEFAULT FALSE'),
            ('follow_up_appointment_id', 'ALTER TABLE appointments ADD COLUMN follow_up_appointment_id INTEGER'),
            ('created_by', 'ALTER TABLE appointments ADD COLUMN created_by INTEGER'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_doctor_start ON appointments(doctor_id, start_time)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_patient_start ON appointments(patient_id, start_time)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_status_start ON appointments(status, start_time)')
            )
            if engine.dialect.name == 'postgresql':
                ensure_double_booking_constraint(connection)

        _appointment_schema_checked = True


def ensure_double_booking_constraint(connection) -> None:
    """Install the range-overlap exclusion constraint on PostgreSQL.

    Two blocking appointments of the same doctor can never both commit,
    whatever the isolation level of the transactions that inserted them.
    """
    exists = connection.execute(
        text('SELECT 1 FROM pg_constraint WHERE conname = :name'),
        {'name': DOUBLE_BOOKING_CONSTRAINT},
    ).first()
    if exists:
        return

    connection.execute(text('CREATE EXTENSION IF NOT EXISTS btree_gist'))
    connection.execute(
        text(
            f'ALTER TABLE appointments ADD CONSTRAINT {DOUBLE_BOOKING_CONSTRAINT} '
            "EXCLUDE USING gist (doctor_id WITH =, tsrange(start_time, end_time, '[)') WITH &&) "
            f'WHERE (status IN {BLOCKING_STATUSES_SQL})'
        )
    )


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
