import os
from datetime import datetime, time
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from medsched.database import Base  # noqa: E402
from medsched.models.appointment import Appointment  # noqa: E402
from medsched.models.audit_log import AuditLog  # noqa: E402
from medsched.models.availability import AvailabilityWindow  # noqa: E402
from medsched.models.user import User, UserRole  # noqa: E402
from medsched.routes import appointment_routes, availability_routes  # noqa: E402
from medsched.scheduling.calendar import WindowSettings  # noqa: E402
from medsched.scheduling.context import SchedulingContext  # noqa: E402
from medsched.scheduling.locks import DoctorLocks  # noqa: E402
from medsched.scheduling.service import SchedulingService, build_scheduling_service  # noqa: E402
from medsched.scheduling.stores import (  # noqa: E402
    SqlAppointmentStore,
    SqlAvailabilityStore,
    SqlUserDirectory,
)

# Monday 2030-01-07 08:00; the following Monday is 2030-01-14.
FIXED_NOW = datetime(2030, 1, 7, 8, 0)
MONDAY = 0


class RecordingAuditSink:
    def __init__(self) -> None:
        self.events: list[tuple] = []

    def record(self, action, actor_id, resource_type, resource_id, detail) -> None:
        self.events.append((action, actor_id, resource_type, resource_id, detail))

    @property
    def actions(self) -> list[str]:
        return [event[0] for event in self.events]


@pytest.fixture()
def scheduling_db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(
        bind=engine,
        tables=[
            User.__table__,
            AvailabilityWindow.__table__,
            Appointment.__table__,
            AuditLog.__table__,
        ],
    )

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


@pytest.fixture()
def people(scheduling_db):
    def add_user(email: str, role: UserRole, is_active: bool = True, is_available: bool = True) -> User:
        account = User(email=email, role=role.value, is_active=is_active, is_available=is_available)
        scheduling_db.add(account)
        return account

    admin = add_user('admin@medsched.test', UserRole.ADMIN)
    doctor = add_user('house@medsched.test', UserRole.DOCTOR)
    other_doctor = add_user('wilson@medsched.test', UserRole.DOCTOR)
    patient = add_user('patient@medsched.test', UserRole.PATIENT)
    other_patient = add_user('other.patient@medsched.test', UserRole.PATIENT)
    inactive_doctor = add_user('retired@medsched.test', UserRole.DOCTOR, is_active=False)
    unavailable_doctor = add_user('away@medsched.test', UserRole.DOCTOR, is_available=False)
    scheduling_db.commit()

    return SimpleNamespace(
        admin=admin.id,
        doctor=doctor.id,
        other_doctor=other_doctor.id,
        patient=patient.id,
        other_patient=other_patient.id,
        inactive_doctor=inactive_doctor.id,
        unavailable_doctor=unavailable_doctor.id,
    )


@pytest.fixture()
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture()
def scheduling_context(scheduling_db, people, audit_sink) -> SchedulingContext:
    return SchedulingContext(
        db=scheduling_db,
        users=SqlUserDirectory(scheduling_db),
        appointments=SqlAppointmentStore(scheduling_db),
        availability=SqlAvailabilityStore(scheduling_db),
        audit=audit_sink,
        locks=DoctorLocks(),
        clock=lambda: FIXED_NOW,
        horizon_days=30,
    )


@pytest.fixture()
def service(scheduling_context) -> SchedulingService:
    return SchedulingService(scheduling_context)


@pytest.fixture()
def add_window(service):
    def _add_window(doctor_id: int, day_of_week: int, start: time, end: time, **fields) -> AvailabilityWindow:
        return service.set_window(WindowSettings(doctor_id, day_of_week, start, end, **fields))

    return _add_window


@pytest.fixture()
def monday_clinic(people, add_window) -> AvailabilityWindow:
    """Mon 09:00-17:00 with a lunch break, 30 minute slots."""
    return add_window(
        people.doctor,
        MONDAY,
        time(9, 0),
        time(17, 0),
        break_start=time(12, 0),
        break_end=time(13, 0),
        slot_duration_minutes=30,
    )


@pytest.fixture()
def api(monkeypatch, scheduling_db, people, audit_sink):
    """Route modules wired to the in-memory database."""

    def build_service(db):
        return build_scheduling_service(db, audit=audit_sink, locks=DoctorLocks())

    for module in (appointment_routes, availability_routes):
        monkeypatch.setattr(module, 'build_scheduling_service', build_service)
        monkeypatch.setattr(module, 'ensure_database_ready', lambda: None)

    return SimpleNamespace(db=scheduling_db, user=lambda user_id: scheduling_db.get(User, user_id))
