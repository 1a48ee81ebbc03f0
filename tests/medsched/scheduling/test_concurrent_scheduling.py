import threading
from contextlib import contextmanager
from datetime import datetime, time
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from medsched.database import Base
from medsched.models.appointment import Appointment, AppointmentStatus
from medsched.models.audit_log import AuditLog
from medsched.models.availability import AvailabilityWindow
from medsched.models.user import User, UserRole
from medsched.scheduling.context import SchedulingContext
from medsched.scheduling.errors import InvalidTransitionError, SchedulingConflictError
from medsched.scheduling.locks import DoctorLocks
from medsched.scheduling.service import SchedulingService
from medsched.scheduling.stores import SqlAppointmentStore, SqlAvailabilityStore, SqlUserDirectory

FIXED_NOW = datetime(2030, 1, 7, 8, 0)
SLOT = datetime(2030, 1, 14, 10, 0)


class InterleavedLocks(DoctorLocks):
    """Runs ``before_acquire`` once, right before the first lock is taken."""

    def __init__(self, before_acquire) -> None:
        super().__init__()
        self._before_acquire = before_acquire

    @contextmanager
    def hold(self, *doctor_ids: int):
        callback, self._before_acquire = self._before_acquire, None
        if callback is not None:
            callback()
        with super().hold(*doctor_ids):
            yield


def build_service(db, locks: DoctorLocks) -> SchedulingService:
    return SchedulingService(
        SchedulingContext(
            db=db,
            users=SqlUserDirectory(db),
            appointments=SqlAppointmentStore(db),
            availability=SqlAvailabilityStore(db),
            locks=locks,
            clock=lambda: FIXED_NOW,
        )
    )


@pytest.fixture()
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'scheduling.db'}",
        connect_args={'check_same_thread': False},
    )
    Base.metadata.create_all(
        bind=engine,
        tables=[User.__table__, AvailabilityWindow.__table__, Appointment.__table__, AuditLog.__table__],
    )
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        engine.dispose()


@pytest.fixture()
def clinic(session_factory):
    db = session_factory()
    try:
        doctor = User(email='house@medsched.test', role=UserRole.DOCTOR.value)
        patient = User(email='patient@medsched.test', role=UserRole.PATIENT.value)
        other_patient = User(email='other.patient@medsched.test', role=UserRole.PATIENT.value)
        db.add_all([doctor, patient, other_patient])
        db.flush()
        db.add(
            AvailabilityWindow(
                doctor_id=doctor.id,
                day_of_week=0,
                start_time=time(9, 0),
                end_time=time(17, 0),
                created_at=FIXED_NOW,
                updated_at=FIXED_NOW,
            )
        )
        db.commit()
        return SimpleNamespace(doctor=doctor.id, patient=patient.id, other_patient=other_patient.id)
    finally:
        db.close()


@pytest.fixture()
def booked_id(session_factory, clinic) -> int:
    db = session_factory()
    try:
        appointment = build_service(db, DoctorLocks()).book_appointment(clinic.doctor, clinic.patient, SLOT, 30)
        return appointment.id
    finally:
        db.close()


def test_parallel_bookings_of_one_slot_leave_a_single_appointment(session_factory, clinic) -> None:
    locks = DoctorLocks()
    start_together = threading.Barrier(2)
    outcomes = {}

    def book(patient_id: int) -> None:
        db = session_factory()
        try:
            service = build_service(db, locks)
            start_together.wait()
            try:
                outcomes[patient_id] = service.book_appointment(clinic.doctor, patient_id, SLOT, 30).id
            except SchedulingConflictError as exc:
                outcomes[patient_id] = exc
        finally:
            db.close()

    workers = [
        threading.Thread(target=book, args=(patient_id,)) for patient_id in (clinic.patient, clinic.other_patient)
    ]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join(timeout=30)

    booked = [outcome for outcome in outcomes.values() if isinstance(outcome, int)]
    rejected = [outcome for outcome in outcomes.values() if isinstance(outcome, SchedulingConflictError)]
    assert len(booked) == 1
    assert len(rejected) == 1

    db = session_factory()
    try:
        assert db.scalar(select(func.count(Appointment.id)).where(Appointment.doctor_id == clinic.doctor)) == 1
    finally:
        db.close()


@pytest.mark.parametrize(
    'act',
    [
        lambda service, appointment_id, requester: service.confirm_appointment(appointment_id, requester),
        lambda service, appointment_id, requester: service.reschedule_appointment(
            appointment_id, new_start=SLOT.replace(hour=14), requester_id=requester
        ),
    ],
    ids=['confirm', 'reschedule'],
)
def test_cancellation_committed_while_waiting_for_the_lock_wins(session_factory, clinic, booked_id, act) -> None:
    cancelling_db = session_factory()
    waiting_db = session_factory()
    try:
        canceller = build_service(cancelling_db, DoctorLocks())
        waiter = build_service(
            waiting_db,
            InterleavedLocks(lambda: canceller.cancel_appointment(booked_id, 'Patient request', clinic.patient)),
        )

        with pytest.raises(InvalidTransitionError) as exception_info:
            act(waiter, booked_id, clinic.patient)

        assert exception_info.value.current is AppointmentStatus.CANCELLED
    finally:
        cancelling_db.close()
        waiting_db.close()

    db = session_factory()
    try:
        appointment = db.get(Appointment, booked_id)
        assert appointment.status == AppointmentStatus.CANCELLED.value
        assert appointment.start_time == SLOT
        assert appointment.cancellation_reason == 'Patient request'
    finally:
        db.close()
