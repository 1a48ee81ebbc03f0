import random
from datetime import datetime, timedelta

import pytest

from medsched.models.appointment import Appointment, AppointmentStatus
from medsched.scheduling.conflicts import ConflictDetector
from medsched.scheduling.intervals import Interval, overlaps

DAY_START = datetime(2030, 1, 14, 8, 0)


def store_appointment(context, doctor_id, patient_id, start, minutes, status=AppointmentStatus.SCHEDULED):
    appointment = context.appointments.add(
        Appointment(
            doctor_id=doctor_id,
            patient_id=patient_id,
            start_time=start,
            end_time=start + timedelta(minutes=minutes),
            duration_minutes=minutes,
            status=status.value,
            created_at=DAY_START,
            updated_at=DAY_START,
        )
    )
    context.db.commit()
    return appointment


@pytest.fixture()
def detector(scheduling_context) -> ConflictDetector:
    return ConflictDetector(scheduling_context)


def test_overlapping_booking_conflicts(detector, scheduling_context, people) -> None:
    booked = store_appointment(scheduling_context, people.doctor, people.patient, DAY_START.replace(hour=10), 30)

    clashes = detector.conflicting(people.doctor, DAY_START.replace(hour=10, minute=15), DAY_START.replace(hour=10, minute=45))

    assert [appointment.id for appointment in clashes] == [booked.id]
    assert detector.has_conflict(people.doctor, DAY_START.replace(hour=9, minute=45), DAY_START.replace(hour=10, minute=15))


def test_back_to_back_bookings_do_not_conflict(detector, scheduling_context, people) -> None:
    store_appointment(scheduling_context, people.doctor, people.patient, DAY_START.replace(hour=10), 30)

    assert not detector.has_conflict(people.doctor, DAY_START.replace(hour=10, minute=30), DAY_START.replace(hour=11))
    assert not detector.has_conflict(people.doctor, DAY_START.replace(hour=9, minute=30), DAY_START.replace(hour=10))


def test_long_booking_is_found_from_its_tail(detector, scheduling_context, people) -> None:
    store_appointment(scheduling_context, people.doctor, people.patient, DAY_START, 480)

    assert detector.has_conflict(people.doctor, DAY_START.replace(hour=15, minute=30), DAY_START.replace(hour=16, minute=30))


@pytest.mark.parametrize(
    'status',
    [
        AppointmentStatus.CANCELLED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.NO_SHOW,
        AppointmentStatus.IN_PROGRESS,
    ],
)
def test_non_blocking_statuses_never_conflict(detector, scheduling_context, people, status) -> None:
    store_appointment(scheduling_context, people.doctor, people.patient, DAY_START.replace(hour=10), 30, status)

    assert not detector.has_conflict(people.doctor, DAY_START.replace(hour=10), DAY_START.replace(hour=10, minute=30))


def test_confirmed_bookings_conflict(detector, scheduling_context, people) -> None:
    store_appointment(
        scheduling_context, people.doctor, people.patient, DAY_START.replace(hour=10), 30, AppointmentStatus.CONFIRMED
    )

    assert detector.has_conflict(people.doctor, DAY_START.replace(hour=10), DAY_START.replace(hour=10, minute=30))


def test_excluded_appointment_and_other_doctors_are_ignored(detector, scheduling_context, people) -> None:
    booked = store_appointment(scheduling_context, people.doctor, people.patient, DAY_START.replace(hour=10), 30)
    start, end = DAY_START.replace(hour=10), DAY_START.replace(hour=10, minute=30)

    assert not detector.has_conflict(people.doctor, start, end, exclude_appointment_id=booked.id)
    assert not detector.has_conflict(people.other_doctor, start, end)


def test_random_bookings_match_pairwise_overlap(detector, scheduling_context, people) -> None:
    rng = random.Random(486)
    booked: list[Interval] = []

    for _ in range(60):
        start = DAY_START + timedelta(minutes=15 * rng.randrange(0, 40))
        candidate = Interval.from_duration(start, rng.choice([15, 30, 45, 60, 90]))

        expected = any(overlaps(candidate, existing) for existing in booked)
        assert detector.has_conflict(people.doctor, candidate.start, candidate.end) is expected

        if not expected:
            minutes = int((candidate.end - candidate.start).total_seconds() // 60)
            store_appointment(scheduling_context, people.doctor, people.patient, candidate.start, minutes)
            booked.append(candidate)

    for index, first in enumerate(booked):
        for second in booked[index + 1:]:
            assert not overlaps(first, second)
