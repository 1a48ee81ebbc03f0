"""Persistence collaborators used by the scheduling core.

The core only talks to the ``Protocol`` types below. The SQLAlchemy classes
are the implementations wired by ``build_scheduling_service``; each one wraps
the request's ``Session`` and never commits on its own.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Protocol

from sqlalchemy import func, select, text
from sqlalchemy.orm import Session

from medsched.models.appointment import BLOCKING_STATUSES, Appointment
from medsched.models.availability import AvailabilityWindow
from medsched.models.user import User, UserRole

logger = logging.getLogger(__name__)

_BLOCKING_VALUES = [status.value for status in BLOCKING_STATUSES]


class UserDirectory(Protocol):
    def get_user_by_id(self, user_id: int) -> User | None: ...

    def list_doctors(self) -> list[User]: ...


class AppointmentStore(Protocol):
    def get(self, appointment_id: int) -> Appointment | None: ...

    def add(self, appointment: Appointment) -> Appointment: ...

    def save(self, appointment: Appointment) -> Appointment: ...

    def find_blocking(
        self,
        doctor_id: int,
        start: datetime,
        end: datetime,
        exclude_id: int | None = None,
    ) -> list[Appointment]: ...

    def count_blocking_on_date(self, doctor_id: int, day: date, exclude_id: int | None = None) -> int: ...

    def for_doctor(self, doctor_id: int, start: datetime, end: datetime) -> list[Appointment]: ...

    def for_patient(self, patient_id: int, start: datetime, end: datetime) -> list[Appointment]: ...

    def in_range(self, start: datetime, end: datetime) -> list[Appointment]: ...

    def urgent(self) -> list[Appointment]: ...

    def follow_ups(self, appointment_id: int) -> list[Appointment]: ...

    def reload(self, appointment: Appointment) -> Appointment: ...

    def lock_doctor(self, doctor_id: int) -> None: ...


class AvailabilityStore(Protocol):
    def get(self, window_id: int) -> AvailabilityWindow | None: ...

    def add(self, window: AvailabilityWindow) -> AvailabilityWindow: ...

    def save(self, window: AvailabilityWindow) -> AvailabilityWindow: ...

    def delete(self, window: AvailabilityWindow) -> None: ...

    def for_doctor(self, doctor_id: int) -> list[AvailabilityWindow]: ...

    def for_doctor_and_day(self, doctor_id: int, day_of_week: int) -> list[AvailabilityWindow]: ...

    def overrides_covering(self, doctor_id: int, at: datetime) -> list[AvailabilityWindow]: ...

    def overrides_between(self, doctor_id: int, start: datetime, end: datetime) -> list[AvailabilityWindow]: ...


class SqlUserDirectory:
    def __init__(self, db: Session) -> None:
        self._db = db

    def get_user_by_id(self, user_id: int) -> User | None:
        return self._db.get(User, user_id)

    def list_doctors(self) -> list[User]:
        return list(
            self._db.scalars(
                select(User).where(User.role == UserRole.DOCTOR.value).order_by(User.id.asc())
            )
        )


class SqlAppointmentStore:
    def __init__(self, db: Session) -> None:
        self._db = db

    def get(self, appointment_id: int) -> Appointment | None:
        return self._db.get(Appointment, appointment_id)

    def add(self, appointment: Appointment) -> Appointment:
        self._db.add(appointment)
        self._db.flush()
        return appointment

    def save(self, appointment: Appointment) -> Appointment:
        self._db.flush()
        return appointment

    def find_blocking(
        self,
        doctor_id: int,
        start: datetime,
        end: datetime,
        exclude_id: int | None = None,
    ) -> list[Appointment]:
        """Blocking appointments of a doctor overlapping ``[start, end)``."""
        statement = select(Appointment).where(
            Appointment.doctor_id == doctor_id,
            Appointment.status.in_(_BLOCKING_VALUES),
            Appointment.start_time < end,
            Appointment.end_time > start,
        )
        if exclude_id is not None:
            statement = statement.where(Appointment.id != exclude_id)
        return list(self._db.scalars(statement.order_by(Appointment.start_time.asc())))

    def count_blocking_on_date(self, doctor_id: int, day: date, exclude_id: int | None = None) -> int:
        day_start = datetime.combine(day, time.min)
        statement = select(func.count(Appointment.id)).where(
            Appointment.doctor_id == doctor_id,
            Appointment.status.in_(_BLOCKING_VALUES),
            Appointment.start_time >= day_start,
            Appointment.start_time < day_start + timedelta(days=1),
        )
        if exclude_id is not None:
            statement = statement.where(Appointment.id != exclude_id)
        return self._db.scalar(statement) or 0

    def for_doctor(self, doctor_id: int, start: datetime, end: datetime) -> list[Appointment]:
        return self._in_range(start, end, Appointment.doctor_id == doctor_id)

    def for_patient(self, patient_id: int, start: datetime, end: datetime) -> list[Appointment]:
        return self._in_range(start, end, Appointment.patient_id == patient_id)

    def in_range(self, start: datetime, end: datetime) -> list[Appointment]:
        return self._in_range(start, end)

    def urgent(self) -> list[Appointment]:
        return list(
            self._db.scalars(
                select(Appointment)
                .where(Appointment.is_urgent.is_(True), Appointment.status.in_(_BLOCKING_VALUES))
                .order_by(Appointment.start_time.asc(), Appointment.id.asc())
            )
        )

    def follow_ups(self, appointment_id: int) -> list[Appointment]:
        return list(
            self._db.scalars(
                select(Appointment)
                .where(
                    Appointment.is_follow_up.is_(True),
                    Appointment.follow_up_appointment_id == appointment_id,
                )
                .order_by(Appointment.start_time.asc())
            )
        )

    def reload(self, appointment: Appointment) -> Appointment:
        """Re-read the row inside the current transaction, locking it where supported."""
        self._db.refresh(appointment, with_for_update=True)
        return appointment

    def lock_doctor(self, doctor_id: int) -> None:
        # Transaction scoped; released by the commit or rollback that ends the unit of work.
        if self._db.get_bind().dialect.name == 'postgresql':
            logger.debug('Taking advisory lock for doctor %s', doctor_id)
            self._db.execute(text('SELECT pg_advisory_xact_lock(:key)'), {'key': doctor_id})

    def _in_range(self, start: datetime, end: datetime, *criteria) -> list[Appointment]:
        statement = select(Appointment).where(
            Appointment.start_time >= start,
            Appointment.start_time < end,
            *criteria,
        )
        return list(self._db.scalars(statement.order_by(Appointment.start_time.asc(), Appointment.id.asc())))


class SqlAvailabilityStore:
    def __init__(self, db: Session) -> None:
        self._db = db

    def get(self, window_id: int) -> AvailabilityWindow | None:
        return self._db.get(AvailabilityWindow, window_id)

    def add(self, window: AvailabilityWindow) -> AvailabilityWindow:
        self._db.add(window)
        self._db.flush()
        return window

    def save(self, window: AvailabilityWindow) -> AvailabilityWindow:
        self._db.flush()
        return window

    def delete(self, window: AvailabilityWindow) -> None:
        self._db.delete(window)
        self._db.flush()

    def for_doctor(self, doctor_id: int) -> list[AvailabilityWindow]:
        return list(
            self._db.scalars(
                select(AvailabilityWindow)
                .where(AvailabilityWindow.doctor_id == doctor_id)
                .order_by(
                    AvailabilityWindow.day_of_week.asc(),
                    AvailabilityWindow.start_time.asc(),
                    AvailabilityWindow.id.asc(),
                )
            )
        )

    def for_doctor_and_day(self, doctor_id: int, day_of_week: int) -> list[AvailabilityWindow]:
        return list(
            self._db.scalars(
                select(AvailabilityWindow)
                .where(
                    AvailabilityWindow.doctor_id == doctor_id,
                    AvailabilityWindow.day_of_week == day_of_week,
                )
                .order_by(AvailabilityWindow.start_time.asc(), AvailabilityWindow.id.asc())
            )
        )

    def overrides_covering(self, doctor_id: int, at: datetime) -> list[AvailabilityWindow]:
        return list(
            self._db.scalars(
                select(AvailabilityWindow).where(
                    AvailabilityWindow.doctor_id == doctor_id,
                    AvailabilityWindow.blocked_from.is_not(None),
                    AvailabilityWindow.blocked_from <= at,
                    AvailabilityWindow.blocked_until > at,
                )
            )
        )

    def overrides_between(self, doctor_id: int, start: datetime, end: datetime) -> list[AvailabilityWindow]:
        return list(
            self._db.scalars(
                select(AvailabilityWindow)
                .where(
                    AvailabilityWindow.doctor_id == doctor_id,
                    AvailabilityWindow.blocked_from.is_not(None),
                    AvailabilityWindow.blocked_from < end,
                    AvailabilityWindow.blocked_until > start,
                )
                .order_by(AvailabilityWindow.blocked_from.asc())
            )
        )
