"""Scheduling facade used by the API layer."""

from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from sqlalchemy.orm import Session

from medsched.database import SessionLocal
from medsched.models.appointment import Appointment, AppointmentStatus, AppointmentType
from medsched.models.availability import AvailabilityWindow
from medsched.models.user import User
from medsched.scheduling.audit import AuditSink, DatabaseAuditSink
from medsched.scheduling.calendar import AvailabilityCalendar, AvailabilityStatistics, WindowSettings
from medsched.scheduling.conflicts import ConflictDetector
from medsched.scheduling.context import SchedulingContext
from medsched.scheduling.errors import InvalidRangeError
from medsched.scheduling.intervals import Interval
from medsched.scheduling.lifecycle import AppointmentStateMachine
from medsched.scheduling.stores import SqlAppointmentStore, SqlAvailabilityStore, SqlUserDirectory


@dataclass(frozen=True)
class AppointmentStatistics:
    total_appointments: int
    scheduled_appointments: int
    confirmed_appointments: int
    in_progress_appointments: int
    completed_appointments: int
    cancelled_appointments: int
    no_show_appointments: int
    urgent_appointments: int
    follow_up_appointments: int
    completion_rate: float
    cancellation_rate: float
    no_show_rate: float
    average_duration_minutes: float
    total_appointment_hours: float
    start_date: datetime
    end_date: datetime


def _rate(count: int, total: int) -> float:
    return count / total if total else 0.0


def summarize(appointments: list[Appointment], date_range: Interval) -> AppointmentStatistics:
    by_status = Counter(appointment.status for appointment in appointments)
    total = len(appointments)
    total_minutes = sum(appointment.duration_minutes for appointment in appointments)
    return AppointmentStatistics(
        total_appointments=total,
        scheduled_appointments=by_status[AppointmentStatus.SCHEDULED.value],
        confirmed_appointments=by_status[AppointmentStatus.CONFIRMED.value],
        in_progress_appointments=by_status[AppointmentStatus.IN_PROGRESS.value],
        completed_appointments=by_status[AppointmentStatus.COMPLETED.value],
        cancelled_appointments=by_status[AppointmentStatus.CANCELLED.value],
        no_show_appointments=by_status[AppointmentStatus.NO_SHOW.value],
        urgent_appointments=sum(1 for appointment in appointments if appointment.is_urgent),
        follow_up_appointments=sum(1 for appointment in appointments if appointment.is_follow_up),
        completion_rate=_rate(by_status[AppointmentStatus.COMPLETED.value], total),
        cancellation_rate=_rate(by_status[AppointmentStatus.CANCELLED.value], total),
        no_show_rate=_rate(by_status[AppointmentStatus.NO_SHOW.value], total),
        average_duration_minutes=total_minutes / total if total else 0.0,
        total_appointment_hours=total_minutes / 60,
        start_date=date_range.start,
        end_date=date_range.end,
    )


class SchedulingService:
    def __init__(self, context: SchedulingContext) -> None:
        self.context = context
        self.calendar = AvailabilityCalendar(context)
        self.conflicts = ConflictDetector(context)
        self.appointments = AppointmentStateMachine(context, self.calendar, self.conflicts)

    # Appointments

    def book_appointment(
        self,
        doctor_id: int,
        patient_id: int,
        start: datetime,
        duration_minutes: int,
        appointment_type=AppointmentType.CONSULTATION,
        reason: str | None = None,
        notes: str | None = None,
        is_urgent: bool = False,
        created_by: int | None = None,
        follow_up_of: int | None = None,
    ) -> Appointment:
        return self.appointments.create(
            doctor_id,
            patient_id,
            start,
            duration_minutes,
            appointment_type=appointment_type,
            reason=reason,
            notes=notes,
            is_urgent=is_urgent,
            created_by=created_by,
            follow_up_of=follow_up_of,
        )

    def reschedule_appointment(
        self,
        appointment_id: int,
        new_start: datetime | None = None,
        new_duration_minutes: int | None = None,
        new_doctor_id: int | None = None,
        requester_id: int | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> Appointment:
        return self.appointments.reschedule(
            appointment_id,
            new_start=new_start,
            new_duration_minutes=new_duration_minutes,
            new_doctor_id=new_doctor_id,
            requester_id=requester_id,
            details=details,
        )

    def update_appointment_details(self, appointment_id: int, requester_id: int | None, **fields) -> Appointment:
        return self.appointments.update_details(appointment_id, requester_id, **fields)

    def cancel_appointment(self, appointment_id: int, reason: str | None, requester_id: int | None) -> Appointment:
        return self.appointments.cancel(appointment_id, reason, requester_id)

    def confirm_appointment(self, appointment_id: int, requester_id: int | None) -> Appointment:
        return self.appointments.confirm(appointment_id, requester_id)

    def start_appointment(self, appointment_id: int, requester_id: int | None) -> Appointment:
        return self.appointments.start(appointment_id, requester_id)

    def complete_appointment(self, appointment_id: int, requester_id: int | None) -> Appointment:
        return self.appointments.complete(appointment_id, requester_id)

    def mark_no_show(self, appointment_id: int, requester_id: int | None) -> Appointment:
        return self.appointments.mark_no_show(appointment_id, requester_id)

    def get_appointment(self, appointment_id: int, requester_id: int | None = None) -> Appointment:
        return self.appointments.get(appointment_id, requester_id)

    def get_doctor_schedule(self, doctor_id: int, date_range: Interval) -> list[Appointment]:
        _require_range(date_range)
        return self.context.appointments.for_doctor(doctor_id, date_range.start, date_range.end)

    def get_patient_schedule(self, patient_id: int, date_range: Interval) -> list[Appointment]:
        _require_range(date_range)
        return self.context.appointments.for_patient(patient_id, date_range.start, date_range.end)

    def get_urgent_appointments(self) -> list[Appointment]:
        return self.context.appointments.urgent()

    def get_follow_up_appointments(self, appointment_id: int) -> list[Appointment]:
        return self.context.appointments.follow_ups(appointment_id)

    def compute_statistics(self, date_range: Interval) -> AppointmentStatistics:
        _require_range(date_range)
        return summarize(self.context.appointments.in_range(date_range.start, date_range.end), date_range)

    # Availability

    def set_window(self, settings: WindowSettings, requester_id: int | None = None) -> AvailabilityWindow:
        return self.calendar.set_window(settings, requester_id)

    def update_window(self, window_id: int, patch: Mapping[str, Any], requester_id: int | None) -> AvailabilityWindow:
        return self.calendar.update_window(window_id, patch, requester_id)

    def delete_window(self, window_id: int, requester_id: int | None) -> None:
        self.calendar.delete_window(window_id, requester_id)

    def list_windows(self, doctor_id: int) -> list[AvailabilityWindow]:
        return self.calendar.list_windows(doctor_id)

    def is_available_at(self, doctor_id: int, at: datetime) -> bool:
        return self.calendar.is_bookable_at(doctor_id, at)

    def next_available_slot(self, doctor_id: int, from_: datetime, horizon_days: int | None = None) -> datetime | None:
        return self.calendar.next_available_slot(doctor_id, from_, horizon_days, conflicts=self.conflicts)

    def mark_unavailable(
        self,
        doctor_id: int,
        start: datetime,
        end: datetime,
        reason: str | None,
        requester_id: int | None = None,
    ) -> AvailabilityWindow:
        return self.calendar.mark_unavailable(doctor_id, start, end, reason, requester_id)

    def available_doctors(self, at: datetime) -> list[User]:
        return self.calendar.available_doctors(at)

    def availability_statistics(self, doctor_id: int) -> AvailabilityStatistics:
        return self.calendar.statistics(doctor_id)


def _require_range(date_range: Interval) -> None:
    if date_range.is_empty:
        raise InvalidRangeError('Range start must be before range end.')


def build_scheduling_service(db: Session, audit: AuditSink | None = None, **overrides) -> SchedulingService:
    """Wire the SQLAlchemy stores around one request session."""
    context = SchedulingContext(
        db=db,
        users=SqlUserDirectory(db),
        appointments=SqlAppointmentStore(db),
        availability=SqlAvailabilityStore(db),
        audit=audit if audit is not None else DatabaseAuditSink(SessionLocal),
        **overrides,
    )
    return SchedulingService(context)
