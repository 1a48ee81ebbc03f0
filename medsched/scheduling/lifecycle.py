"""Appointment lifecycle.

    SCHEDULED -> CONFIRMED -> IN_PROGRESS -> COMPLETED
    SCHEDULED | CONFIRMED -> CANCELLED
    CONFIRMED -> NO_SHOW

Every other move raises ``InvalidTransitionError``. Appointments are never
deleted; cancelling is a status change.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Mapping

from medsched.models.appointment import (
    BLOCKING_STATUSES,
    Appointment,
    AppointmentStatus,
    AppointmentType,
)
from medsched.models.user import User, UserRole
from medsched.scheduling.access import ensure_appointment_access, require_user
from medsched.scheduling.calendar import AvailabilityCalendar
from medsched.scheduling.conflicts import ConflictDetector
from medsched.scheduling.context import SchedulingContext
from medsched.scheduling.errors import (
    DoctorUnavailableError,
    InvalidRangeError,
    InvalidTransitionError,
    NotFoundError,
    SchedulingConflictError,
)
from medsched.scheduling.intervals import truncate_to_minute

logger = logging.getLogger(__name__)

# action -> (legal source statuses, target status)
TRANSITIONS: dict[str, tuple[frozenset, AppointmentStatus]] = {
    'confirm': (frozenset({AppointmentStatus.SCHEDULED}), AppointmentStatus.CONFIRMED),
    'start': (frozenset({AppointmentStatus.CONFIRMED}), AppointmentStatus.IN_PROGRESS),
    'complete': (frozenset({AppointmentStatus.IN_PROGRESS}), AppointmentStatus.COMPLETED),
    'cancel': (BLOCKING_STATUSES, AppointmentStatus.CANCELLED),
    'no_show': (frozenset({AppointmentStatus.CONFIRMED}), AppointmentStatus.NO_SHOW),
}

DETAIL_FIELDS = frozenset({'appointment_type', 'reason', 'notes', 'is_urgent'})

AUDIT_ACTIONS = {
    'confirm': 'APPOINTMENT_CONFIRMED',
    'start': 'APPOINTMENT_STARTED',
    'complete': 'APPOINTMENT_COMPLETED',
    'cancel': 'APPOINTMENT_CANCELLED',
    'no_show': 'APPOINTMENT_NO_SHOW',
}


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return any(target == goal and current in sources for sources, goal in TRANSITIONS.values())


def coerce_appointment_type(value) -> AppointmentType:
    if isinstance(value, AppointmentType):
        return value
    if value is None:
        return AppointmentType.CONSULTATION
    return AppointmentType(str(value).strip().upper())


class AppointmentStateMachine:
    def __init__(
        self,
        context: SchedulingContext,
        calendar: AvailabilityCalendar,
        conflicts: ConflictDetector,
    ) -> None:
        self.context = context
        self.calendar = calendar
        self.conflicts = conflicts

    def create(
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
        logger.info('Creating appointment for patient: %s with doctor: %s at: %s', patient_id, doctor_id, start)

        doctor = require_user(self.context.users, doctor_id, UserRole.DOCTOR)
        patient = require_user(self.context.users, patient_id, UserRole.PATIENT)
        start = truncate_to_minute(start)
        self._require_future(start)
        if duration_minutes is None or duration_minutes <= 0:
            raise InvalidRangeError('Valid appointment duration is required.')
        appointment_type = coerce_appointment_type(appointment_type)
        if follow_up_of is not None:
            self._get(follow_up_of)

        now = self.context.now()
        with self.context.unit_of_work(doctor.id):
            self._ensure_bookable(doctor, start)
            self._ensure_no_conflict(doctor.id, start, duration_minutes)
            appointment = self.context.appointments.add(
                Appointment(
                    doctor_id=doctor.id,
                    patient_id=patient.id,
                    start_time=start,
                    end_time=start + timedelta(minutes=duration_minutes),
                    duration_minutes=duration_minutes,
                    status=AppointmentStatus.SCHEDULED.value,
                    appointment_type=appointment_type.value,
                    reason=reason,
                    notes=notes,
                    is_urgent=bool(is_urgent),
                    is_follow_up=follow_up_of is not None,
                    follow_up_appointment_id=follow_up_of,
                    created_by=created_by,
                    created_at=now,
                    updated_at=now,
                )
            )

        self.context.audit_event(
            'APPOINTMENT_CREATED',
            created_by or patient.id,
            'APPOINTMENT',
            appointment.id,
            f'Appointment created with doctor: {doctor.email}',
        )
        logger.info('Appointment created successfully with ID: %s', appointment.id)
        return appointment

    def reschedule(
        self,
        appointment_id: int,
        new_start: datetime | None = None,
        new_duration_minutes: int | None = None,
        new_doctor_id: int | None = None,
        requester_id: int | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> Appointment:
        """Move or resize an appointment, optionally editing its details in the same transaction."""
        logger.info('Rescheduling appointment ID: %s by user: %s', appointment_id, requester_id)

        appointment = self._get(appointment_id)
        details = self._clean_details(details or {})
        target_doctor_id = new_doctor_id if new_doctor_id is not None else appointment.doctor_id
        locked_doctor_ids = (appointment.doctor_id, target_doctor_id)

        with self.context.unit_of_work(*locked_doctor_ids):
            appointment = self._reload(appointment, locked_doctor_ids)
            if not appointment.is_blocking:
                raise InvalidTransitionError(appointment.current_status, action='rescheduled')
            ensure_appointment_access(self.context.users, appointment, requester_id)

            target_start = truncate_to_minute(new_start) if new_start is not None else appointment.start_time
            target_duration = (
                new_duration_minutes if new_duration_minutes is not None else appointment.duration_minutes
            )
            if target_duration <= 0:
                raise InvalidRangeError('Valid appointment duration is required.')

            moved = target_doctor_id != appointment.doctor_id or target_start != appointment.start_time
            resized = target_duration != appointment.duration_minutes
            if not moved and not resized and not details:
                logger.info('Appointment %s unchanged; nothing to reschedule', appointment_id)
                return appointment

            previous = f'{appointment.doctor_id}@{appointment.start_time:%Y-%m-%d %H:%M}'
            if moved:
                doctor = require_user(self.context.users, target_doctor_id, UserRole.DOCTOR)
                self._require_future(target_start)
                self._ensure_bookable(doctor, target_start, exclude_id=appointment.id)
            if moved or resized:
                # Also runs on a duration-only change.
                self._ensure_no_conflict(target_doctor_id, target_start, target_duration, exclude_id=appointment.id)
                appointment.doctor_id = target_doctor_id
                appointment.start_time = target_start
                appointment.duration_minutes = target_duration
                appointment.end_time = target_start + timedelta(minutes=target_duration)
            self._apply_details(appointment, details)
            appointment.updated_at = self.context.now()
            self.context.appointments.save(appointment)

        if moved or resized:
            self.context.audit_event(
                'APPOINTMENT_UPDATED',
                requester_id,
                'APPOINTMENT',
                appointment.id,
                f'Appointment moved from {previous} to {target_doctor_id}@{target_start:%Y-%m-%d %H:%M} '
                f'({target_duration} min) by user: {requester_id}',
            )
        if details:
            self._audit_details(appointment, requester_id)
        logger.info('Appointment rescheduled successfully ID: %s', appointment_id)
        return appointment

    def update_details(
        self,
        appointment_id: int,
        requester_id: int | None,
        appointment_type=None,
        reason: str | None = None,
        notes: str | None = None,
        is_urgent: bool | None = None,
    ) -> Appointment:
        appointment = self._get(appointment_id)
        details = self._clean_details(
            {'appointment_type': appointment_type, 'reason': reason, 'notes': notes, 'is_urgent': is_urgent}
        )

        with self.context.unit_of_work(appointment.doctor_id):
            appointment = self._reload(appointment, (appointment.doctor_id,))
            ensure_appointment_access(self.context.users, appointment, requester_id)
            self._apply_details(appointment, details)
            appointment.updated_at = self.context.now()
            self.context.appointments.save(appointment)

        self._audit_details(appointment, requester_id)
        return appointment

    def cancel(self, appointment_id: int, reason: str | None, requester_id: int | None) -> Appointment:
        def record_cancellation(appointment: Appointment, now: datetime) -> None:
            appointment.cancellation_reason = reason
            appointment.cancelled_by = requester_id
            appointment.cancelled_at = now

        return self._transition(
            appointment_id,
            'cancel',
            requester_id,
            detail=f'Appointment cancelled. Reason: {reason}',
            apply=record_cancellation,
        )

    def confirm(self, appointment_id: int, requester_id: int | None) -> Appointment:
        return self._transition(appointment_id, 'confirm', requester_id)

    def start(self, appointment_id: int, requester_id: int | None) -> Appointment:
        return self._transition(appointment_id, 'start', requester_id)

    def complete(self, appointment_id: int, requester_id: int | None) -> Appointment:
        return self._transition(appointment_id, 'complete', requester_id)

    def mark_no_show(self, appointment_id: int, requester_id: int | None) -> Appointment:
        return self._transition(appointment_id, 'no_show', requester_id)

    def get(self, appointment_id: int, requester_id: int | None = None) -> Appointment:
        appointment = self._get(appointment_id)
        if requester_id is not None:
            ensure_appointment_access(self.context.users, appointment, requester_id)
        return appointment

    def _transition(self, appointment_id, action, requester_id, detail=None, apply=None) -> Appointment:
        logger.info('Applying %s to appointment ID: %s by user: %s', action, appointment_id, requester_id)

        appointment = self._get(appointment_id)
        sources, target = TRANSITIONS[action]

        with self.context.unit_of_work(appointment.doctor_id):
            appointment = self._reload(appointment, (appointment.doctor_id,))
            current = appointment.current_status
            if current not in sources:
                logger.warning('Rejected %s for appointment %s in status %s', action, appointment_id, current.value)
                raise InvalidTransitionError(current, target)
            ensure_appointment_access(self.context.users, appointment, requester_id)

            now = self.context.now()
            appointment.status = target.value
            appointment.updated_at = now
            if apply is not None:
                apply(appointment, now)
            self.context.appointments.save(appointment)

        self.context.audit_event(
            AUDIT_ACTIONS[action],
            requester_id,
            'APPOINTMENT',
            appointment.id,
            detail or f'Appointment {target.value.lower()} by user: {requester_id}',
        )
        logger.info('Appointment %s moved to %s', appointment_id, target.value)
        return appointment

    def _get(self, appointment_id: int) -> Appointment:
        appointment = self.context.appointments.get(appointment_id)
        if appointment is None:
            raise NotFoundError(f'Appointment not found with ID: {appointment_id}')
        return appointment

    def _reload(self, appointment: Appointment, locked_doctor_ids) -> Appointment:
        """Re-read ``appointment`` once its doctor's lock is held."""
        appointment = self.context.appointments.reload(appointment)
        if appointment.doctor_id not in locked_doctor_ids:
            logger.warning(
                'Appointment %s moved to doctor %s while waiting for a lock', appointment.id, appointment.doctor_id
            )
            raise SchedulingConflictError('Appointment was changed by another request. Please try again.')
        return appointment

    @staticmethod
    def _clean_details(details: Mapping[str, Any]) -> dict[str, Any]:
        unknown = set(details) - DETAIL_FIELDS
        if unknown:
            raise InvalidRangeError(f'Unknown appointment fields: {", ".join(sorted(unknown))}')
        cleaned = {name: value for name, value in details.items() if value is not None}
        if 'appointment_type' in cleaned:
            cleaned['appointment_type'] = coerce_appointment_type(cleaned['appointment_type']).value
        return cleaned

    @staticmethod
    def _apply_details(appointment: Appointment, details: Mapping[str, Any]) -> None:
        for name, value in details.items():
            setattr(appointment, name, value)

    def _audit_details(self, appointment: Appointment, requester_id: int | None) -> None:
        self.context.audit_event(
            'APPOINTMENT_UPDATED',
            requester_id,
            'APPOINTMENT',
            appointment.id,
            f'Appointment details updated by user: {requester_id}',
        )

    def _require_future(self, start: datetime) -> None:
        if start <= self.context.now():
            raise ValueError('Appointment start must be in the future.')

    def _ensure_bookable(self, doctor: User, start: datetime, exclude_id: int | None = None) -> None:
        if not doctor.is_active or not doctor.is_available:
            raise DoctorUnavailableError('Doctor is not available.')
        if not self.calendar.is_available_at(doctor.id, start.weekday(), start.time()):
            logger.warning('Doctor %s has no availability at %s', doctor.id, start)
            raise DoctorUnavailableError('Doctor is not available at the specified time.')
        if self.calendar.is_blocked_at(doctor.id, start):
            logger.warning('Doctor %s is marked unavailable at %s', doctor.id, start)
            raise DoctorUnavailableError('Doctor is marked unavailable at the specified time.')

        window = self.calendar.window_for(doctor.id, start)
        cap = window.max_appointments_per_day if window is not None else None
        if cap is not None:
            booked = self.context.appointments.count_blocking_on_date(doctor.id, start.date(), exclude_id)
            if booked >= cap:
                raise DoctorUnavailableError(f'Doctor already has {booked} appointments on {start.date()}.')

    def _ensure_no_conflict(
        self,
        doctor_id: int,
        start: datetime,
        duration_minutes: int,
        exclude_id: int | None = None,
    ) -> None:
        end = start + timedelta(minutes=duration_minutes)
        clashes = self.conflicts.conflicting(doctor_id, start, end, exclude_id)
        if clashes:
            ids = ', '.join(str(appointment.id) for appointment in clashes)
            logger.warning('Appointment for doctor %s at %s conflicts with %s', doctor_id, start, ids)
            raise SchedulingConflictError(f'Appointment conflicts with existing appointment(s): {ids}.')
