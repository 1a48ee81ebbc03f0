"""Doctor availability calendar.

A doctor is bookable at a point in time when one of their active weekly
windows for that weekday contains it, the point is outside the window's break
and no unavailability override covers it.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Mapping

from medsched.core import config
from medsched.models.availability import AvailabilityWindow
from medsched.models.user import User, UserRole
from medsched.scheduling.access import ensure_window_access, require_user
from medsched.scheduling.context import SchedulingContext
from medsched.scheduling.errors import InvalidRangeError, NotFoundError, OverlapError
from medsched.scheduling.intervals import Interval, contains, overlaps, subtract, truncate_to_minute

logger = logging.getLogger(__name__)

DAY_NAMES = ('MONDAY', 'TUESDAY', 'WEDNESDAY', 'THURSDAY', 'FRIDAY', 'SATURDAY', 'SUNDAY')

EDITABLE_WINDOW_FIELDS = frozenset(
    {
        'day_of_week',
        'start_time',
        'end_time',
        'is_active',
        'slot_duration_minutes',
        'max_appointments_per_day',
        'break_start',
        'break_end',
        'notes',
    }
)


@dataclass(frozen=True)
class WindowSettings:
    doctor_id: int
    day_of_week: int
    start_time: time
    end_time: time
    is_active: bool = True
    slot_duration_minutes: int = config.DEFAULT_SLOT_DURATION_MINUTES
    max_appointments_per_day: int | None = config.DEFAULT_MAX_APPOINTMENTS_PER_DAY
    break_start: time | None = None
    break_end: time | None = None
    notes: str | None = None


@dataclass(frozen=True)
class AvailabilityStatistics:
    total_windows: int
    active_windows: int
    inactive_windows: int
    override_count: int


def window_interval(window) -> Interval:
    return Interval(window.start_time, window.end_time)


def break_interval(window) -> Interval | None:
    if window.break_start is None or window.break_end is None:
        return None
    return Interval(window.break_start, window.break_end)


def bookable_intervals(window) -> list[Interval]:
    """The window with its break cut out."""
    return subtract(window_interval(window), break_interval(window))


def accepts(window, at: time) -> bool:
    return any(piece.contains_point(at) for piece in bookable_intervals(window))


def validate_window(window) -> None:
    """Check a single window; ``window`` is a WindowSettings or a stored row."""
    if window.day_of_week is None or not 0 <= window.day_of_week <= 6:
        raise InvalidRangeError('Day of week must be between 0 (Monday) and 6 (Sunday).')
    if window.start_time is None or window.end_time is None:
        raise InvalidRangeError('Start time and end time are required.')
    if not window.start_time < window.end_time:
        raise InvalidRangeError('Start time must be before end time.')

    if (window.break_start is None) != (window.break_end is None):
        raise InvalidRangeError('A break needs both a start and an end time.')
    brk = break_interval(window)
    if brk is not None:
        if not brk.start < brk.end:
            raise InvalidRangeError('Break start must be before break end.')
        if not contains(window_interval(window), brk):
            raise InvalidRangeError('Break must lie within the availability window.')

    slot = window.slot_duration_minutes
    if slot is None or not config.MIN_SLOT_DURATION_MINUTES <= slot <= config.MAX_SLOT_DURATION_MINUTES:
        raise InvalidRangeError(
            f'Slot duration must be between {config.MIN_SLOT_DURATION_MINUTES} '
            f'and {config.MAX_SLOT_DURATION_MINUTES} minutes.'
        )
    cap = window.max_appointments_per_day
    if cap is not None and not 0 <= cap <= config.MAX_APPOINTMENTS_PER_DAY_LIMIT:
        raise InvalidRangeError(
            f'Max appointments per day must be between 0 and {config.MAX_APPOINTMENTS_PER_DAY_LIMIT}.'
        )


class AvailabilityCalendar:
    def __init__(self, context: SchedulingContext) -> None:
        self.context = context

    def set_window(self, settings: WindowSettings, requester_id: int | None = None) -> AvailabilityWindow:
        logger.info(
            'Setting availability for doctor %s on %s from %s to %s',
            settings.doctor_id,
            _day_name(settings.day_of_week),
            settings.start_time,
            settings.end_time,
        )
        validate_window(settings)
        doctor = require_user(self.context.users, settings.doctor_id, UserRole.DOCTOR)
        if requester_id is not None:
            ensure_window_access(self.context.users, doctor.id, requester_id)

        now = self.context.now()
        with self.context.unit_of_work(doctor.id):
            self._ensure_no_overlap(settings)
            window = self.context.availability.add(
                AvailabilityWindow(
                    doctor_id=settings.doctor_id,
                    day_of_week=settings.day_of_week,
                    start_time=settings.start_time,
                    end_time=settings.end_time,
                    is_active=settings.is_active,
                    slot_duration_minutes=settings.slot_duration_minutes,
                    max_appointments_per_day=settings.max_appointments_per_day,
                    break_start=settings.break_start,
                    break_end=settings.break_end,
                    notes=settings.notes,
                    created_by=requester_id,
                    created_at=now,
                    updated_at=now,
                )
            )

        self.context.audit_event(
            'AVAILABILITY_SET',
            requester_id or doctor.id,
            'AVAILABILITY',
            window.id,
            f'Availability set for {_day_name(window.day_of_week)} {window.start_time}-{window.end_time}',
        )
        logger.info('Availability set successfully with ID: %s', window.id)
        return window

    def update_window(
        self,
        window_id: int,
        patch: Mapping[str, Any],
        requester_id: int | None,
    ) -> AvailabilityWindow:
        logger.info('Updating availability ID: %s by user: %s', window_id, requester_id)
        unknown = set(patch) - EDITABLE_WINDOW_FIELDS
        if unknown:
            raise InvalidRangeError(f'Unknown availability fields: {", ".join(sorted(unknown))}')

        window = self._get_regular_window(window_id)
        ensure_window_access(self.context.users, window.doctor_id, requester_id)

        candidate = WindowSettings(
            doctor_id=window.doctor_id,
            day_of_week=patch.get('day_of_week', window.day_of_week),
            start_time=patch.get('start_time', window.start_time),
            end_time=patch.get('end_time', window.end_time),
            is_active=patch.get('is_active', window.is_active),
            slot_duration_minutes=patch.get('slot_duration_minutes', window.slot_duration_minutes),
            max_appointments_per_day=patch.get('max_appointments_per_day', window.max_appointments_per_day),
            break_start=patch.get('break_start', window.break_start),
            break_end=patch.get('break_end', window.break_end),
            notes=patch.get('notes', window.notes),
        )
        validate_window(candidate)

        with self.context.unit_of_work(window.doctor_id):
            self._ensure_no_overlap(candidate, exclude_id=window.id)
            for name in EDITABLE_WINDOW_FIELDS:
                setattr(window, name, getattr(candidate, name))
            window.updated_at = self.context.now()
            self.context.availability.save(window)

        self.context.audit_event(
            'AVAILABILITY_UPDATED',
            requester_id,
            'AVAILABILITY',
            window.id,
            f'Availability updated for {_day_name(window.day_of_week)}',
        )
        logger.info('Availability updated successfully ID: %s', window_id)
        return window

    def delete_window(self, window_id: int, requester_id: int | None) -> None:
        logger.info('Deleting availability ID: %s by user: %s', window_id, requester_id)
        window = self.context.availability.get(window_id)
        if window is None:
            raise NotFoundError(f'Availability not found with ID: {window_id}')
        ensure_window_access(self.context.users, window.doctor_id, requester_id)

        day_name = _day_name(window.day_of_week)
        with self.context.unit_of_work(window.doctor_id):
            self.context.availability.delete(window)

        self.context.audit_event(
            'AVAILABILITY_DELETED',
            requester_id,
            'AVAILABILITY',
            window_id,
            f'Availability deleted for {day_name}',
        )
        logger.info('Availability deleted successfully ID: %s', window_id)

    def mark_unavailable(
        self,
        doctor_id: int,
        start: datetime,
        end: datetime,
        reason: str | None,
        requester_id: int | None = None,
    ) -> AvailabilityWindow:
        """Block a concrete datetime range, e.g. a vacation.

        Appointments already booked inside the range are left untouched; the
        caller reconciles them.
        """
        logger.info('Setting doctor %s as unavailable from %s to %s', doctor_id, start, end)
        start, end = truncate_to_minute(start), truncate_to_minute(end)
        if not start < end:
            raise InvalidRangeError('Unavailability start must be before its end.')
        doctor = require_user(self.context.users, doctor_id, UserRole.DOCTOR)
        if requester_id is not None:
            ensure_window_access(self.context.users, doctor.id, requester_id)

        now = self.context.now()
        with self.context.unit_of_work(doctor.id):
            override = self.context.availability.add(
                AvailabilityWindow(
                    doctor_id=doctor.id,
                    day_of_week=start.weekday(),
                    start_time=start.time(),
                    end_time=end.time(),
                    is_active=False,
                    slot_duration_minutes=config.DEFAULT_SLOT_DURATION_MINUTES,
                    max_appointments_per_day=None,
                    notes=f'Temporary unavailability: {reason or "unspecified"}',
                    blocked_from=start,
                    blocked_until=end,
                    created_by=requester_id,
                    created_at=now,
                    updated_at=now,
                )
            )

        self.context.audit_event(
            'DOCTOR_UNAVAILABLE',
            requester_id or doctor.id,
            'AVAILABILITY',
            override.id,
            f'Doctor set as unavailable: {reason or "unspecified"}',
        )
        logger.info('Doctor %s set as unavailable with override ID: %s', doctor.id, override.id)
        return override

    def get_window(self, window_id: int) -> AvailabilityWindow:
        window = self.context.availability.get(window_id)
        if window is None:
            raise NotFoundError(f'Availability not found with ID: {window_id}')
        return window

    def list_windows(self, doctor_id: int) -> list[AvailabilityWindow]:
        return self.context.availability.for_doctor(doctor_id)

    def active_windows(self, doctor_id: int, day_of_week: int) -> list[AvailabilityWindow]:
        """Active regular windows of one weekday, by start time then id."""
        windows = [
            window
            for window in self.context.availability.for_doctor_and_day(doctor_id, day_of_week)
            if window.is_active and not window.is_override
        ]
        return sorted(windows, key=lambda window: (window.start_time, window.id))

    def is_available_at(self, doctor_id: int, day_of_week: int, at: time) -> bool:
        at = at.replace(second=0, microsecond=0)
        return any(accepts(window, at) for window in self.active_windows(doctor_id, day_of_week))

    def window_for(self, doctor_id: int, at: datetime) -> AvailabilityWindow | None:
        at = truncate_to_minute(at)
        for window in self.active_windows(doctor_id, at.weekday()):
            if accepts(window, at.time()):
                return window
        return None

    def is_blocked_at(self, doctor_id: int, at: datetime) -> bool:
        return bool(self.context.availability.overrides_covering(doctor_id, truncate_to_minute(at)))

    def is_bookable_at(self, doctor_id: int, at: datetime) -> bool:
        at = truncate_to_minute(at)
        return self.is_available_at(doctor_id, at.weekday(), at.time()) and not self.is_blocked_at(doctor_id, at)

    def next_available_slot(
        self,
        doctor_id: int,
        from_: datetime,
        horizon_days: int | None = None,
        conflicts=None,
    ) -> datetime | None:
        """Earliest bookable window start strictly after ``from_`` within the horizon.

        Greedy scan, day by day, windows in ``(start_time, id)`` order. A window
        whose break opens it starts where the break ends. Candidates inside an
        override or on a day whose appointment cap is reached are skipped, and so
        are slots already taken when ``conflicts`` is given.
        """
        horizon_days = self.context.horizon_days if horizon_days is None else horizon_days
        first_day = from_.date()
        scan_end = datetime.combine(first_day + timedelta(days=horizon_days), time.min)
        overrides = [
            Interval(override.blocked_from, override.blocked_until)
            for override in self.context.availability.overrides_between(doctor_id, from_, scan_end)
        ]

        windows_by_day: dict[int, list[AvailabilityWindow]] = {}
        for day_offset in range(horizon_days):
            day = first_day + timedelta(days=day_offset)
            weekday = day.weekday()
            if weekday not in windows_by_day:
                windows_by_day[weekday] = self.active_windows(doctor_id, weekday)

            for window in windows_by_day[weekday]:
                pieces = bookable_intervals(window)
                if not pieces:
                    continue
                candidate = datetime.combine(day, pieces[0].start)
                if candidate <= from_:
                    continue
                if any(block.contains_point(candidate) for block in overrides):
                    continue
                if self._cap_reached(doctor_id, window, day):
                    continue
                if conflicts is not None:
                    slot_end = candidate + timedelta(minutes=window.slot_duration_minutes)
                    if conflicts.has_conflict(doctor_id, candidate, slot_end):
                        continue
                return candidate

        return None

    def available_doctors(self, at: datetime) -> list[User]:
        return [
            doctor
            for doctor in self.context.users.list_doctors()
            if doctor.is_active and doctor.is_available and self.is_bookable_at(doctor.id, at)
        ]

    def statistics(self, doctor_id: int) -> AvailabilityStatistics:
        windows = self.context.availability.for_doctor(doctor_id)
        regular = [window for window in windows if not window.is_override]
        active = sum(1 for window in regular if window.is_active)
        return AvailabilityStatistics(
            total_windows=len(regular),
            active_windows=active,
            inactive_windows=len(regular) - active,
            override_count=len(windows) - len(regular),
        )

    def _cap_reached(self, doctor_id: int, window: AvailabilityWindow, day: date) -> bool:
        cap = window.max_appointments_per_day
        if cap is None:
            return False
        return self.context.appointments.count_blocking_on_date(doctor_id, day) >= cap

    def _get_regular_window(self, window_id: int) -> AvailabilityWindow:
        window = self.context.availability.get(window_id)
        if window is None or window.is_override:
            raise NotFoundError(f'Availability not found with ID: {window_id}')
        return window

    def _ensure_no_overlap(self, candidate: WindowSettings, exclude_id: int | None = None) -> None:
        # An inactive window claims no time; it is re-checked if it is ever reactivated.
        if not candidate.is_active:
            return

        proposed = window_interval(candidate)
        for existing in self.active_windows(candidate.doctor_id, candidate.day_of_week):
            if exclude_id is not None and existing.id == exclude_id:
                continue
            if overlaps(proposed, window_interval(existing)):
                logger.warning(
                    'Availability for doctor %s on %s overlaps window %s',
                    candidate.doctor_id,
                    _day_name(candidate.day_of_week),
                    existing.id,
                )
                raise OverlapError(
                    f'Availability overlaps with existing window {existing.id} '
                    f'({existing.start_time}-{existing.end_time}).'
                )


def _day_name(day_of_week: int | None) -> str:
    if day_of_week is None or not 0 <= day_of_week <= 6:
        return str(day_of_week)
    return DAY_NAMES[day_of_week]
