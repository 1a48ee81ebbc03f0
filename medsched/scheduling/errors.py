"""Errors raised by the scheduling core.

Every error carries an ``ErrorKind`` so callers map failures to responses by
kind instead of by message text.
"""

from enum import Enum


class ErrorKind(str, Enum):
    UNKNOWN_USER = 'unknown_user'
    INACTIVE_USER = 'inactive_user'
    INVALID_RANGE = 'invalid_range'
    OVERLAP = 'overlap'
    DOCTOR_UNAVAILABLE = 'doctor_unavailable'
    SCHEDULING_CONFLICT = 'scheduling_conflict'
    INVALID_TRANSITION = 'invalid_transition'
    ACCESS_DENIED = 'access_denied'
    NOT_FOUND = 'not_found'


class SchedulingError(Exception):
    kind: ErrorKind

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnknownUserError(SchedulingError):
    kind = ErrorKind.UNKNOWN_USER


class InactiveUserError(SchedulingError):
    kind = ErrorKind.INACTIVE_USER


class InvalidRangeError(SchedulingError):
    kind = ErrorKind.INVALID_RANGE


class OverlapError(SchedulingError):
    kind = ErrorKind.OVERLAP


class DoctorUnavailableError(SchedulingError):
    kind = ErrorKind.DOCTOR_UNAVAILABLE


class SchedulingConflictError(SchedulingError):
    kind = ErrorKind.SCHEDULING_CONFLICT


class AccessDeniedError(SchedulingError):
    kind = ErrorKind.ACCESS_DENIED


class NotFoundError(SchedulingError):
    kind = ErrorKind.NOT_FOUND


class InvalidTransitionError(SchedulingError):
    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, current, target=None, action: str | None = None):
        self.current = current
        self.target = target
        if target is not None:
            message = f'Appointment cannot move from {_status_name(current)} to {_status_name(target)}.'
        else:
            message = f'Appointment cannot be {action or "changed"} in current status: {_status_name(current)}.'
        super().__init__(message)


def _status_name(status) -> str:
    return getattr(status, 'value', str(status))
