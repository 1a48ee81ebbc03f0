"""User resolution and the access rule shared by every mutation."""

import logging

from medsched.models.appointment import Appointment
from medsched.models.user import User, UserRole
from medsched.scheduling.errors import AccessDeniedError, InactiveUserError, UnknownUserError
from medsched.scheduling.stores import UserDirectory

logger = logging.getLogger(__name__)


def require_user(users: UserDirectory, user_id: int | None, role: UserRole | None = None) -> User:
    label = role.value.capitalize() if role else 'User'
    user = users.get_user_by_id(user_id) if user_id is not None else None
    if user is None or (role is not None and not user.has_role(role)):
        raise UnknownUserError(f'{label} not found: {user_id}')
    if not user.is_active:
        raise InactiveUserError(f'{label} is not active: {user_id}')
    return user


def resolve_requester(users: UserDirectory, requester_id: int | None) -> User:
    requester = users.get_user_by_id(requester_id) if requester_id is not None else None
    if requester is None:
        raise UnknownUserError(f'User not found: {requester_id}')
    return requester


def ensure_appointment_access(users: UserDirectory, appointment: Appointment, requester_id: int | None) -> User:
    """Admins, the appointment's doctor and its patient may act on it."""
    requester = resolve_requester(users, requester_id)
    if requester.has_role(UserRole.ADMIN):
        return requester
    if requester.has_role(UserRole.DOCTOR) and appointment.doctor_id == requester.id:
        return requester
    if requester.has_role(UserRole.PATIENT) and appointment.patient_id == requester.id:
        return requester

    logger.warning('User %s denied access to appointment %s', requester_id, appointment.id)
    raise AccessDeniedError('User does not have permission to access this appointment.')


def ensure_window_access(users: UserDirectory, doctor_id: int, requester_id: int | None) -> User:
    """Admins and the owning doctor may manage a doctor's availability."""
    requester = resolve_requester(users, requester_id)
    if requester.has_role(UserRole.ADMIN):
        return requester
    if requester.has_role(UserRole.DOCTOR) and requester.id == doctor_id:
        return requester

    logger.warning('User %s denied access to availability of doctor %s', requester_id, doctor_id)
    raise AccessDeniedError('User does not have permission to access this availability.')
