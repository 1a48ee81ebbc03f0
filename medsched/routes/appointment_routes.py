from dataclasses import asdict
from datetime import datetime, time, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from medsched.auth.dependencies import get_current_user
from medsched.core import config
from medsched.database import get_db
from medsched.models.appointment import AppointmentType
from medsched.models.user import User, UserRole
from medsched.routes.errors import ensure_database_ready, scheduling_errors
from medsched.scheduling.intervals import Interval
from medsched.scheduling.service import build_scheduling_service

router = APIRouter(tags=['appointments'])

DEFAULT_SCHEDULE_RANGE_DAYS = 30


def _validate_duration(value: int | None) -> int | None:
    if value is None:
        return None
    if not config.MIN_APPOINTMENT_MINUTES <= value <= config.MAX_APPOINTMENT_MINUTES:
        raise ValueError(
            f'Duration must be between {config.MIN_APPOINTMENT_MINUTES} '
            f'and {config.MAX_APPOINTMENT_MINUTES} minutes.'
        )
    return value


def _validate_future(value: datetime | None) -> datetime | None:
    if value is not None and value <= datetime.now():
        raise ValueError('Appointment time must be in the future.')
    return value


def _validate_appointment_type(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().upper()
    if normalized not in AppointmentType.__members__:
        raise ValueError('Invalid appointment type.')
    return normalized


def _normalize_text(value: str | None, max_length: int, label: str) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > max_length:
        raise ValueError(f'{label} must be {max_length} characters or fewer.')

    return normalized


class CreateAppointmentRequest(BaseModel):
    doctor_id: int
    patient_id: int | None = None
    start_time: datetime
    duration_minutes: int = 30
    appointment_type: str = AppointmentType.CONSULTATION.value
    reason: str | None = None
    notes: str | None = None
    is_urgent: bool = False
    follow_up_of: int | None = None

    @field_validator('start_time')
    @classmethod
    def validate_start_time(cls, value: datetime) -> datetime:
        return _validate_future(value)

    @field_validator('duration_minutes')
    @classmethod
    def validate_duration(cls, value: int) -> int:
        return _validate_duration(value)

    @field_validator('appointment_type')
    @classmethod
    def validate_appointment_type(cls, value: str) -> str:
        return _validate_appointment_type(value)

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_text(value, config.MAX_REASON_LENGTH, 'Reason')

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_text(value, config.MAX_APPOINTMENT_NOTES_LENGTH, 'Notes')


class UpdateAppointmentRequest(BaseModel):
    start_time: datetime | None = None
    duration_minutes: int | None = None
    doctor_id: int | None = None
    appointment_type: str | None = None
    reason: str | None = None
    notes: str | None = None
    is_urgent: bool | None = None

    @field_validator('start_time')
    @classmethod
    def validate_start_time(cls, value: datetime | None) -> datetime | None:
        return _validate_future(value)

    @field_validator('duration_minutes')
    @classmethod
    def validate_duration(cls, value: int | None) -> int | None:
        return _validate_duration(value)

    @field_validator('appointment_type')
    @classmethod
    def validate_appointment_type(cls, value: str | None) -> str | None:
        return _validate_appointment_type(value)

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_text(value, config.MAX_REASON_LENGTH, 'Reason')

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_text(value, config.MAX_APPOINTMENT_NOTES_LENGTH, 'Notes')

    @property
    def moves_appointment(self) -> bool:
        return any(value is not None for value in (self.start_time, self.duration_minutes, self.doctor_id))

    @property
    def changes_details(self) -> bool:
        return bool(self.details())

    def details(self) -> dict:
        fields = {
            'appointment_type': self.appointment_type,
            'reason': self.reason,
            'notes': self.notes,
            'is_urgent': self.is_urgent,
        }
        return {name: value for name, value in fields.items() if value is not None}


class CancelAppointmentRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_text(value, config.MAX_REASON_LENGTH, 'Reason')


class AppointmentResponse(BaseModel):
    id: int
    doctor_id: int
    patient_id: int
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    status: str
    appointment_type: str
    reason: str | None = None
    notes: str | None = None
    is_urgent: bool
    is_follow_up: bool
    follow_up_appointment_id: int | None = None
    cancellation_reason: str | None = None
    cancelled_by: int | None = None
    cancelled_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AppointmentStatisticsResponse(BaseModel):
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


def resolve_date_range(start: datetime | None, end: datetime | None) -> Interval:
    range_start = start or datetime.combine(datetime.now().date(), time.min)
    range_end = end or range_start + timedelta(days=DEFAULT_SCHEDULE_RANGE_DAYS)
    return Interval(range_start, range_end)


def resolve_patient_id(data: CreateAppointmentRequest, current_user: User) -> int:
    if current_user.has_role(UserRole.PATIENT):
        if data.patient_id not in (None, current_user.id):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Patients can only book appointments for themselves.',
            )
        return current_user.id

    if data.patient_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Patient is required.',
        )

    if current_user.has_role(UserRole.DOCTOR) and data.doctor_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Doctors can only book appointments on their own schedule.',
        )

    return data.patient_id


def require_self_or_admin(current_user: User, user_id: int) -> None:
    if current_user.has_role(UserRole.ADMIN) or current_user.id == user_id:
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail='You do not have permission to view this schedule.',
    )


def require_staff(current_user: User) -> None:
    if current_user.has_role(UserRole.ADMIN) or current_user.has_role(UserRole.DOCTOR):
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail='Only doctors and admins can access this resource.',
    )


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    patient_id = resolve_patient_id(data, current_user)
    ensure_database_ready()

    with scheduling_errors(db):
        service = build_scheduling_service(db)
        return service.book_appointment(
            data.doctor_id,
            patient_id,
            data.start_time,
            data.duration_minutes,
            appointment_type=data.appointment_type,
            reason=data.reason,
            notes=data.notes,
            is_urgent=data.is_urgent,
            created_by=current_user.id,
            follow_up_of=data.follow_up_of,
        )


@router.get('/urgent', response_model=list[AppointmentResponse])
def list_urgent_appointments(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_staff(current_user)
    ensure_database_ready()

    with scheduling_errors(db):
        return build_scheduling_service(db).get_urgent_appointments()


@router.get('/statistics', response_model=AppointmentStatisticsResponse)
def get_appointment_statistics(
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_staff(current_user)
    ensure_database_ready()

    with scheduling_errors(db):
        statistics = build_scheduling_service(db).compute_statistics(resolve_date_range(start, end))

    return AppointmentStatisticsResponse(**asdict(statistics))


@router.get('/doctor/{doctor_id}', response_model=list[AppointmentResponse])
def list_doctor_appointments(
    doctor_id: int,
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_self_or_admin(current_user, doctor_id)
    ensure_database_ready()

    with scheduling_errors(db):
        return build_scheduling_service(db).get_doctor_schedule(doctor_id, resolve_date_range(start, end))


@router.get('/patient/{patient_id}', response_model=list[AppointmentResponse])
def list_patient_appointments(
    patient_id: int,
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_self_or_admin(current_user, patient_id)
    ensure_database_ready()

    with scheduling_errors(db):
        return build_scheduling_service(db).get_patient_schedule(patient_id, resolve_date_range(start, end))


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with scheduling_errors(db):
        return build_scheduling_service(db).get_appointment(appointment_id, requester_id=current_user.id)


@router.get('/{appointment_id}/follow-ups', response_model=list[AppointmentResponse])
def list_follow_up_appointments(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with scheduling_errors(db):
        service = build_scheduling_service(db)
        service.get_appointment(appointment_id, requester_id=current_user.id)
        return service.get_follow_up_appointments(appointment_id)


@router.put('/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: int,
    data: UpdateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with scheduling_errors(db):
        service = build_scheduling_service(db)
        appointment = service.get_appointment(appointment_id, requester_id=current_user.id)
        if data.moves_appointment:
            return service.reschedule_appointment(
                appointment_id,
                new_start=data.start_time,
                new_duration_minutes=data.duration_minutes,
                new_doctor_id=data.doctor_id,
                requester_id=current_user.id,
                details=data.details(),
            )
        if data.changes_details:
            return service.update_appointment_details(appointment_id, current_user.id, **data.details())
        return appointment


@router.post('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    data: CancelAppointmentRequest | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    reason = data.reason if data else None
    with scheduling_errors(db):
        return build_scheduling_service(db).cancel_appointment(appointment_id, reason, current_user.id)


@router.post('/{appointment_id}/confirm', response_model=AppointmentResponse)
def confirm_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with scheduling_errors(db):
        return build_scheduling_service(db).confirm_appointment(appointment_id, current_user.id)


@router.post('/{appointment_id}/start', response_model=AppointmentResponse)
def start_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with scheduling_errors(db):
        return build_scheduling_service(db).start_appointment(appointment_id, current_user.id)


@router.post('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with scheduling_errors(db):
        return build_scheduling_service(db).complete_appointment(appointment_id, current_user.id)


@router.post('/{appointment_id}/no-show', response_model=AppointmentResponse)
def mark_no_show(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with scheduling_errors(db):
        return build_scheduling_service(db).mark_no_show(appointment_id, current_user.id)
