from dataclasses import asdict
from datetime import datetime, time

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.orm import Session

from medsched.auth.dependencies import get_current_user
from medsched.core import config
from medsched.database import get_db
from medsched.models.user import User
from medsched.routes.errors import ensure_database_ready, scheduling_errors
from medsched.scheduling.calendar import WindowSettings
from medsched.scheduling.service import build_scheduling_service

router = APIRouter(tags=['availability'])

CLEARABLE_WINDOW_FIELDS = frozenset({'max_appointments_per_day', 'break_start', 'break_end', 'notes'})


def _validate_slot_duration(value: int | None) -> int | None:
    if value is None:
        return None
    if not config.MIN_SLOT_DURATION_MINUTES <= value <= config.MAX_SLOT_DURATION_MINUTES:
        raise ValueError(
            f'Slot duration must be between {config.MIN_SLOT_DURATION_MINUTES} '
            f'and {config.MAX_SLOT_DURATION_MINUTES} minutes.'
        )
    return value


def _validate_max_appointments(value: int | None) -> int | None:
    if value is not None and not 0 <= value <= config.MAX_APPOINTMENTS_PER_DAY_LIMIT:
        raise ValueError(f'Max appointments per day must be between 0 and {config.MAX_APPOINTMENTS_PER_DAY_LIMIT}.')
    return value


def _normalize_text(value: str | None, max_length: int, label: str) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > max_length:
        raise ValueError(f'{label} must be {max_length} characters or fewer.')

    return normalized


class SetWindowRequest(BaseModel):
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

    @field_validator('day_of_week')
    @classmethod
    def validate_day_of_week(cls, value: int) -> int:
        if not 0 <= value <= 6:
            raise ValueError('Day of week must be between 0 (Monday) and 6 (Sunday).')
        return value

    @field_validator('slot_duration_minutes')
    @classmethod
    def validate_slot_duration(cls, value: int) -> int:
        return _validate_slot_duration(value)

    @field_validator('max_appointments_per_day')
    @classmethod
    def validate_max_appointments(cls, value: int | None) -> int | None:
        return _validate_max_appointments(value)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_text(value, config.MAX_APPOINTMENT_NOTES_LENGTH, 'Notes')

    def to_settings(self) -> WindowSettings:
        return WindowSettings(**self.model_dump())


class UpdateWindowRequest(BaseModel):
    day_of_week: int | None = None
    start_time: time | None = None
    end_time: time | None = None
    is_active: bool | None = None
    slot_duration_minutes: int | None = None
    max_appointments_per_day: int | None = None
    break_start: time | None = None
    break_end: time | None = None
    notes: str | None = None

    @field_validator('day_of_week')
    @classmethod
    def validate_day_of_week(cls, value: int | None) -> int | None:
        if value is not None and not 0 <= value <= 6:
            raise ValueError('Day of week must be between 0 (Monday) and 6 (Sunday).')
        return value

    @field_validator('slot_duration_minutes')
    @classmethod
    def validate_slot_duration(cls, value: int | None) -> int | None:
        return _validate_slot_duration(value)

    @field_validator('max_appointments_per_day')
    @classmethod
    def validate_max_appointments(cls, value: int | None) -> int | None:
        return _validate_max_appointments(value)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_text(value, config.MAX_APPOINTMENT_NOTES_LENGTH, 'Notes')

    def to_patch(self) -> dict:
        # Only fields the client sent. An explicit null only clears a nullable column.
        patch = self.model_dump(exclude_unset=True)
        return {name: value for name, value in patch.items() if value is not None or name in CLEARABLE_WINDOW_FIELDS}


class MarkUnavailableRequest(BaseModel):
    start_time: datetime
    end_time: datetime
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_text(value, config.MAX_REASON_LENGTH, 'Reason')

    @model_validator(mode='after')
    def validate_range(self) -> 'MarkUnavailableRequest':
        if self.start_time >= self.end_time:
            raise ValueError('Unavailability start must be before its end.')
        return self


class AvailabilityWindowResponse(BaseModel):
    id: int
    doctor_id: int
    day_of_week: int
    start_time: time
    end_time: time
    is_active: bool
    slot_duration_minutes: int
    max_appointments_per_day: int | None = None
    break_start: time | None = None
    break_end: time | None = None
    notes: str | None = None
    blocked_from: datetime | None = None
    blocked_until: datetime | None = None
    is_override: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AvailabilityCheckResponse(BaseModel):
    doctor_id: int
    at: datetime
    is_available: bool


class NextSlotResponse(BaseModel):
    doctor_id: int
    from_time: datetime
    next_slot: datetime | None = None


class AvailableDoctorResponse(BaseModel):
    id: int
    email: str

    class Config:
        from_attributes = True


class AvailabilityStatisticsResponse(BaseModel):
    doctor_id: int
    total_windows: int
    active_windows: int
    inactive_windows: int
    override_count: int


@router.post('/windows', response_model=AvailabilityWindowResponse, status_code=status.HTTP_201_CREATED)
def create_window(
    data: SetWindowRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with scheduling_errors(db):
        service = build_scheduling_service(db)
        return service.set_window(data.to_settings(), requester_id=current_user.id)


@router.put('/windows/{window_id}', response_model=AvailabilityWindowResponse)
def update_window(
    window_id: int,
    data: UpdateWindowRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with scheduling_errors(db):
        service = build_scheduling_service(db)
        return service.update_window(window_id, data.to_patch(), current_user.id)


@router.delete('/windows/{window_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_window(
    window_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with scheduling_errors(db):
        service = build_scheduling_service(db)
        service.delete_window(window_id, current_user.id)


@router.get('/doctors/{doctor_id}/windows', response_model=list[AvailabilityWindowResponse])
def list_doctor_windows(
    doctor_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    with scheduling_errors(db):
        return build_scheduling_service(db).list_windows(doctor_id)


@router.get('/doctors/{doctor_id}/check', response_model=AvailabilityCheckResponse)
def check_doctor_availability(
    doctor_id: int,
    at: datetime = Query(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    with scheduling_errors(db):
        is_available = build_scheduling_service(db).is_available_at(doctor_id, at)

    return AvailabilityCheckResponse(doctor_id=doctor_id, at=at, is_available=is_available)


@router.get('/doctors/{doctor_id}/next-slot', response_model=NextSlotResponse)
def get_next_available_slot(
    doctor_id: int,
    from_time: datetime | None = Query(default=None),
    horizon_days: int | None = Query(default=None, ge=1, le=365),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    from_time = from_time or datetime.now()
    with scheduling_errors(db):
        next_slot = build_scheduling_service(db).next_available_slot(doctor_id, from_time, horizon_days)

    return NextSlotResponse(doctor_id=doctor_id, from_time=from_time, next_slot=next_slot)


@router.post(
    '/doctors/{doctor_id}/unavailable',
    response_model=AvailabilityWindowResponse,
    status_code=status.HTTP_201_CREATED,
)
def mark_doctor_unavailable(
    doctor_id: int,
    data: MarkUnavailableRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with scheduling_errors(db):
        service = build_scheduling_service(db)
        return service.mark_unavailable(
            doctor_id,
            data.start_time,
            data.end_time,
            data.reason,
            requester_id=current_user.id,
        )


@router.get('/available-doctors', response_model=list[AvailableDoctorResponse])
def list_available_doctors(
    at: datetime = Query(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    with scheduling_errors(db):
        return build_scheduling_service(db).available_doctors(at)


@router.get('/doctors/{doctor_id}/statistics', response_model=AvailabilityStatisticsResponse)
def get_availability_statistics(
    doctor_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    with scheduling_errors(db):
        statistics = build_scheduling_service(db).availability_statistics(doctor_id)

    return AvailabilityStatisticsResponse(doctor_id=doctor_id, **asdict(statistics))
