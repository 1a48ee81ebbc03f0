"""Appointment model definitions."""

from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from medsched.database import Base


class AppointmentStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class AppointmentType(str, Enum):
    CONSULTATION = "CONSULTATION"
    FOLLOW_UP = "FOLLOW_UP"
    EMERGENCY = "EMERGENCY"
    ROUTINE_CHECKUP = "ROUTINE_CHECKUP"
    SPECIALIST_VISIT = "SPECIALIST_VISIT"


# Statuses that hold a doctor's time. Everything else never blocks a booking.
BLOCKING_STATUSES = frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED})
TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
)


class Appointment(Base):
    """Represents a scheduled appointment."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=30)
    status = Column(String, nullable=False, default=AppointmentStatus.SCHEDULED.value)
    appointment_type = Column(String, nullable=False, default=AppointmentType.CONSULTATION.value)
    reason = Column(Text)
    notes = Column(Text)
    is_urgent = Column(Boolean, nullable=False, default=False)
    is_follow_up = Column(Boolean, nullable=False, default=False)
    follow_up_appointment_id = Column(Integer)
    cancellation_reason = Column(Text)
    cancelled_by = Column(Integer)
    cancelled_at = Column(DateTime)
    created_by = Column(Integer)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    @property
    def current_status(self) -> AppointmentStatus:
        return AppointmentStatus(self.status)

    @property
    def is_blocking(self) -> bool:
        return self.current_status in BLOCKING_STATUSES
