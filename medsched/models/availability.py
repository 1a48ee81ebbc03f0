"""Availability model definitions."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Text, Time
from medsched.database import Base


class AvailabilityWindow(Base):
    """Weekly recurring window a doctor accepts appointments in.

    Rows with ``blocked_from`` set are one-off unavailability overrides; they
    are always inactive and never count as bookable time.
    """
    __tablename__ = "availability_windows"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0 = Monday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    slot_duration_minutes = Column(Integer, nullable=False, default=30)
    max_appointments_per_day = Column(Integer, default=20)
    break_start = Column(Time)
    break_end = Column(Time)
    notes = Column(Text)
    blocked_from = Column(DateTime)
    blocked_until = Column(DateTime)
    created_by = Column(Integer)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    @property
    def is_override(self) -> bool:
        return self.blocked_from is not None

    @property
    def has_break(self) -> bool:
        return self.break_start is not None and self.break_end is not None

    def __repr__(self) -> str:
        return (
            f"AvailabilityWindow(id={self.id}, doctor_id={self.doctor_id}, day_of_week={self.day_of_week}, "
            f"{self.start_time}-{self.end_time}, active={self.is_active})"
        )
