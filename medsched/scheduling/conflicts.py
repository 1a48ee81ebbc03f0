"""Double-booking detection for a doctor's blocking appointments."""

from datetime import datetime

from medsched.models.appointment import Appointment
from medsched.scheduling.context import SchedulingContext
from medsched.scheduling.intervals import Interval, overlaps


class ConflictDetector:
    def __init__(self, context: SchedulingContext) -> None:
        self.context = context

    def conflicting(
        self,
        doctor_id: int,
        start: datetime,
        end: datetime,
        exclude_appointment_id: int | None = None,
    ) -> list[Appointment]:
        candidates = self.context.appointments.find_blocking(doctor_id, start, end, exclude_appointment_id)

        proposed = Interval(start, end)
        return [
            appointment
            for appointment in candidates
            if appointment.id != exclude_appointment_id
            and appointment.is_blocking
            and overlaps(proposed, Interval(appointment.start_time, appointment.end_time))
        ]

    def has_conflict(
        self,
        doctor_id: int,
        start: datetime,
        end: datetime,
        exclude_appointment_id: int | None = None,
    ) -> bool:
        return bool(self.conflicting(doctor_id, start, end, exclude_appointment_id))
