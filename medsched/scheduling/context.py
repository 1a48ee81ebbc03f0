"""Collaborators threaded through every scheduling component."""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterator

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from medsched.core import config
from medsched.scheduling.audit import AuditSink, record_safely
from medsched.scheduling.errors import SchedulingConflictError
from medsched.scheduling.locks import DoctorLocks, doctor_locks
from medsched.scheduling.stores import AppointmentStore, AvailabilityStore, UserDirectory

logger = logging.getLogger(__name__)


@dataclass
class SchedulingContext:
    db: Session
    users: UserDirectory
    appointments: AppointmentStore
    availability: AvailabilityStore
    audit: AuditSink | None = None
    locks: DoctorLocks = field(default_factory=lambda: doctor_locks)
    clock: Callable[[], datetime] = datetime.now
    horizon_days: int = config.NEXT_SLOT_HORIZON_DAYS

    def now(self) -> datetime:
        return self.clock()

    @contextmanager
    def unit_of_work(self, *doctor_ids: int) -> Iterator[None]:
        """Run a check-then-write sequence for the given doctors atomically.

        Holds the in-process lock of every doctor, takes the store-level lock
        inside the transaction, commits on success and rolls back on any error.
        """
        with self.locks.hold(*doctor_ids):
            try:
                for doctor_id in sorted({doctor_id for doctor_id in doctor_ids if doctor_id is not None}):
                    self.appointments.lock_doctor(doctor_id)
                yield
                self.db.commit()
            except IntegrityError as exc:
                self.db.rollback()
                logger.warning('Write rejected by the database for doctors %s: %s', doctor_ids, exc.orig)
                raise SchedulingConflictError('Appointment conflicts with an existing appointment.') from exc
            except Exception:
                self.db.rollback()
                raise

    def audit_event(
        self,
        action: str,
        actor_id: int | None,
        resource_type: str,
        resource_id: int | None,
        detail: str,
    ) -> None:
        record_safely(self.audit, action, actor_id, resource_type, resource_id, detail)
