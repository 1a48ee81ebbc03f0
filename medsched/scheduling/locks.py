"""Per-doctor serialization of check-then-write sequences."""

from contextlib import contextmanager
from threading import Lock
from typing import Iterator


class DoctorLocks:
    """Hands out one ``threading.Lock`` per doctor id.

    Covers concurrent requests inside one process. Across processes the
    store's advisory lock and the database exclusion constraint take over.
    """

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: dict[int, Lock] = {}

    def _lock_for(self, doctor_id: int) -> Lock:
        with self._guard:
            lock = self._locks.get(doctor_id)
            if lock is None:
                lock = self._locks[doctor_id] = Lock()
            return lock

    @contextmanager
    def hold(self, *doctor_ids: int) -> Iterator[None]:
        # Ascending order so two reschedules between the same doctors cannot deadlock.
        ordered = sorted({doctor_id for doctor_id in doctor_ids if doctor_id is not None})
        acquired: list[Lock] = []
        try:
            for doctor_id in ordered:
                lock = self._lock_for(doctor_id)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


# Shared by every request served from this process.
doctor_locks = DoctorLocks()
