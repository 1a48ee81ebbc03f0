import threading
import time

import pytest

from medsched.scheduling.locks import DoctorLocks


def test_same_doctor_is_serialized() -> None:
    locks = DoctorLocks()
    active = 0
    peak = 0
    counter_guard = threading.Lock()

    def critical_section() -> None:
        nonlocal active, peak
        with locks.hold(7):
            with counter_guard:
                active += 1
                peak = max(peak, active)
            time.sleep(0.01)
            with counter_guard:
                active -= 1

    workers = [threading.Thread(target=critical_section) for _ in range(8)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()

    assert peak == 1


def test_different_doctors_do_not_block_each_other() -> None:
    locks = DoctorLocks()
    entered = threading.Event()

    def hold_other_doctor() -> None:
        with locks.hold(2):
            entered.set()

    with locks.hold(1):
        worker = threading.Thread(target=hold_other_doctor)
        worker.start()
        assert entered.wait(timeout=1)
        worker.join()


def test_opposite_order_requests_do_not_deadlock() -> None:
    locks = DoctorLocks()
    finished = []

    def move(first: int, second: int) -> None:
        for _ in range(50):
            with locks.hold(first, second):
                pass
        finished.append((first, second))

    workers = [threading.Thread(target=move, args=(1, 2)), threading.Thread(target=move, args=(2, 1))]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join(timeout=5)

    assert sorted(finished) == [(1, 2), (2, 1)]


def test_locks_are_released_after_errors() -> None:
    locks = DoctorLocks()

    with pytest.raises(RuntimeError):
        with locks.hold(3, None):
            raise RuntimeError('boom')

    with locks.hold(3):
        pass
