from __future__ import annotations

import threading
import time
from datetime import timedelta

from supplyledger.domain.clock import MonotonicClock
from supplyledger.domain.locks import KeyedLocks
from tests.helpers.ledger import START, FrozenClock


def test_hold_is_reentrant_and_cleans_up() -> None:
    locks = KeyedLocks()

    with locks.hold("a", "b"), locks.hold("a"):
        assert len(locks) == 2

    assert len(locks) == 0


def test_hold_serialises_writers_on_the_same_key() -> None:
    locks = KeyedLocks()
    active = 0
    overlaps: list[int] = []
    guard = threading.Lock()

    def worker() -> None:
        nonlocal active
        with locks.hold(("evidence", "t", 1)):
            with guard:
                active += 1
                overlaps.append(active)
            time.sleep(0.01)
            with guard:
                active -= 1

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert max(overlaps) == 1
    assert len(locks) == 0


def test_opposite_acquisition_order_does_not_deadlock() -> None:
    locks = KeyedLocks()
    done: list[str] = []

    def worker(name: str, keys: tuple[str, str]) -> None:
        for _ in range(50):
            with locks.hold(*keys):
                pass
        done.append(name)

    left = threading.Thread(target=worker, args=("left", ("x", "y")))
    right = threading.Thread(target=worker, args=("right", ("y", "x")))
    left.start()
    right.start()
    left.join(timeout=5)
    right.join(timeout=5)

    assert sorted(done) == ["left", "right"]


def test_monotonic_clock_nudges_repeated_readings() -> None:
    clock = MonotonicClock(FrozenClock())

    first = clock()
    second = clock()

    assert first == START
    assert second == START + timedelta(microseconds=1)


def test_monotonic_clock_never_goes_backwards() -> None:
    source = FrozenClock()
    clock = MonotonicClock(source)
    first = clock()

    source.advance(seconds=-10)

    assert clock() > first
