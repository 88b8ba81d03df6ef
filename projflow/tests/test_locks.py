"""
Tests for engine/locks.py

Validates:
- Holders of the same key never overlap
- Different keys do not block each other
- The registry drops a key once nobody holds or waits on it
"""

import threading
import time

from projflow.engine.locks import KeyedLocks


def test_same_key_is_serialized():
    locks = KeyedLocks()
    inside = []
    overlaps = []

    def worker():
        for _ in range(20):
            with locks.hold("p1"):
                inside.append(1)
                if len(inside) > 1:
                    overlaps.append(True)
                time.sleep(0.0005)
                inside.pop()

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert overlaps == []


def test_different_keys_do_not_block():
    locks = KeyedLocks()
    entered = threading.Event()

    def other():
        with locks.hold("p2"):
            entered.set()

    with locks.hold("p1"):
        t = threading.Thread(target=other)
        t.start()
        assert entered.wait(timeout=2)
        t.join()


def test_registry_is_cleaned_up():
    locks = KeyedLocks()
    with locks.hold("p1"):
        assert len(locks) == 1
    assert len(locks) == 0


def test_lock_released_on_exception():
    locks = KeyedLocks()
    try:
        with locks.hold("p1"):
            raise ValueError("boom")
    except ValueError:
        pass
    acquired = threading.Event()

    def other():
        with locks.hold("p1"):
            acquired.set()

    t = threading.Thread(target=other)
    t.start()
    assert acquired.wait(timeout=2)
    t.join()
    assert len(locks) == 0
