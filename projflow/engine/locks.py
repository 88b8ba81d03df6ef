#!/usr/bin/env python3
"""
Project Lifecycle Engine Per-Project Locks

Serializes load-mutate-save cycles on one project id within this process.
Different ids never contend. Locks are reference counted and dropped once no
caller holds or waits on them, so the registry does not grow with the number
of projects ever touched.

This covers callers sharing one engine instance. Writers in other processes
are caught by the store's version check (ConcurrentModification) instead.
"""

import threading
from contextlib import contextmanager
from typing import Iterator


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class KeyedLocks:
    """A registry of mutexes keyed by string id."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
