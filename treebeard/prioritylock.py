"""A lock on which high-priority holders go ahead of low-priority ones."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class PriorityPreferenceLock:
    """A triple-mutex priority lock.

    A low-priority holder takes the low-priority mutex, waits until no
    high-priority holder is waiting, then takes the data mutex through the
    next-to-access mutex. A high-priority holder registers itself as waiting
    and takes the data mutex through the next-to-access mutex.
    """

    def __init__(self) -> None:
        self._data = threading.Lock()
        self._next_to_access = threading.Lock()
        self._low_priority = threading.Lock()
        self._high_waiting = 0
        self._high_cond = threading.Condition()

    def lock(self) -> None:
        """Acquire the lock with low priority."""
        self._low_priority.acquire()
        with self._high_cond:
            self._high_cond.wait_for(lambda: self._high_waiting == 0)
        with self._next_to_access:
            self._data.acquire()

    def unlock(self) -> None:
        """Release a low-priority hold."""
        self._data.release()
        self._low_priority.release()

    def high_priority_lock(self) -> None:
        """Acquire the lock with high priority."""
        with self._high_cond:
            self._high_waiting += 1
        with self._next_to_access:
            self._data.acquire()

    def high_priority_unlock(self) -> None:
        """Release a high-priority hold."""
        self._data.release()
        with self._high_cond:
            self._high_waiting -= 1
            if self._high_waiting == 0:
                self._high_cond.notify_all()

    @contextmanager
    def low_priority(self) -> Iterator[None]:
        """Hold the lock with low priority for the duration of the block."""
        self.lock()
        try:
            yield
        finally:
            self.unlock()

    @contextmanager
    def high_priority(self) -> Iterator[None]:
        """Hold the lock with high priority for the duration of the block."""
        self.high_priority_lock()
        try:
            yield
        finally:
            self.high_priority_unlock()