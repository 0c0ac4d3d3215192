"""
Bounded admission for outbound storage requests.
"""

import threading
from contextlib import contextmanager


class ConcurrencyGovernor:
    """
    Counting semaphore shared by every bucket and object task of a cycle.

    A task holds a slot only for the duration of one network call
    (including streaming a response body), never while joining other
    tasks, so waiting bucket tasks cannot starve their object tasks.
    """

    def __init__(self, capacity: int = 10):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._semaphore = threading.BoundedSemaphore(capacity)
        self._lock = threading.Lock()
        self._in_flight = 0
        self._peak = 0

    @contextmanager
    def slot(self):
        """Hold one slot for the enclosed block; always released."""
        self._semaphore.acquire()
        try:
            with self._lock:
                self._in_flight += 1
                if self._in_flight > self._peak:
                    self._peak = self._in_flight
            yield
        finally:
            with self._lock:
                self._in_flight -= 1
            self._semaphore.release()

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    @property
    def peak(self) -> int:
        """Highest number of slots held at once since creation or reset_peak()."""
        with self._lock:
            return self._peak

    def reset_peak(self):
        with self._lock:
            self._peak = self._in_flight
