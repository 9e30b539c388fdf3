"""
ldapaudit Permit Pool

Admission control for the bounded-parallel scheduler: a counting
semaphore sized to the configured parallelism.

Thread-safe. Tracks permits in use and the peak, so a run can be checked
for leaks and for the concurrency bound.
"""

from __future__ import annotations

import threading
from typing import Optional

import attrs
from attrs import validators


@attrs.define
class PermitPool:
    """
    Fixed-size pool of permits.

    INVARIANT: 0 <= in_use <= size

    Example:
        pool = PermitPool(size=4)
        if pool.acquire(timeout=0.1):
            try:
                ...
            finally:
                pool.release()
    """

    size: int = attrs.field(validator=[validators.instance_of(int), validators.ge(1)])

    _semaphore: threading.BoundedSemaphore = attrs.field(init=False)
    _lock: threading.Lock = attrs.Factory(threading.Lock)
    _in_use: int = 0
    _peak: int = 0

    @_semaphore.default
    def _make_semaphore(self) -> threading.BoundedSemaphore:
        return threading.BoundedSemaphore(self.size)

    @property
    def in_use(self) -> int:
        with self._lock:
            return self._in_use

    @property
    def available(self) -> int:
        with self._lock:
            return self.size - self._in_use

    @property
    def peak(self) -> int:
        """Highest number of permits held at once."""
        with self._lock:
            return self._peak

    def acquire(self, timeout: Optional[float] = None) -> bool:
        """
        Take a permit, waiting up to `timeout` seconds (forever if None).

        Returns:
            True if a permit was taken, False on timeout
        """
        if not self._semaphore.acquire(timeout=timeout):
            return False

        with self._lock:
            self._in_use += 1
            self._peak = max(self._peak, self._in_use)
        return True

    def release(self) -> None:
        """Return a permit to the pool."""
        with self._lock:
            if self._in_use == 0:
                raise ValueError("PermitPool released more times than acquired")
            self._in_use -= 1
        self._semaphore.release()
