"""Operation id generator scoped to one test run."""

from __future__ import annotations

import logging
import threading

log = logging.getLogger(__name__)

#: Sentinel returned when an id could not be generated.  Never assigned
#: to a real operation.
INVALID_OPERATION_ID: int = 0


class UniqueIdGenerator:
    """Thread-safe monotonically increasing operation id counter.

    The counter is guarded by its own lock, independent of the statistics
    store, so id generation stays uncontended while recording is busy.
    Ids start at 1; every call returns a value strictly greater than all
    values previously returned by the same generator.
    """

    __slots__ = ("_counter", "_lock", "_lock_timeout")

    def __init__(self, lock_timeout: float = 5.0) -> None:
        self._counter = 0
        self._lock = threading.Lock()
        self._lock_timeout = lock_timeout

    def next_id(self) -> int:
        """Return the next operation id, or ``INVALID_OPERATION_ID`` (0).

        ``0`` means the lock could not be acquired within the configured
        timeout.  Callers must treat it as a hard failure of the whole
        operation attempt.
        """
        if not self._lock.acquire(timeout=self._lock_timeout):
            log.error(
                "Failed to lock operation id counter within %.1fs",
                self._lock_timeout,
            )
            return INVALID_OPERATION_ID
        try:
            self._counter += 1
            return self._counter
        finally:
            self._lock.release()

    @property
    def last_id(self) -> int:
        """Most recently issued id (0 before the first call)."""
        with self._lock:
            return self._counter

    def __repr__(self) -> str:
        return f"UniqueIdGenerator(last_id={self._counter})"
