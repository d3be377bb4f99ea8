"""
Write gating for a batch with a deadline.

Once a batch deadline expires no record of that batch may start a new
aggregate write. Writes already in flight are allowed to finish, and a record
whose write succeeded is marked committed so the caller reports its real
outcome instead of asking for redelivery.
"""

from contextlib import contextmanager
from threading import Condition
from typing import Iterator, Optional

from shared.errors import BatchTimeoutError


class BatchDeadline:
    """Batch-wide expiry flag plus a count of writes in flight."""

    def __init__(self):
        self._condition = Condition()
        self._expired = False
        self._in_flight = 0

    @property
    def expired(self) -> bool:
        with self._condition:
            return self._expired

    def check(self) -> None:
        """Raise BatchTimeoutError if the deadline has passed."""
        if self.expired:
            raise BatchTimeoutError("batch deadline passed")

    @contextmanager
    def write_slot(self) -> Iterator[None]:
        with self._condition:
            if self._expired:
                raise BatchTimeoutError("batch deadline passed before write")
            self._in_flight += 1
        try:
            yield
        finally:
            with self._condition:
                self._in_flight -= 1
                self._condition.notify_all()

    def expire(self, drain_timeout: Optional[float] = None) -> bool:
        """
        Block new writes and wait for in-flight writes to finish.

        Args:
            drain_timeout: Maximum seconds to wait for in-flight writes

        Returns:
            True if no write is still in flight
        """
        with self._condition:
            self._expired = True
            return self._condition.wait_for(lambda: self._in_flight == 0, drain_timeout)

    def for_record(self) -> 'RecordDeadline':
        return RecordDeadline(self)


class RecordDeadline:
    """One record's view of a BatchDeadline."""

    def __init__(self, batch: BatchDeadline):
        self.batch = batch
        self.committed = False

    def check(self) -> None:
        self.batch.check()

    @contextmanager
    def write_slot(self) -> Iterator[None]:
        with self.batch.write_slot():
            yield
            # Set before the slot is released so expire() observes it
            self.committed = True
