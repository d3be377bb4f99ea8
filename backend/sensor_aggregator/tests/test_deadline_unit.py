"""
Unit tests for batch deadline write gating.
"""

import threading

import pytest

from shared.deadline import BatchDeadline
from shared.errors import BatchTimeoutError


class TestBatchDeadline:
    """Test expiry and write slots."""

    def test_check_passes_before_expiry(self):
        deadline = BatchDeadline()

        deadline.check()

        assert deadline.expired is False

    def test_no_write_starts_after_expiry(self):
        deadline = BatchDeadline()

        assert deadline.expire() is True

        with pytest.raises(BatchTimeoutError):
            deadline.check()
        with pytest.raises(BatchTimeoutError):
            with deadline.write_slot():
                pass

    def test_expire_waits_for_in_flight_write(self):
        deadline = BatchDeadline()
        entered = threading.Event()
        release = threading.Event()

        def writer():
            with deadline.write_slot():
                entered.set()
                release.wait(5)

        thread = threading.Thread(target=writer)
        thread.start()
        assert entered.wait(5)

        assert deadline.expire(drain_timeout=0.05) is False

        release.set()
        thread.join(5)
        assert deadline.expire(drain_timeout=1) is True


class TestRecordDeadline:
    """Test per-record commit tracking."""

    def test_successful_write_is_committed(self):
        deadline = BatchDeadline().for_record()

        with deadline.write_slot():
            assert deadline.committed is False

        assert deadline.committed is True

    def test_failed_write_is_not_committed(self):
        deadline = BatchDeadline().for_record()

        with pytest.raises(ValueError):
            with deadline.write_slot():
                raise ValueError("conditional check failed")

        assert deadline.committed is False
        # The slot was released despite the failure
        assert deadline.batch.expire(drain_timeout=0) is True

    def test_records_share_batch_expiry(self):
        batch = BatchDeadline()
        first, second = batch.for_record(), batch.for_record()

        batch.expire()

        with pytest.raises(BatchTimeoutError):
            first.check()
        with pytest.raises(BatchTimeoutError):
            second.check()
