"""
Unit tests for retry utilities.

Tests bounded retry with exponential backoff and jitter.
"""

import random

import pytest
from unittest.mock import Mock
from aws_lambda_powertools import Logger

from shared.errors import ConflictError, RetriesExhaustedError, StorageUnavailableError
from shared.retry_utils import RetryPolicy, retry_with_backoff


def conflict():
    return ConflictError("sensor-1", "2025-07-13T14:00:00", 1)


class TestRetryPolicy:
    """Test backoff delay computation."""

    def test_exponential_growth_without_jitter(self):
        """Test delays double per attempt."""
        policy = RetryPolicy(base_delay=0.1, max_delay=10.0, jitter=False)

        assert policy.backoff_delay(1) == pytest.approx(0.1)
        assert policy.backoff_delay(2) == pytest.approx(0.2)
        assert policy.backoff_delay(3) == pytest.approx(0.4)

    def test_delay_is_capped(self):
        """Test delays never exceed max_delay."""
        policy = RetryPolicy(base_delay=1.0, max_delay=2.0, jitter=False)

        assert policy.backoff_delay(10) == 2.0

    def test_full_jitter_stays_within_backoff(self):
        """Test jittered delays fall in [0, backoff]."""
        policy = RetryPolicy(base_delay=0.1, max_delay=10.0)
        rng = random.Random(42)

        for attempt in range(1, 8):
            delay = policy.backoff_delay(attempt, rng=rng)
            assert 0 <= delay <= 0.1 * 2 ** (attempt - 1)


class TestRetryWithBackoff:
    """Test retry_with_backoff."""

    def test_successful_operation(self, no_sleep):
        """Test successful operation on first attempt."""
        mock_func = Mock(return_value="success")

        result, retries = retry_with_backoff(
            mock_func,
            policy=RetryPolicy(),
            exceptions=(ConflictError,),
            sleep=no_sleep
        )

        assert result == "success"
        assert retries == 0
        assert mock_func.call_count == 1
        assert no_sleep.delays == []

    def test_retry_on_failure(self, no_sleep):
        """Test retry until success."""
        mock_func = Mock(side_effect=[conflict(), conflict(), "success"])

        result, retries = retry_with_backoff(
            mock_func,
            policy=RetryPolicy(max_attempts=5),
            exceptions=(ConflictError,),
            logger_instance=Logger(service="test"),
            sleep=no_sleep
        )

        assert result == "success"
        assert retries == 2
        assert mock_func.call_count == 3
        assert len(no_sleep.delays) == 2

    def test_max_attempts_exhausted(self, no_sleep):
        """Test exhaustion raises RetriesExhaustedError carrying the last error."""
        mock_func = Mock(side_effect=conflict())

        with pytest.raises(RetriesExhaustedError) as exc_info:
            retry_with_backoff(
                mock_func,
                policy=RetryPolicy(max_attempts=3),
                exceptions=(ConflictError,),
                sleep=no_sleep
            )

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, ConflictError)
        assert mock_func.call_count == 3
        # No sleep after the final attempt
        assert len(no_sleep.delays) == 2

    def test_non_retryable_exception_propagates(self, no_sleep):
        """Test exceptions outside the retry set are raised immediately."""
        mock_func = Mock(side_effect=StorageUnavailableError("update_aggregate", "InternalServerError", "boom"))

        with pytest.raises(StorageUnavailableError):
            retry_with_backoff(
                mock_func,
                policy=RetryPolicy(max_attempts=5),
                exceptions=(ConflictError,),
                sleep=no_sleep
            )

        assert mock_func.call_count == 1
        assert no_sleep.delays == []

    def test_delays_respect_policy(self, no_sleep):
        """Test sleeps follow the policy's backoff schedule."""
        mock_func = Mock(side_effect=[conflict(), conflict(), conflict(), "ok"])
        policy = RetryPolicy(max_attempts=4, base_delay=0.01, max_delay=0.02, jitter=False)

        retry_with_backoff(mock_func, policy=policy, exceptions=(ConflictError,), sleep=no_sleep)

        assert no_sleep.delays == pytest.approx([0.01, 0.02, 0.02])
