"""
Retry utilities with exponential backoff and jitter.

Provides a bounded retry helper used for optimistic-concurrency conflicts.
Exhaustion is surfaced as RetriesExhaustedError instead of retrying forever.
"""

import random
import time
from dataclasses import dataclass
from typing import Callable, TypeVar, Any, Optional, Tuple, Type

from aws_lambda_powertools import Logger

from shared.errors import RetriesExhaustedError

logger = Logger(child=True)

T = TypeVar('T')


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry configuration.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Base delay in seconds
        max_delay: Maximum delay in seconds
        exponential_base: Base for exponential calculation
        jitter: Use full jitter (random delay in [0, backoff])
    """
    max_attempts: int = 8
    base_delay: float = 0.05
    max_delay: float = 2.0
    exponential_base: float = 2.0
    jitter: bool = True

    def backoff_delay(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """
        Compute the delay before the retry that follows a failed attempt.

        Args:
            attempt: 1-indexed attempt number that just failed
            rng: Optional random source (for deterministic tests)

        Returns:
            Delay in seconds
        """
        delay = min(self.base_delay * (self.exponential_base ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay = (rng or random).uniform(0, delay)
        return delay


def retry_with_backoff(
    func: Callable[[], T],
    policy: RetryPolicy,
    exceptions: Tuple[Type[Exception], ...],
    logger_instance: Optional[Logger] = None,
    sleep: Callable[[float], Any] = time.sleep,
    context: Optional[dict] = None
) -> Tuple[T, int]:
    """
    Call func until it succeeds, retrying only on the given exceptions.

    Args:
        func: Zero-argument callable to run
        policy: Retry policy
        exceptions: Exception types that trigger a retry
        logger_instance: Optional logger instance
        sleep: Sleep function (injectable for tests)
        context: Extra structured fields for retry log lines

    Returns:
        Tuple of (result, number of retries taken)

    Raises:
        RetriesExhaustedError: If every attempt raised a retryable exception
        Exception: Any non-retryable exception, unchanged
    """
    log = logger_instance or logger
    extra = dict(context or {})

    for attempt in range(1, policy.max_attempts + 1):
        try:
            result = func()
            if attempt > 1:
                log.debug(
                    f"Succeeded on attempt {attempt}",
                    extra={**extra, "attempt": attempt}
                )
            return result, attempt - 1

        except exceptions as e:
            if attempt >= policy.max_attempts:
                log.error(
                    f"Operation failed after {policy.max_attempts} attempts",
                    extra={
                        **extra,
                        "max_attempts": policy.max_attempts,
                        "error": str(e)[:256],
                        "error_type": type(e).__name__
                    }
                )
                raise RetriesExhaustedError(policy.max_attempts, e) from e

            delay = policy.backoff_delay(attempt)
            log.debug(
                f"Attempt {attempt}/{policy.max_attempts} conflicted, retrying in {delay:.3f}s",
                extra={
                    **extra,
                    "attempt": attempt,
                    "delay_seconds": delay,
                    "error_type": type(e).__name__
                }
            )
            sleep(delay)

    raise RetriesExhaustedError(policy.max_attempts, RuntimeError("no attempts made"))
