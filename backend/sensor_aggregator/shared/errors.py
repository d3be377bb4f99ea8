"""
Exception taxonomy for the sensor aggregator.

Validation errors are dropped per record, concurrency conflicts are retried
in-process, and storage failures surface to the batch caller.
"""


class AggregatorError(Exception):
    """Base exception for aggregation errors."""
    pass


class ConfigurationError(AggregatorError):
    """Raised when environment configuration is invalid."""
    pass


class MalformedTimestampError(AggregatorError):
    """Raised when a timestamp cannot be parsed as ISO-8601."""

    def __init__(self, timestamp):
        super().__init__(f"Malformed timestamp: {timestamp!r}")
        self.timestamp = timestamp


class InvalidReadingError(AggregatorError):
    """Raised when a stream payload is not a valid reading."""
    pass


class ConcurrencyConflictError(AggregatorError):
    """Base class for conditional write failures that are safe to retry."""

    def __init__(self, sensor_id: str, hour_bucket: str, message: str):
        super().__init__(f"{message} ({sensor_id} @ {hour_bucket})")
        self.sensor_id = sensor_id
        self.hour_bucket = hour_bucket


class AlreadyExistsError(ConcurrencyConflictError):
    """Another writer created the aggregate first."""

    def __init__(self, sensor_id: str, hour_bucket: str):
        super().__init__(sensor_id, hour_bucket, "Aggregate already exists")


class VanishedError(ConcurrencyConflictError):
    """The aggregate was deleted between read and update."""

    def __init__(self, sensor_id: str, hour_bucket: str):
        super().__init__(sensor_id, hour_bucket, "Aggregate vanished")


class ConflictError(ConcurrencyConflictError):
    """The aggregate was modified by another writer since it was read."""

    def __init__(self, sensor_id: str, hour_bucket: str, expected_count: int):
        super().__init__(
            sensor_id,
            hour_bucket,
            f"Aggregate modified concurrently (expected count {expected_count})"
        )
        self.expected_count = expected_count


class StorageUnavailableError(AggregatorError):
    """Raised on transport or backend failures. Not retried locally."""

    def __init__(self, operation: str, error_code: str, message: str):
        super().__init__(f"{operation} failed [{error_code}]: {message}")
        self.operation = operation
        self.error_code = error_code


class RetriesExhaustedError(AggregatorError):
    """Raised when conflict retries run out for a single reading."""

    def __init__(self, attempts: int, last_error: Exception):
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class BatchTimeoutError(AggregatorError):
    """Raised for records still in flight when the batch deadline passes."""
    pass
