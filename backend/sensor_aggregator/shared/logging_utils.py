"""
Logging utilities for structured logging across all Lambda functions.

Provides helper functions for consistent structured logging with AWS Lambda Powertools.
"""

from typing import Optional
from aws_lambda_powertools import Logger


def log_aggregate_update(
    logger: Logger,
    sensor_id: str,
    hour_bucket: str,
    update_type: str,  # "create" or "update"
    count: int,
    retries: int = 0,
    reading_id: Optional[str] = None
) -> None:
    """
    Log an aggregate write.

    Args:
        logger: Logger instance
        sensor_id: Sensor ID
        hour_bucket: Hour bucket key
        update_type: Type of write (create or update)
        count: Reading count after the write
        retries: Conflict retries taken before the write landed
        reading_id: Optional reading ID that triggered the write
    """
    logger.info(
        f"Aggregate {update_type}d: {sensor_id} {hour_bucket}",
        extra={
            "sensor_id": sensor_id,
            "hour_bucket": hour_bucket,
            "reading_id": reading_id,
            "update_type": update_type,
            "count": count,
            "retries": retries,
            "event_category": "aggregate_update"
        }
    )


def log_invalid_reading(
    logger: Logger,
    reason: str,
    sequence_number: Optional[str] = None,
    event_name: Optional[str] = None
) -> None:
    """
    Log a stream record dropped by validation.

    Args:
        logger: Logger instance
        reason: Validation failure reason
        sequence_number: DynamoDB Stream sequence number
        event_name: Stream event name
    """
    logger.warning(
        "Invalid sensor reading in stream record, dropping",
        extra={
            "sequence_number": sequence_number,
            "event_name": event_name,
            "reason": reason[:256],
            "event_category": "invalid_reading"
        }
    )


def log_conflict_retry(
    logger: Logger,
    sensor_id: str,
    hour_bucket: str,
    conflict_type: str,
    attempt: int
) -> None:
    """
    Log an optimistic-concurrency conflict that will be retried.

    Args:
        logger: Logger instance
        sensor_id: Sensor ID
        hour_bucket: Hour bucket key
        conflict_type: Name of the conflict error
        attempt: 1-indexed attempt that conflicted
    """
    logger.debug(
        "Conditional write conflicted, retrying from read",
        extra={
            "sensor_id": sensor_id,
            "hour_bucket": hour_bucket,
            "conflict_type": conflict_type,
            "attempt": attempt,
            "event_category": "conflict_retry"
        }
    )


def log_stream_processing_error(
    logger: Logger,
    sequence_number: Optional[str],
    error_message: str,
    error_type: str,
    sensor_id: Optional[str] = None,
    reading_id: Optional[str] = None
) -> None:
    """
    Log a stream processing error.

    Args:
        logger: Logger instance
        sequence_number: DynamoDB Stream sequence number
        error_message: Error message
        error_type: Type of error
        sensor_id: Optional sensor ID
        reading_id: Optional reading ID
    """
    logger.error(
        "Stream record processing failed",
        extra={
            "sequence_number": sequence_number,
            "sensor_id": sensor_id,
            "reading_id": reading_id,
            "error_message": error_message[:256],
            "error_type": error_type,
            "event_category": "stream_processing_error"
        }
    )
