"""
Time utilities for the sensor aggregator.

Provides functions for:
- ISO-8601 timestamp parsing (UTC normalized)
- Hour bucket key derivation
- ISO-8601 formatting of the current time
"""

from datetime import datetime, timezone
from typing import Optional

from shared.errors import MalformedTimestampError

# Constants
HOUR_BUCKET_FORMAT = "%Y-%m-%dT%H:00:00"


def parse_timestamp(timestamp: str) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    A trailing 'Z' is accepted. Naive timestamps are treated as UTC.

    Args:
        timestamp: ISO-8601 timestamp string

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        MalformedTimestampError: If the timestamp cannot be parsed
    """
    if not isinstance(timestamp, str) or not timestamp.strip():
        raise MalformedTimestampError(timestamp)

    text = timestamp.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"

    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        raise MalformedTimestampError(timestamp) from None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    try:
        return dt.astimezone(timezone.utc)
    except OverflowError:
        # Offset pushes the instant outside datetime's supported range
        raise MalformedTimestampError(timestamp) from None


def derive_hour_bucket(timestamp: str) -> str:
    """
    Derive the hour bucket key for a reading timestamp.

    Args:
        timestamp: ISO-8601 timestamp string

    Returns:
        Hour bucket key in format YYYY-MM-DDTHH:00:00 (UTC)

    Raises:
        MalformedTimestampError: If the timestamp cannot be parsed

    Examples:
        >>> derive_hour_bucket("2025-07-13T14:37:12.500Z")
        '2025-07-13T14:00:00'
    """
    dt = parse_timestamp(timestamp)
    aligned = dt.replace(minute=0, second=0, microsecond=0)
    return aligned.strftime(HOUR_BUCKET_FORMAT)


def format_iso_timestamp(dt: datetime) -> str:
    """Format a datetime as UTC ISO-8601 with millisecond precision and 'Z' suffix."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def utc_now_iso(now: Optional[datetime] = None) -> str:
    """Return the current (or given) time as an ISO-8601 UTC string."""
    return format_iso_timestamp(now or datetime.now(timezone.utc))
