"""
Incremental hourly statistics.

Folds one reading value into an existing aggregate (or starts a new one).
Pure functions; no I/O.
"""

from typing import Optional

from shared.models import Aggregate

AVG_DECIMAL_PLACES = 2


def start_aggregate(
    sensor_id: str,
    hour_bucket: str,
    value: float,
    sensor_type: str,
    location: str,
    now: str
) -> Aggregate:
    """
    Build the aggregate for the first reading of a bucket.

    Args:
        sensor_id: Sensor ID
        hour_bucket: Hour bucket key
        value: Reading value
        sensor_type: Sensor type of the reading
        location: Location of the reading
        now: ISO-8601 timestamp used for last_updated

    Returns:
        Aggregate with count=1 and avg=min=max=value
    """
    return Aggregate(
        sensor_id=sensor_id,
        hour_bucket=hour_bucket,
        avg=value,
        min=value,
        max=value,
        count=1,
        last_updated=now,
        sensor_type=sensor_type,
        location=location,
        sum=value
    )


def fold_reading(
    existing: Optional[Aggregate],
    sensor_id: str,
    hour_bucket: str,
    value: float,
    sensor_type: str,
    location: str,
    now: str
) -> Aggregate:
    """
    Produce the next aggregate state after folding in a new value.

    The running sum is accumulated exactly; only the stored average is
    rounded to two decimal places. min and max only move outward.
    sensor_type and location take the incoming reading's values.

    Args:
        existing: Current aggregate, or None for an empty bucket
        sensor_id: Sensor ID
        hour_bucket: Hour bucket key
        value: Reading value
        sensor_type: Sensor type of the reading
        location: Location of the reading
        now: ISO-8601 timestamp used for last_updated

    Returns:
        New Aggregate (existing is not modified)
    """
    if existing is None:
        return start_aggregate(sensor_id, hour_bucket, value, sensor_type, location, now)

    new_count = existing.count + 1
    new_sum = existing.running_sum() + value
    new_avg = round(new_sum / new_count, AVG_DECIMAL_PLACES)
    new_min = min(existing.min, value)
    new_max = max(existing.max, value)

    # Rounding can push avg a hair outside [min, max] when all values are close
    new_avg = min(max(new_avg, new_min), new_max)

    return Aggregate(
        sensor_id=existing.sensor_id,
        hour_bucket=existing.hour_bucket,
        avg=new_avg,
        min=new_min,
        max=new_max,
        count=new_count,
        last_updated=now,
        sensor_type=sensor_type,
        location=location,
        sum=new_sum
    )
