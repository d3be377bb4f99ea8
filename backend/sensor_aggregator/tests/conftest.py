"""
Pytest configuration and shared fixtures for sensor aggregator tests.
"""

import os

import pytest

# Set environment variables before any Lambda module is imported
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("POWERTOOLS_SERVICE_NAME", "sensor-aggregator-test")
os.environ.setdefault("POWERTOOLS_TRACE_DISABLED", "true")
os.environ.setdefault("SENSOR_AGGREGATES_TABLE", "test-aggregates-table")
os.environ.setdefault("SENSOR_EVENTS_TABLE", "test-events-table")

from shared.models import Aggregate


def make_stream_record(
    event_name="INSERT",
    sensor_id="sensor-1",
    timestamp="2025-07-13T14:05:00.000Z",
    value=20.0,
    sensor_type="temperature",
    location="greenhouse-a",
    sequence_number="100",
    new_image=None
):
    """Build a DynamoDB Stream record in low-level attribute format."""
    if new_image is None:
        new_image = {
            "sensor_id": {"S": sensor_id},
            "timestamp": {"S": timestamp},
            "type": {"S": sensor_type},
            "value": {"N": str(value)},
            "location": {"S": location},
            "environment": {"S": "dev"},
        }
    dynamodb = {"SequenceNumber": sequence_number}
    if new_image is not False:
        dynamodb["NewImage"] = new_image
    return {"eventName": event_name, "dynamodb": dynamodb}


@pytest.fixture
def stream_record():
    """Fixture exposing the stream record factory."""
    return make_stream_record


@pytest.fixture
def sample_aggregate():
    """Fixture providing an aggregate after two readings (20.0, 24.0)."""
    return Aggregate(
        sensor_id="sensor-1",
        hour_bucket="2025-07-13T14:00:00",
        avg=22.0,
        min=20.0,
        max=24.0,
        count=2,
        last_updated="2025-07-13T14:10:00.000Z",
        sensor_type="temperature",
        location="greenhouse-a",
        sum=44.0,
    )


@pytest.fixture
def fixed_clock():
    """Clock returning a constant ISO timestamp."""
    return lambda: "2025-07-13T14:59:59.000Z"


@pytest.fixture
def no_sleep():
    """Sleep replacement that records requested delays."""
    delays = []

    def sleep(seconds):
        delays.append(seconds)

    sleep.delays = delays
    return sleep
