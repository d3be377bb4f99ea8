"""
Reading normalization for DynamoDB Stream records.

Turns a raw stream record into one of three results:
- a typed Reading
- a skip (event kind not handled, or no NewImage)
- an invalid record (shape or type violation), logged and dropped
"""

import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Any, Optional

from aws_lambda_powertools import Logger

from shared.dynamodb_helpers import parse_dynamodb_item, get_new_image
from shared.errors import InvalidReadingError, MalformedTimestampError
from shared.models import EventKind, Reading
from shared.time_utils import derive_hour_bucket

logger = Logger(child=True)

ACCEPTED_EVENT_KINDS = (EventKind.INSERT.value, EventKind.MODIFY.value)


@dataclass(frozen=True)
class NormalizedRecord:
    """Result of normalizing a single stream record."""
    reading: Optional[Reading] = None
    hour_bucket: Optional[str] = None
    skip_reason: Optional[str] = None
    invalid_reason: Optional[str] = None

    @property
    def is_skip(self) -> bool:
        return self.skip_reason is not None

    @property
    def is_invalid(self) -> bool:
        return self.invalid_reason is not None


def _require_text(item: Dict[str, Any], field_name: str) -> str:
    value = item.get(field_name)
    if not isinstance(value, str) or not value.strip():
        raise InvalidReadingError(f"{field_name} must be a non-empty string")
    return value


def _require_number(item: Dict[str, Any], field_name: str) -> float:
    value = item.get(field_name)
    # bool is an int subclass; TypeDeserializer yields bool for BOOL attributes
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise InvalidReadingError(f"{field_name} must be numeric")
    number = float(value)
    if not math.isfinite(number):
        raise InvalidReadingError(f"{field_name} must be finite")
    return number


def _optional_text(item: Dict[str, Any], field_name: str) -> str:
    value = item.get(field_name)
    return value if isinstance(value, str) else ""


def parse_reading(item: Dict[str, Any]) -> Reading:
    """
    Build a Reading from a deserialized item.

    Args:
        item: Plain dict (already deserialized from DynamoDB format)

    Returns:
        Reading

    Raises:
        InvalidReadingError: If a required field is missing or mistyped
    """
    return Reading(
        sensor_id=_require_text(item, "sensor_id"),
        timestamp=_require_text(item, "timestamp"),
        value=_require_number(item, "value"),
        type=_optional_text(item, "type"),
        location=_optional_text(item, "location"),
        environment=_optional_text(item, "environment")
    )


def normalize_stream_record(record: Dict[str, Any]) -> NormalizedRecord:
    """
    Normalize a DynamoDB Stream record into a Reading.

    Never raises for bad input: a single bad record must not abort the batch.

    Args:
        record: DynamoDB Stream record

    Returns:
        NormalizedRecord carrying a reading, a skip reason or an invalid reason
    """
    event_name = record.get("eventName")
    if event_name not in ACCEPTED_EVENT_KINDS:
        logger.debug("Skipping non-INSERT/MODIFY event", extra={"event_name": event_name})
        return NormalizedRecord(skip_reason=f"event kind {event_name}")

    new_image = get_new_image(record)
    if new_image is None:
        logger.warning("Stream record missing NewImage", extra={"event_name": event_name})
        return NormalizedRecord(skip_reason="missing NewImage")

    try:
        item = parse_dynamodb_item(new_image)
        reading = parse_reading(item)
        hour_bucket = derive_hour_bucket(reading.timestamp)
    except (InvalidReadingError, MalformedTimestampError) as e:
        return NormalizedRecord(invalid_reason=str(e))
    except (TypeError, ValueError, AttributeError, ArithmeticError) as e:
        # TypeDeserializer rejects unknown or malformed type descriptors
        return NormalizedRecord(invalid_reason=f"undecodable NewImage: {e}")

    return NormalizedRecord(reading=reading, hour_bucket=hour_bucket)
