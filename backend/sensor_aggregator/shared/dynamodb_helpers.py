"""
DynamoDB Stream record parsing utilities.
"""

from typing import Dict, Any, Optional
from boto3.dynamodb.types import TypeDeserializer


# Initialize the deserializer
deserializer = TypeDeserializer()


def parse_dynamodb_item(dynamodb_item: Dict[str, Any]) -> Dict[str, Any]:
    """
    Parse a DynamoDB item from stream format to Python dict.

    Uses boto3's TypeDeserializer for proper type conversion.

    Args:
        dynamodb_item: DynamoDB item in stream format (with type descriptors like 'S', 'N', etc.)

    Returns:
        Parsed item as Python dict with native types
    """
    if not dynamodb_item:
        return {}

    python_dict = {}
    for key, value in dynamodb_item.items():
        python_dict[key] = deserializer.deserialize(value)

    return python_dict


def get_new_image(record: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Return the raw NewImage of a stream record, or None when absent."""
    new_image = (record.get("dynamodb") or {}).get("NewImage")
    return new_image or None


def get_sequence_number(record: Dict[str, Any]) -> Optional[str]:
    """Return the stream sequence number used for partial batch failures."""
    return (record.get("dynamodb") or {}).get("SequenceNumber")
