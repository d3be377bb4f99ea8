"""
Ingest API Lambda handler

Front-door endpoint that validates a single sensor reading and writes it to
the sensor events table. The events table stream feeds the Aggregate Lambda.
"""

import json
import math
from dataclasses import replace
from typing import Dict, Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from aws_lambda_powertools import Logger
from aws_lambda_powertools.event_handler import APIGatewayRestResolver, CORSConfig, Response, content_types
from aws_lambda_powertools.event_handler.exceptions import BadRequestError
from aws_lambda_powertools.utilities.typing import LambdaContext

from shared.config import AggregatorSettings, load_secret_bundle
from shared.models import Reading
from shared.time_utils import utc_now_iso

logger = Logger()
cors_config = CORSConfig(
    allow_origin="*",
    allow_headers=["Content-Type", "X-Amz-Date", "Authorization", "X-Api-Key"]
)
app = APIGatewayRestResolver(cors=cors_config)

# Initialize DynamoDB client
dynamodb = boto3.client("dynamodb")

_base_settings = AggregatorSettings.from_env()
SETTINGS = replace(_base_settings, secrets=load_secret_bundle(_base_settings.secret_arn))

REQUIRED_FIELDS = "sensor_id, type, value, location"


def _json_response(status_code: int, body: Dict[str, Any]) -> Response:
    return Response(
        status_code=status_code,
        content_type=content_types.APPLICATION_JSON,
        body=json.dumps(body)
    )


def validate_sensor_data(data: Any) -> bool:
    """
    Check that a request payload carries a complete sensor reading.

    Args:
        data: Decoded JSON payload

    Returns:
        True if sensor_id, type and location are non-empty strings and value is a finite number
    """
    if not isinstance(data, dict):
        return False

    for field_name in ("sensor_id", "type", "location"):
        value = data.get(field_name)
        if not isinstance(value, str) or not value.strip():
            return False

    value = data.get("value")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def build_reading(data: Dict[str, Any], environment: str) -> Reading:
    """Stamp a validated payload with the ingest time and environment."""
    return Reading(
        sensor_id=data["sensor_id"],
        timestamp=utc_now_iso(),
        value=float(data["value"]),
        type=data["type"],
        location=data["location"],
        environment=environment
    )


def store_reading(reading: Reading) -> None:
    """
    Write a reading to the events table.

    Raises:
        ClientError: ConditionalCheckFailedException if (sensor_id, timestamp) exists
    """
    dynamodb.put_item(
        TableName=SETTINGS.events_table,
        Item={
            "sensor_id": {"S": reading.sensor_id},
            "timestamp": {"S": reading.timestamp},
            "type": {"S": reading.type},
            "value": {"N": str(reading.value)},
            "location": {"S": reading.location},
            "environment": {"S": reading.environment}
        },
        ConditionExpression="attribute_not_exists(sensor_id) AND attribute_not_exists(#ts)",
        ExpressionAttributeNames={"#ts": "timestamp"}
    )


@app.post("/sensor-data")
def ingest_sensor_data():
    """
    Ingest a single sensor reading.

    Request body:
    - sensor_id, type, location: non-empty strings
    - value: number

    Returns:
    - 201 with the stored reading identity
    - 400 on invalid JSON or missing fields
    - 409 when a reading with the same sensor_id and timestamp exists
    """
    body = app.current_event.body
    if not body:
        raise BadRequestError("Request body is required")

    try:
        sensor_data = json.loads(body)
    except json.JSONDecodeError:
        raise BadRequestError("Invalid JSON in request body")

    if not validate_sensor_data(sensor_data):
        raise BadRequestError(f"Invalid sensor data format. Required fields: {REQUIRED_FIELDS}")

    reading = build_reading(sensor_data, SETTINGS.environment)

    try:
        store_reading(reading)
    except (ClientError, BotoCoreError) as e:
        if isinstance(e, ClientError) and e.response["Error"]["Code"] == "ConditionalCheckFailedException":
            return _json_response(409, {
                "error": "Conflict",
                "message": "Sensor event with this sensor_id and timestamp already exists"
            })
        logger.error("Failed to store sensor reading", extra={"error": str(e)[:256]})
        return _json_response(500, {
            "error": "Internal server error",
            "message": "Failed to process sensor data",
            "details": str(e) if SETTINGS.environment == "dev" else None
        })

    logger.info("Stored sensor reading", extra={"reading_id": reading.reading_id})

    return _json_response(201, {
        "message": "Sensor data ingested successfully",
        "data": {
            "sensor_id": reading.sensor_id,
            "timestamp": reading.timestamp,
            "type": reading.type,
            "location": reading.location
        }
    })


@logger.inject_lambda_context
def lambda_handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Lambda handler for the ingest API.

    Args:
        event: API Gateway event
        context: Lambda context

    Returns:
        API Gateway response
    """
    return app.resolve(event, context)
