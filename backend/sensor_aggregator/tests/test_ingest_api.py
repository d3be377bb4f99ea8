"""
Unit tests for the ingest API endpoint.
"""

import json

import pytest
from unittest.mock import Mock, patch
from botocore.exceptions import ClientError

from functions.ingest import app, lambda_handler, validate_sensor_data


def ingest_event(body):
    return {
        "resource": "/sensor-data",
        "path": "/sensor-data",
        "httpMethod": "POST",
        "headers": {"Content-Type": "application/json"},
        "queryStringParameters": None,
        "pathParameters": None,
        "body": body if body is None or isinstance(body, str) else json.dumps(body)
    }


@pytest.fixture
def valid_payload():
    return {"sensor_id": "sensor-1", "type": "temperature", "value": 21.5, "location": "greenhouse-a"}


class TestValidateSensorData:
    """Tests for payload validation."""

    def test_valid(self, valid_payload):
        assert validate_sensor_data(valid_payload) is True

    def test_integer_value(self, valid_payload):
        valid_payload["value"] = 21
        assert validate_sensor_data(valid_payload) is True

    @pytest.mark.parametrize("field_name", ["sensor_id", "type", "value", "location"])
    def test_missing_field(self, valid_payload, field_name):
        del valid_payload[field_name]
        assert validate_sensor_data(valid_payload) is False

    @pytest.mark.parametrize("value", ["21.5", True, None, float("nan")])
    def test_bad_value(self, valid_payload, value):
        valid_payload["value"] = value
        assert validate_sensor_data(valid_payload) is False

    def test_blank_sensor_id(self, valid_payload):
        valid_payload["sensor_id"] = "  "
        assert validate_sensor_data(valid_payload) is False

    def test_not_an_object(self):
        assert validate_sensor_data(["sensor-1"]) is False


class TestIngestEndpoint:
    """Tests for POST /sensor-data."""

    @patch("functions.ingest.dynamodb")
    def test_ingest_success(self, mock_dynamodb, valid_payload):
        response = app.resolve(ingest_event(valid_payload), Mock())

        assert response["statusCode"] == 201
        body = json.loads(response["body"])
        assert body["data"]["sensor_id"] == "sensor-1"
        assert body["data"]["timestamp"].endswith("Z")

        kwargs = mock_dynamodb.put_item.call_args.kwargs
        assert kwargs["TableName"] == "test-events-table"
        assert kwargs["Item"]["value"] == {"N": "21.5"}
        assert kwargs["Item"]["timestamp"] == {"S": body["data"]["timestamp"]}
        assert "attribute_not_exists" in kwargs["ConditionExpression"]

    @patch("functions.ingest.dynamodb")
    def test_empty_body(self, mock_dynamodb):
        response = app.resolve(ingest_event(None), Mock())

        assert response["statusCode"] == 400
        mock_dynamodb.put_item.assert_not_called()

    @patch("functions.ingest.dynamodb")
    def test_invalid_json(self, mock_dynamodb):
        response = app.resolve(ingest_event("{not json"), Mock())

        assert response["statusCode"] == 400
        assert "Invalid JSON" in json.loads(response["body"])["message"]

    @patch("functions.ingest.dynamodb")
    def test_missing_fields(self, mock_dynamodb):
        response = app.resolve(ingest_event({"sensor_id": "sensor-1"}), Mock())

        assert response["statusCode"] == 400
        mock_dynamodb.put_item.assert_not_called()

    @patch("functions.ingest.dynamodb")
    def test_duplicate_reading(self, mock_dynamodb, valid_payload):
        mock_dynamodb.put_item.side_effect = ClientError(
            {"Error": {"Code": "ConditionalCheckFailedException", "Message": "exists"}}, "PutItem"
        )

        response = app.resolve(ingest_event(valid_payload), Mock())

        assert response["statusCode"] == 409
        assert json.loads(response["body"])["error"] == "Conflict"

    @patch("functions.ingest.dynamodb")
    def test_storage_failure(self, mock_dynamodb, valid_payload):
        mock_dynamodb.put_item.side_effect = ClientError(
            {"Error": {"Code": "InternalServerError", "Message": "down"}}, "PutItem"
        )

        response = app.resolve(ingest_event(valid_payload), Mock())

        assert response["statusCode"] == 500
        body = json.loads(response["body"])
        assert body["error"] == "Internal server error"
        # Details are only exposed in dev
        assert body["details"]

    @patch("functions.ingest.dynamodb")
    def test_lambda_handler_routes(self, mock_dynamodb, valid_payload):
        response = lambda_handler(ingest_event(valid_payload), Mock())

        assert response["statusCode"] == 201

    def test_cors_preflight(self):
        event = ingest_event(None)
        event["httpMethod"] = "OPTIONS"
        event["headers"] = {"Origin": "https://dashboard.example.com"}

        response = app.resolve(event, Mock())

        assert response["statusCode"] == 204
