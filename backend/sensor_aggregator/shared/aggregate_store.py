"""
Aggregate store accessors.

Reads and conditionally writes hourly aggregates keyed by
(sensor_id, hour_bucket):
- DynamoDBAggregateStore: boto3 low-level client against the aggregates table
- InMemoryAggregateStore: thread-safe local table with the same semantics

Both honor the configured ConcurrencyGuard on update. With the EXISTENCE
guard an update only requires the record to exist, so two writers that read
the same prior state overwrite each other. The VERSION guard additionally
requires the stored count to match the count that was read.
"""

from abc import ABC, abstractmethod
from dataclasses import replace
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple

from aws_lambda_powertools import Logger
from botocore.exceptions import BotoCoreError, ClientError

from shared.dynamodb_helpers import parse_dynamodb_item
from shared.errors import (
    AlreadyExistsError,
    ConflictError,
    StorageUnavailableError,
    VanishedError,
)
from shared.models import Aggregate, ConcurrencyGuard

logger = Logger(child=True)

CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"


class AggregateStore(ABC):
    """Interface for aggregate persistence."""

    guard: ConcurrencyGuard = ConcurrencyGuard.VERSION

    @abstractmethod
    def read(self, sensor_id: str, hour_bucket: str) -> Optional[Aggregate]:
        """Return the aggregate for an identity, or None."""
        pass

    @abstractmethod
    def create(self, aggregate: Aggregate) -> None:
        """Create an aggregate; raise AlreadyExistsError if present."""
        pass

    @abstractmethod
    def update(self, aggregate: Aggregate, expected_count: int) -> None:
        """Overwrite an aggregate under the configured guard."""
        pass


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "Unknown")


class DynamoDBAggregateStore(AggregateStore):
    """Aggregate store backed by a DynamoDB table (PK sensor_id, SK hour_bucket)."""

    def __init__(
        self,
        dynamodb_client: Any,
        table_name: str,
        guard: ConcurrencyGuard = ConcurrencyGuard.VERSION
    ):
        self.dynamodb = dynamodb_client
        self.table_name = table_name
        self.guard = guard

    @staticmethod
    def _key(sensor_id: str, hour_bucket: str) -> Dict[str, Any]:
        return {
            "sensor_id": {"S": sensor_id},
            "hour_bucket": {"S": hour_bucket}
        }

    def _storage_error(self, operation: str, error: Exception, sensor_id: str, hour_bucket: str):
        if isinstance(error, ClientError):
            error_code = _error_code(error)
        else:
            error_code = type(error).__name__

        logger.error(
            f"DynamoDB operation failed: {operation}",
            extra={
                "operation": operation,
                "error_code": error_code,
                "error_message": str(error)[:256],
                "table_name": self.table_name,
                "sensor_id": sensor_id,
                "hour_bucket": hour_bucket
            }
        )
        return StorageUnavailableError(operation, error_code, str(error))

    def read(self, sensor_id: str, hour_bucket: str) -> Optional[Aggregate]:
        """
        Point lookup of an aggregate.

        Args:
            sensor_id: Sensor ID
            hour_bucket: Hour bucket key

        Returns:
            Aggregate or None if absent

        Raises:
            StorageUnavailableError: On backend failure
        """
        try:
            response = self.dynamodb.get_item(
                TableName=self.table_name,
                Key=self._key(sensor_id, hour_bucket),
                ConsistentRead=True
            )
        except (ClientError, BotoCoreError) as e:
            raise self._storage_error("get_aggregate", e, sensor_id, hour_bucket) from e

        item = response.get("Item")
        if not item:
            return None
        return Aggregate.from_item(parse_dynamodb_item(item))

    def create(self, aggregate: Aggregate) -> None:
        """
        Create an aggregate only if none exists for its identity.

        Raises:
            AlreadyExistsError: If another writer created it first
            StorageUnavailableError: On backend failure
        """
        try:
            self.dynamodb.put_item(
                TableName=self.table_name,
                Item=aggregate.to_dynamodb_item(),
                ConditionExpression="attribute_not_exists(sensor_id) AND attribute_not_exists(hour_bucket)"
            )
        except ClientError as e:
            if _error_code(e) == CONDITIONAL_CHECK_FAILED:
                raise AlreadyExistsError(aggregate.sensor_id, aggregate.hour_bucket) from e
            raise self._storage_error("create_aggregate", e, aggregate.sensor_id, aggregate.hour_bucket) from e
        except BotoCoreError as e:
            raise self._storage_error("create_aggregate", e, aggregate.sensor_id, aggregate.hour_bucket) from e

    def update(self, aggregate: Aggregate, expected_count: int) -> None:
        """
        Overwrite the statistics of an existing aggregate.

        Args:
            aggregate: New aggregate state
            expected_count: Count observed when the aggregate was read

        Raises:
            VanishedError: If the record no longer exists
            ConflictError: If the record changed since it was read (VERSION guard only)
            StorageUnavailableError: On backend failure
        """
        expression_values = {
            ":avg": {"N": str(aggregate.avg)},
            ":min": {"N": str(aggregate.min)},
            ":max": {"N": str(aggregate.max)},
            ":count": {"N": str(aggregate.count)},
            ":sum": {"N": str(aggregate.running_sum())},
            ":updated": {"S": aggregate.last_updated},
            ":location": {"S": aggregate.location},
            ":type": {"S": aggregate.sensor_type}
        }
        condition = "attribute_exists(sensor_id)"
        if self.guard == ConcurrencyGuard.VERSION:
            condition += " AND #count = :expected_count"
            expression_values[":expected_count"] = {"N": str(expected_count)}

        try:
            self.dynamodb.update_item(
                TableName=self.table_name,
                Key=self._key(aggregate.sensor_id, aggregate.hour_bucket),
                UpdateExpression=(
                    "SET #avg = :avg, #min = :min, #max = :max, #count = :count, #sum = :sum, "
                    "last_updated = :updated, #location = :location, sensor_type = :type"
                ),
                ConditionExpression=condition,
                ExpressionAttributeNames={
                    "#avg": "avg",
                    "#min": "min",
                    "#max": "max",
                    "#count": "count",
                    "#sum": "sum",
                    "#location": "location"
                },
                ExpressionAttributeValues=expression_values,
                ReturnValuesOnConditionCheckFailure="ALL_OLD"
            )
        except ClientError as e:
            if _error_code(e) == CONDITIONAL_CHECK_FAILED:
                # ALL_OLD returns the current item when it still exists
                if self.guard == ConcurrencyGuard.VERSION and e.response.get("Item"):
                    raise ConflictError(aggregate.sensor_id, aggregate.hour_bucket, expected_count) from e
                raise VanishedError(aggregate.sensor_id, aggregate.hour_bucket) from e
            raise self._storage_error("update_aggregate", e, aggregate.sensor_id, aggregate.hour_bucket) from e
        except BotoCoreError as e:
            raise self._storage_error("update_aggregate", e, aggregate.sensor_id, aggregate.hour_bucket) from e


class InMemoryAggregateStore(AggregateStore):
    """Thread-safe in-process aggregate table with DynamoDB conditional semantics."""

    def __init__(self, guard: ConcurrencyGuard = ConcurrencyGuard.VERSION):
        self.guard = guard
        self._items: Dict[Tuple[str, str], Aggregate] = {}
        self._lock = Lock()

    def read(self, sensor_id: str, hour_bucket: str) -> Optional[Aggregate]:
        with self._lock:
            item = self._items.get((sensor_id, hour_bucket))
            return replace(item) if item is not None else None

    def create(self, aggregate: Aggregate) -> None:
        key = (aggregate.sensor_id, aggregate.hour_bucket)
        with self._lock:
            if key in self._items:
                raise AlreadyExistsError(*key)
            self._items[key] = replace(aggregate)

    def update(self, aggregate: Aggregate, expected_count: int) -> None:
        key = (aggregate.sensor_id, aggregate.hour_bucket)
        with self._lock:
            current = self._items.get(key)
            if current is None:
                raise VanishedError(*key)
            if self.guard == ConcurrencyGuard.VERSION and current.count != expected_count:
                raise ConflictError(aggregate.sensor_id, aggregate.hour_bucket, expected_count)
            self._items[key] = replace(aggregate)

    def delete(self, sensor_id: str, hour_bucket: str) -> None:
        """Remove an aggregate. Only used to simulate out-of-band deletes."""
        with self._lock:
            self._items.pop((sensor_id, hour_bucket), None)

    def scan(self) -> List[Aggregate]:
        """Return copies of all stored aggregates."""
        with self._lock:
            return [replace(item) for item in self._items.values()]
