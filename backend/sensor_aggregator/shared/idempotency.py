"""
Reading idempotency ledger.

Records which readings were already folded so that duplicate stream
deliveries (at-least-once) and MODIFY events for the same reading do not
count twice. Backed by a processed-readings table keyed by reading_id, or
by an in-process dict for local runs and tests.
"""

import time
from threading import Lock
from typing import Any, Dict

from aws_lambda_powertools import Logger
from botocore.exceptions import BotoCoreError, ClientError

from shared.errors import StorageUnavailableError

logger = Logger(child=True)

LEDGER_TTL_SECONDS = 30 * 24 * 60 * 60  # 30 days


class ReadingLedger:
    """Conditional-write ledger of processed reading ids."""

    def __init__(self, dynamodb_client: Any, table_name: str):
        self.dynamodb = dynamodb_client
        self.table_name = table_name

    def mark_processed_if_absent(self, reading_id: str, sensor_id: str) -> bool:
        """
        Mark reading as processed for aggregation using conditional write.

        Args:
            reading_id: Reading ID (sensor_id#timestamp)
            sensor_id: Sensor ID

        Returns:
            True if successfully marked, False if already marked

        Raises:
            StorageUnavailableError: On backend failure
        """
        now_ms = int(time.time() * 1000)
        ttl = int(time.time()) + LEDGER_TTL_SECONDS

        try:
            self.dynamodb.update_item(
                TableName=self.table_name,
                Key={"reading_id": {"S": reading_id}},
                UpdateExpression="SET aggregate_processed_at_ms = :now, sensor_id = :sensor_id, #ttl = :ttl",
                ConditionExpression="attribute_not_exists(aggregate_processed_at_ms)",
                ExpressionAttributeNames={"#ttl": "ttl"},
                ExpressionAttributeValues={
                    ":now": {"N": str(now_ms)},
                    ":sensor_id": {"S": sensor_id},
                    ":ttl": {"N": str(ttl)}
                }
            )
            return True

        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                logger.debug(
                    "Reading already marked as aggregate processed",
                    extra={"reading_id": reading_id}
                )
                return False
            logger.error(
                "Error marking reading as aggregate processed",
                extra={"reading_id": reading_id, "error": str(e)}
            )
            raise StorageUnavailableError(
                "mark_reading_processed", e.response["Error"]["Code"], str(e)
            ) from e
        except BotoCoreError as e:
            raise StorageUnavailableError("mark_reading_processed", type(e).__name__, str(e)) from e

    def release(self, reading_id: str) -> None:
        """
        Remove the processed mark so a redelivered reading is folded again.

        Called when folding fails after the mark was written. Errors are
        logged and not raised; the original failure is what gets reported.
        """
        try:
            self.dynamodb.delete_item(
                TableName=self.table_name,
                Key={"reading_id": {"S": reading_id}}
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "Failed to release processed mark",
                extra={"reading_id": reading_id, "error": str(e)[:256]}
            )


class InMemoryReadingLedger(ReadingLedger):
    """Thread-safe in-process ledger with the same conditional semantics."""

    def __init__(self):
        self._processed: Dict[str, str] = {}
        self._lock = Lock()

    def mark_processed_if_absent(self, reading_id: str, sensor_id: str) -> bool:
        with self._lock:
            if reading_id in self._processed:
                return False
            self._processed[reading_id] = sensor_id
            return True

    def release(self, reading_id: str) -> None:
        with self._lock:
            self._processed.pop(reading_id, None)

    def __contains__(self, reading_id: str) -> bool:
        with self._lock:
            return reading_id in self._processed
