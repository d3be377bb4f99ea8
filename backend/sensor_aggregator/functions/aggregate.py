"""
Aggregate Lambda Handler

Processes DynamoDB Stream records from the sensor events table and maintains
hourly aggregates (avg, min, max, count) per sensor:
- Bounded-concurrency processing of each delivered batch
- Optimistic concurrency with bounded retries on conflicts
- Partial batch failures for records that hit hard errors
"""

from dataclasses import replace
from typing import Dict, Any, Optional

import boto3
from botocore.config import Config
from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities.typing import LambdaContext

from shared.aggregate_store import DynamoDBAggregateStore
from shared.batch_processor import AggregationService, BatchProcessor
from shared.config import AggregatorSettings, load_secret_bundle
from shared.idempotency import ReadingLedger
from shared.key_locks import KeyLockRegistry

logger = Logger()

# DynamoDB client (boto3 standard retry mode handles throttling)
dynamodb = boto3.client("dynamodb", config=Config(retries={"mode": "standard", "max_attempts": 3}))


def build_processor(settings: AggregatorSettings, dynamodb_client: Any) -> BatchProcessor:
    """
    Wire the batch processor from settings.

    Args:
        settings: Resolved settings
        dynamodb_client: boto3 DynamoDB client

    Returns:
        BatchProcessor
    """
    store = DynamoDBAggregateStore(
        dynamodb_client,
        table_name=settings.aggregates_table,
        guard=settings.concurrency_guard
    )
    service = AggregationService(
        store,
        retry_policy=settings.retry_policy,
        key_locks=KeyLockRegistry() if settings.serialize_per_key else None
    )
    ledger = None
    if settings.dedup_readings:
        ledger = ReadingLedger(dynamodb_client, settings.processed_readings_table)

    return BatchProcessor(service, ledger=ledger, max_concurrency=settings.max_concurrency)


def _load_settings() -> AggregatorSettings:
    settings = AggregatorSettings.from_env()
    secrets = load_secret_bundle(settings.secret_arn)
    logger.info(
        "Aggregator configured",
        extra={
            "aggregates_table": settings.aggregates_table,
            "environment": settings.environment,
            "concurrency_guard": settings.concurrency_guard.value,
            "serialize_per_key": settings.serialize_per_key,
            "max_concurrency": settings.max_concurrency,
            "dedup_enabled": settings.dedup_readings,
            "secret_keys": len(secrets)
        }
    )
    return replace(settings, secrets=secrets)


# Resolved once per cold start
SETTINGS = _load_settings()
processor = build_processor(SETTINGS, dynamodb)


def remaining_time_budget(context: Optional[LambdaContext], margin_ms: int) -> Optional[float]:
    """
    Seconds left for batch processing before the Lambda deadline.

    Args:
        context: Lambda context (may be None or lack timing information)
        margin_ms: Time kept in reserve for logging and the response

    Returns:
        Timeout in seconds, or None when no deadline is known
    """
    get_remaining = getattr(context, "get_remaining_time_in_millis", None)
    if not callable(get_remaining):
        return None
    try:
        remaining_ms = int(get_remaining())
    except (TypeError, ValueError):
        return None
    return max(remaining_ms - margin_ms, 0) / 1000.0


@logger.inject_lambda_context
def lambda_handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Lambda handler for hourly aggregation.

    Args:
        event: DynamoDB Stream event containing Records
        context: Lambda context

    Returns:
        Response with batch item failures for partial batch failure handling

    Raises:
        RuntimeError: If a failed record has no sequence number, so the whole
            batch must be retried
    """
    records = event.get("Records", [])
    logger.info("Aggregate Lambda invoked", extra={"record_count": len(records)})

    timeout_seconds = remaining_time_budget(context, SETTINGS.batch_timeout_margin_ms)
    result = processor.process_batch(records, timeout_seconds=timeout_seconds)

    batch_item_failures = result.batch_item_failures()
    if len(batch_item_failures) < len(result.failed):
        # Without an identifier the only safe signal is failing the whole batch
        raise RuntimeError(f"{len(result.failed)} records failed; batch must be redelivered")

    logger.info(
        "Aggregate processing complete",
        extra={
            "total_records": len(records),
            "failed_records": len(batch_item_failures)
        }
    )

    return {
        "batchItemFailures": batch_item_failures,
        "summary": result.summary()
    }
