"""
Stream batch processing for hourly aggregation.

AggregationService folds one reading into its hourly aggregate with bounded
retries on conditional-write conflicts. BatchProcessor runs every record of a
delivered batch on a bounded thread pool, isolating failures per record and
reporting partial batch failures for redelivery.
"""

import time
from concurrent.futures import ThreadPoolExecutor, wait
from contextlib import nullcontext
from typing import Any, Callable, Dict, List, Optional, Tuple

from aws_lambda_powertools import Logger

from shared.aggregate_store import AggregateStore
from shared.aggregation import fold_reading
from shared.deadline import BatchDeadline, RecordDeadline
from shared.dynamodb_helpers import get_sequence_number
from shared.errors import BatchTimeoutError, ConcurrencyConflictError
from shared.idempotency import ReadingLedger
from shared.key_locks import KeyLockRegistry
from shared.logging_utils import (
    log_aggregate_update,
    log_conflict_retry,
    log_invalid_reading,
    log_stream_processing_error,
)
from shared.models import Aggregate, BatchResult, Reading, RecordOutcome, RecordResult
from shared.reading_normalizer import normalize_stream_record
from shared.retry_utils import RetryPolicy, retry_with_backoff
from shared.time_utils import derive_hour_bucket, utc_now_iso

logger = Logger(child=True)


class AggregationService:
    """Applies single readings to the aggregate store."""

    def __init__(
        self,
        store: AggregateStore,
        retry_policy: Optional[RetryPolicy] = None,
        key_locks: Optional[KeyLockRegistry] = None,
        clock: Callable[[], str] = utc_now_iso,
        sleep: Callable[[float], Any] = time.sleep
    ):
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()
        self.key_locks = key_locks
        self.clock = clock
        self.sleep = sleep

    def _fold_and_write(
        self,
        reading: Reading,
        hour_bucket: str,
        deadline: Optional[RecordDeadline] = None
    ) -> Tuple[Aggregate, str]:
        # An empty KeyLockRegistry is falsy (it defines __len__)
        if self.key_locks is not None:
            lock = self.key_locks.hold(reading.sensor_id, hour_bucket)
        else:
            lock = nullcontext()
        write_slot = deadline.write_slot() if deadline is not None else nullcontext()

        with lock:
            existing = self.store.read(reading.sensor_id, hour_bucket)
            next_state = fold_reading(
                existing,
                sensor_id=reading.sensor_id,
                hour_bucket=hour_bucket,
                value=reading.value,
                sensor_type=reading.type,
                location=reading.location,
                now=self.clock()
            )
            with write_slot:
                if existing is None:
                    self.store.create(next_state)
                    return next_state, "create"

                self.store.update(next_state, expected_count=existing.count)
                return next_state, "update"

    def apply_reading(
        self,
        reading: Reading,
        hour_bucket: Optional[str] = None,
        deadline: Optional[RecordDeadline] = None
    ) -> Tuple[Aggregate, int]:
        """
        Fold a reading into its hourly aggregate.

        Retries from the read step on AlreadyExists, Vanished and Conflict.
        When a deadline is given, no write or retry starts after it expires.

        Args:
            reading: Valid reading
            hour_bucket: Precomputed hour bucket (derived when omitted)
            deadline: Optional per-record view of the batch deadline

        Returns:
            Tuple of (written aggregate, conflict retries taken)

        Raises:
            RetriesExhaustedError: If conflicts persist past the retry policy
            StorageUnavailableError: On backend failure
            BatchTimeoutError: If the deadline expired before the write
        """
        hour_bucket = hour_bucket or derive_hour_bucket(reading.timestamp)
        attempts = 0

        def attempt() -> Tuple[Aggregate, str]:
            nonlocal attempts
            attempts += 1
            if deadline is not None:
                deadline.check()
            try:
                return self._fold_and_write(reading, hour_bucket, deadline)
            except ConcurrencyConflictError as e:
                log_conflict_retry(logger, reading.sensor_id, hour_bucket, type(e).__name__, attempts)
                raise

        def backoff(delay: float) -> None:
            if deadline is not None:
                deadline.check()
            self.sleep(delay)

        (aggregate, update_type), retries = retry_with_backoff(
            attempt,
            policy=self.retry_policy,
            exceptions=(ConcurrencyConflictError,),
            logger_instance=logger,
            sleep=backoff,
            context={"sensor_id": reading.sensor_id, "hour_bucket": hour_bucket}
        )

        log_aggregate_update(
            logger=logger,
            sensor_id=reading.sensor_id,
            hour_bucket=hour_bucket,
            update_type=update_type,
            count=aggregate.count,
            retries=retries,
            reading_id=reading.reading_id
        )
        return aggregate, retries


class BatchProcessor:
    """Drives one delivered stream batch to completion."""

    def __init__(
        self,
        service: AggregationService,
        ledger: Optional[ReadingLedger] = None,
        max_concurrency: int = 10
    ):
        self.service = service
        self.ledger = ledger
        self.max_concurrency = max(1, max_concurrency)

    def process_record(
        self,
        record: Dict[str, Any],
        deadline: Optional[RecordDeadline] = None
    ) -> RecordResult:
        """
        Process a single DynamoDB Stream record.

        Validation problems and skips are returned as outcomes; hard errors
        are returned as FAILED so sibling records are unaffected.

        Args:
            record: DynamoDB Stream record
            deadline: Optional per-record view of the batch deadline

        Returns:
            RecordResult
        """
        sequence_number = get_sequence_number(record)
        normalized = normalize_stream_record(record)

        if normalized.is_skip:
            return RecordResult(RecordOutcome.SKIPPED, sequence_number=sequence_number)

        if normalized.is_invalid:
            log_invalid_reading(
                logger,
                reason=normalized.invalid_reason,
                sequence_number=sequence_number,
                event_name=record.get("eventName")
            )
            return RecordResult(
                RecordOutcome.INVALID,
                sequence_number=sequence_number,
                error=normalized.invalid_reason
            )

        reading = normalized.reading
        result = RecordResult(
            RecordOutcome.APPLIED,
            sequence_number=sequence_number,
            sensor_id=reading.sensor_id,
            hour_bucket=normalized.hour_bucket
        )
        marked = False

        try:
            if deadline is not None:
                deadline.check()
            if self.ledger is not None:
                marked = self.ledger.mark_processed_if_absent(reading.reading_id, reading.sensor_id)
                if not marked:
                    result.outcome = RecordOutcome.DUPLICATE
                    return result

            _, result.retries = self.service.apply_reading(reading, normalized.hour_bucket, deadline=deadline)
            return result

        except Exception as e:
            if marked:
                self.ledger.release(reading.reading_id)
            log_stream_processing_error(
                logger,
                sequence_number=sequence_number,
                error_message=str(e),
                error_type=type(e).__name__,
                sensor_id=reading.sensor_id,
                reading_id=reading.reading_id
            )
            result.outcome = RecordOutcome.FAILED
            result.error = f"{type(e).__name__}: {e}"
            return result

    def _process_isolated(self, record: Dict[str, Any], deadline: RecordDeadline) -> RecordResult:
        try:
            return self.process_record(record, deadline)
        except Exception as e:
            sequence_number = get_sequence_number(record)
            log_stream_processing_error(
                logger,
                sequence_number=sequence_number,
                error_message=str(e),
                error_type=type(e).__name__
            )
            return RecordResult(
                RecordOutcome.FAILED,
                sequence_number=sequence_number,
                error=f"{type(e).__name__}: {e}"
            )

    def process_batch(
        self,
        records: List[Dict[str, Any]],
        timeout_seconds: Optional[float] = None
    ) -> BatchResult:
        """
        Process all records of a batch concurrently.

        Records have no ordering guarantee relative to one another. When
        timeout_seconds elapses, no further aggregate write may start; writes
        already in flight finish and those records report their real outcome.
        Every other unfinished record is reported FAILED without having
        touched its aggregate, so redelivery folds it exactly once.

        Args:
            records: DynamoDB Stream records
            timeout_seconds: Optional deadline for the whole batch

        Returns:
            BatchResult with one RecordResult per record, in input order
        """
        if not records:
            return BatchResult()

        results: List[Optional[RecordResult]] = [None] * len(records)
        batch_deadline = BatchDeadline()
        record_deadlines = [batch_deadline.for_record() for _ in records]
        executor = ThreadPoolExecutor(
            max_workers=min(self.max_concurrency, len(records)),
            thread_name_prefix="aggregate"
        )
        try:
            futures = {
                executor.submit(self._process_isolated, record, record_deadlines[index]): index
                for index, record in enumerate(records)
            }
            done, not_done = wait(futures, timeout=timeout_seconds)

            if not_done:
                batch_deadline.expire()
                # In-flight writes have drained; committed records only have logging left
                committed = {
                    future for future in not_done
                    if record_deadlines[futures[future]].committed
                }
                wait(committed)
                done |= committed
                not_done -= committed
                logger.warning(
                    "Batch deadline reached",
                    extra={
                        "timeout_seconds": timeout_seconds,
                        "committed_after_deadline": len(committed),
                        "unfinished_records": len(not_done)
                    }
                )

            for future in done:
                results[futures[future]] = future.result()

            for future in not_done:
                future.cancel()
                index = futures[future]
                sequence_number = get_sequence_number(records[index])
                error = BatchTimeoutError(f"record not finished within {timeout_seconds}s")
                log_stream_processing_error(
                    logger,
                    sequence_number=sequence_number,
                    error_message=str(error),
                    error_type=type(error).__name__
                )
                results[index] = RecordResult(
                    RecordOutcome.FAILED,
                    sequence_number=sequence_number,
                    error=f"{type(error).__name__}: {error}"
                )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        batch = BatchResult(results=results)
        logger.info(
            "Batch processed",
            extra={"record_count": len(records), **batch.summary()}
        )
        return batch
