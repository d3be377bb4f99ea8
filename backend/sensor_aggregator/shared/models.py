"""
Data models for the sensor aggregator.

Contains domain models and persistence models:
- Reading
- Aggregate
- EventKind
- RecordOutcome / RecordResult
"""

from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any
from enum import Enum


class EventKind(str, Enum):
    """DynamoDB Stream event names."""
    INSERT = "INSERT"
    MODIFY = "MODIFY"
    REMOVE = "REMOVE"


class ConcurrencyGuard(str, Enum):
    """Condition used to guard aggregate updates."""
    EXISTENCE = "existence"  # record exists (lost updates possible)
    VERSION = "version"      # record exists and count is unchanged since read


class RecordOutcome(str, Enum):
    """Per-record processing outcome."""
    APPLIED = "applied"
    SKIPPED = "skipped"
    INVALID = "invalid"
    DUPLICATE = "duplicate"
    FAILED = "failed"


@dataclass(frozen=True)
class Reading:
    """Sensor reading decoded from a stream record."""
    sensor_id: str
    timestamp: str
    value: float
    type: str = ""
    location: str = ""
    environment: str = ""

    @property
    def reading_id(self) -> str:
        """Identity of the reading in the events table."""
        return f"{self.sensor_id}#{self.timestamp}"


@dataclass
class Aggregate:
    """
    Hourly statistics for one sensor.

    Identity is (sensor_id, hour_bucket). `sum` is kept beside `avg` so that
    accumulation stays exact; records written without it fall back to
    avg * count.
    """
    sensor_id: str
    hour_bucket: str
    avg: float
    min: float
    max: float
    count: int
    last_updated: str
    sensor_type: str = ""
    location: str = ""
    sum: Optional[float] = None

    def running_sum(self) -> float:
        """Return the stored sum, reconstructing it from avg for older records."""
        if self.sum is not None:
            return self.sum
        return self.avg * self.count

    def to_dynamodb_item(self) -> Dict[str, Any]:
        """Convert to low-level DynamoDB item format."""
        item = {
            "sensor_id": {"S": self.sensor_id},
            "hour_bucket": {"S": self.hour_bucket},
            "avg": {"N": str(self.avg)},
            "min": {"N": str(self.min)},
            "max": {"N": str(self.max)},
            "count": {"N": str(self.count)},
            "last_updated": {"S": self.last_updated},
            "sensor_type": {"S": self.sensor_type},
            "location": {"S": self.location},
        }
        if self.sum is not None:
            item["sum"] = {"N": str(self.sum)}
        return item

    @staticmethod
    def from_item(item: Dict[str, Any]) -> 'Aggregate':
        """Create from a deserialized DynamoDB item (Decimal numbers)."""
        return Aggregate(
            sensor_id=item["sensor_id"],
            hour_bucket=item["hour_bucket"],
            avg=float(item["avg"]),
            min=float(item["min"]),
            max=float(item["max"]),
            count=int(item["count"]),
            last_updated=item.get("last_updated", ""),
            sensor_type=item.get("sensor_type", ""),
            location=item.get("location", ""),
            sum=float(item["sum"]) if item.get("sum") is not None else None
        )


@dataclass
class RecordResult:
    """Outcome of processing one stream record."""
    outcome: RecordOutcome
    sequence_number: Optional[str] = None
    sensor_id: Optional[str] = None
    hour_bucket: Optional[str] = None
    retries: int = 0
    error: Optional[str] = None


@dataclass
class BatchResult:
    """Outcome of processing one delivered batch."""
    results: List[RecordResult] = field(default_factory=list)

    def count(self, outcome: RecordOutcome) -> int:
        return sum(1 for result in self.results if result.outcome == outcome)

    @property
    def failed(self) -> List[RecordResult]:
        return [result for result in self.results if result.outcome == RecordOutcome.FAILED]

    def summary(self) -> Dict[str, int]:
        """Count records per outcome."""
        return {outcome.value: self.count(outcome) for outcome in RecordOutcome}

    def batch_item_failures(self) -> List[Dict[str, str]]:
        """Build Lambda partial batch response entries for failed records."""
        return [
            {"itemIdentifier": result.sequence_number}
            for result in self.failed
            if result.sequence_number
        ]
