"""
Configuration for the sensor aggregator Lambdas.

Settings are read from the environment once at cold start and injected into
the components that need them. The secret bundle is fetched once through
Powertools Parameters and carried on the settings object.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities import parameters
from aws_lambda_powertools.utilities.parameters.exceptions import (
    GetParameterError,
    TransformParameterError,
)

from shared.errors import ConfigurationError
from shared.models import ConcurrencyGuard
from shared.retry_utils import RetryPolicy

logger = Logger(child=True)

TRUE_VALUES = ("1", "true", "yes", "on")
FALSE_VALUES = ("0", "false", "no", "off")


def _get_int(env: Mapping[str, str], name: str, default: int, minimum: int = 1) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


def _get_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ConfigurationError(f"{name} must be >= 0, got {value}")
    return value


def _get_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    lowered = raw.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


@dataclass(frozen=True)
class AggregatorSettings:
    """Runtime settings shared by the aggregate and ingest Lambdas."""
    aggregates_table: str = "sensor_aggregates"
    events_table: str = "sensor_events"
    processed_readings_table: str = "sensor_processed_readings"
    dedup_readings: bool = True
    secret_arn: Optional[str] = None
    environment: str = "dev"
    max_concurrency: int = 10
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    concurrency_guard: ConcurrencyGuard = ConcurrencyGuard.VERSION
    serialize_per_key: bool = True
    batch_timeout_margin_ms: int = 5000
    secrets: Mapping[str, Any] = field(default_factory=dict)

    @staticmethod
    def from_env(env: Optional[Mapping[str, str]] = None) -> 'AggregatorSettings':
        """
        Build settings from environment variables.

        Args:
            env: Mapping to read from (defaults to os.environ)

        Returns:
            AggregatorSettings

        Raises:
            ConfigurationError: If a value cannot be parsed
        """
        env = os.environ if env is None else env

        dedup_readings = _get_bool(env, "DEDUP_READINGS", True)
        processed_readings_table = env.get("PROCESSED_READINGS_TABLE", "sensor_processed_readings")
        if dedup_readings and not processed_readings_table.strip():
            raise ConfigurationError("PROCESSED_READINGS_TABLE is required when DEDUP_READINGS is enabled")

        guard_raw = env.get("CONCURRENCY_GUARD", ConcurrencyGuard.VERSION.value).strip().lower()
        try:
            guard = ConcurrencyGuard(guard_raw)
        except ValueError:
            raise ConfigurationError(
                f"CONCURRENCY_GUARD must be one of: {', '.join(g.value for g in ConcurrencyGuard)}"
            ) from None

        return AggregatorSettings(
            aggregates_table=env.get("SENSOR_AGGREGATES_TABLE", "sensor_aggregates"),
            events_table=env.get("SENSOR_EVENTS_TABLE", "sensor_events"),
            processed_readings_table=processed_readings_table,
            dedup_readings=dedup_readings,
            secret_arn=env.get("SECRET_ARN") or None,
            environment=env.get("ENVIRONMENT", "dev"),
            max_concurrency=_get_int(env, "MAX_CONCURRENCY", 10),
            retry_policy=RetryPolicy(
                max_attempts=_get_int(env, "MAX_CONFLICT_RETRIES", 8),
                base_delay=_get_float(env, "RETRY_BASE_DELAY_SECONDS", 0.05),
                max_delay=_get_float(env, "RETRY_MAX_DELAY_SECONDS", 2.0)
            ),
            concurrency_guard=guard,
            serialize_per_key=_get_bool(env, "SERIALIZE_PER_KEY", True),
            batch_timeout_margin_ms=_get_int(env, "BATCH_TIMEOUT_MARGIN_MS", 5000, minimum=0)
        )


def load_secret_bundle(secret_arn: Optional[str]) -> Dict[str, Any]:
    """
    Fetch the JSON secret bundle once.

    A missing ARN or a failed fetch yields an empty bundle; the failure is
    logged and processing continues without secrets.

    Args:
        secret_arn: Secrets Manager ARN or name

    Returns:
        Decoded secret bundle
    """
    if not secret_arn:
        return {}

    try:
        bundle = parameters.get_secret(secret_arn, transform="json")
    except (GetParameterError, TransformParameterError) as e:
        logger.error(
            "Error retrieving secrets",
            extra={"secret_arn": secret_arn, "error": str(e)[:256]}
        )
        return {}

    if not isinstance(bundle, dict):
        logger.warning("Secret bundle is not a JSON object, ignoring", extra={"secret_arn": secret_arn})
        return {}
    return bundle
