"""Runtime configuration model for bulkload.

This module owns all environment variable parsing and validation.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

from core.constants import (
    DEFAULT_BULK_ARRAY_FILES_MAX,
    DEFAULT_CONCURRENT_FILES,
    DEFAULT_DATA_ROOT,
    DEFAULT_DRIVER_WAIT_SECONDS,
    DEFAULT_POD_COUNT,
    DEFAULT_STEP_RETRY_MAX,
    DEFAULT_STEP_RETRY_MAX_BACKOFF_SECONDS,
    DEFAULT_STEP_RETRY_MIN_BACKOFF_SECONDS,
    DEFAULT_WORKER_THREADS,
    STORAGE_DIR_NAME,
    STORE_FILE_NAME,
)
from core.errors import BulkLoadConfigError


@dataclass(frozen=True)
class BulkLoadConfig:
    """Validated runtime configuration.

    Attributes:
        data_root: Local root for the shared store file and storage locations.
        concurrent_files: Per-pod file load concurrency limit.
        driver_wait_seconds: Driver sleep between polls when nothing completed.
        bulk_array_files_max: Maximum number of files in one bulk request.
        pod_count: Active pod count reported by the static cluster provider.
        worker_threads: Thread count for the in-process workflow engine.
        step_retry_max: Attempts allowed for retryable flight steps.
        step_retry_min_backoff_seconds: Lower bound for retry backoff.
        step_retry_max_backoff_seconds: Upper bound for retry backoff.
        s3_region: Optional default AWS region for S3 sources.
        s3_profile: Optional AWS profile for boto3 session initialization.
    """

    data_root: Path
    concurrent_files: int = DEFAULT_CONCURRENT_FILES
    driver_wait_seconds: float = DEFAULT_DRIVER_WAIT_SECONDS
    bulk_array_files_max: int = DEFAULT_BULK_ARRAY_FILES_MAX
    pod_count: int = DEFAULT_POD_COUNT
    worker_threads: int = DEFAULT_WORKER_THREADS
    step_retry_max: int = DEFAULT_STEP_RETRY_MAX
    step_retry_min_backoff_seconds: float = DEFAULT_STEP_RETRY_MIN_BACKOFF_SECONDS
    step_retry_max_backoff_seconds: float = DEFAULT_STEP_RETRY_MAX_BACKOFF_SECONDS
    s3_region: str | None = None
    s3_profile: str | None = None

    @property
    def store_path(self) -> Path:
        """Path of the shared DuckDB store file."""
        return self.data_root / STORE_FILE_NAME

    @property
    def storage_root(self) -> Path:
        """Root directory for locally provisioned storage locations."""
        return self.data_root / STORAGE_DIR_NAME

    @classmethod
    def from_env(cls) -> "BulkLoadConfig":
        """Build config from process environment variables.

        Returns:
            A validated config object.

        Raises:
            BulkLoadConfigError: If environment values are invalid.
        """
        data_root_value = os.getenv("BULKLOAD_DATA_ROOT", str(DEFAULT_DATA_ROOT))
        min_backoff, max_backoff = _retry_backoff_env()
        return cls(
            data_root=Path(data_root_value).expanduser().resolve(),
            concurrent_files=_positive_int_env(
                "BULKLOAD_CONCURRENT_FILES", DEFAULT_CONCURRENT_FILES
            ),
            driver_wait_seconds=_non_negative_float_env(
                "BULKLOAD_DRIVER_WAIT_SECONDS", DEFAULT_DRIVER_WAIT_SECONDS
            ),
            bulk_array_files_max=_positive_int_env(
                "BULKLOAD_BULK_ARRAY_FILES_MAX", DEFAULT_BULK_ARRAY_FILES_MAX
            ),
            pod_count=_positive_int_env("BULKLOAD_POD_COUNT", DEFAULT_POD_COUNT),
            worker_threads=_positive_int_env("BULKLOAD_WORKER_THREADS", DEFAULT_WORKER_THREADS),
            step_retry_max=_positive_int_env("BULKLOAD_STEP_RETRY_MAX", DEFAULT_STEP_RETRY_MAX),
            step_retry_min_backoff_seconds=min_backoff,
            step_retry_max_backoff_seconds=max_backoff,
            s3_region=os.getenv("BULKLOAD_S3_REGION"),
            s3_profile=os.getenv("BULKLOAD_S3_PROFILE"),
        )


def _retry_backoff_env() -> tuple[float, float]:
    """Parse the step retry backoff bounds; the lower bound must not exceed the upper."""
    min_backoff = _non_negative_float_env(
        "BULKLOAD_STEP_RETRY_MIN_BACKOFF_SECONDS", DEFAULT_STEP_RETRY_MIN_BACKOFF_SECONDS
    )
    max_backoff = _non_negative_float_env(
        "BULKLOAD_STEP_RETRY_MAX_BACKOFF_SECONDS", DEFAULT_STEP_RETRY_MAX_BACKOFF_SECONDS
    )
    if min_backoff > max_backoff:
        raise BulkLoadConfigError(
            "Invalid step retry backoff: "
            f"BULKLOAD_STEP_RETRY_MIN_BACKOFF_SECONDS ({min_backoff}) exceeds "
            f"BULKLOAD_STEP_RETRY_MAX_BACKOFF_SECONDS ({max_backoff})."
        )
    return min_backoff, max_backoff


def _positive_int_env(name: str, default_value: int) -> int:
    """Parse a positive integer environment value.

    Args:
        name: Environment variable name.
        default_value: Value used when the variable is unset.

    Returns:
        Parsed integer.

    Raises:
        BulkLoadConfigError: If value is not a positive integer.
    """
    raw_value = os.getenv(name)
    if raw_value is None:
        return default_value
    try:
        parsed_value = int(raw_value)
    except ValueError as error:
        raise BulkLoadConfigError(
            f"Invalid {name} value: expected integer, got '{raw_value}'. "
            f"Set {name} to a positive whole number."
        ) from error
    if parsed_value < 1:
        raise BulkLoadConfigError(
            f"Invalid {name} value: expected at least 1, got {parsed_value}."
        )
    return parsed_value


def _non_negative_float_env(name: str, default_value: float) -> float:
    """Parse a non-negative float environment value."""
    raw_value = os.getenv(name)
    if raw_value is None:
        return default_value
    try:
        parsed_value = float(raw_value)
    except ValueError as error:
        raise BulkLoadConfigError(
            f"Invalid {name} value: expected number of seconds, got '{raw_value}'."
        ) from error
    if parsed_value < 0:
        raise BulkLoadConfigError(f"Invalid {name} value: seconds must not be negative.")
    return parsed_value
