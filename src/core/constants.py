"""Core constants used across bulkload modules.

This module centralizes non-domain-specific constants.
Keeping values here avoids magic literals in business logic.
"""

from __future__ import annotations

from pathlib import Path

DEFAULT_DATA_ROOT = Path(".bulkload")
STORE_FILE_NAME = "bulkload.duckdb"
STORAGE_DIR_NAME = "storage"
DEFAULT_CONCURRENT_FILES = 4
DEFAULT_DRIVER_WAIT_SECONDS = 1.0
DEFAULT_BULK_ARRAY_FILES_MAX = 1_000_000
DEFAULT_POD_COUNT = 1
DEFAULT_WORKER_THREADS = 8
DEFAULT_STEP_RETRY_MAX = 4
DEFAULT_STEP_RETRY_MIN_BACKOFF_SECONDS = 0.05
DEFAULT_STEP_RETRY_MAX_BACKOFF_SECONDS = 0.5
UNLIMITED_FAILED_FILE_LOADS = -1
ROOT_PATH = "/"
PATH_SEPARATOR = "/"
LOAD_TAG_PREFIX = "lt-"
UNKNOWN_FLIGHT_ERROR = "unknown error"
COPY_CHUNK_SIZE_BYTES = 1024 * 1024
FILE_INGEST_WORKFLOW_TYPE = "file_ingest_worker"
LOAD_REQUEST_VERSION = 1
