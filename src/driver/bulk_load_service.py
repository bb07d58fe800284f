"""Bulk file array ingest.

Wraps one driver run with the load lifecycle: validate, lock the load
tag, seed the ledger, drive, collect results, and release the lock.
"""

from __future__ import annotations

from dataclasses import replace
import time
from typing import Callable
from uuid import uuid4

from core.config import BulkLoadConfig
from core.errors import BulkLoadFileMaxExceededError, LoadRequestError, RetryableError
from core.logging_config import get_logger
from core.paths import normalize_path
from core.types import (
    BulkLoadFileModel,
    BulkLoadFileResult,
    BulkLoadRequest,
    BulkLoadResult,
)
from driver.ingest_driver import IngestDriver
from flight.steps import RetryRule
from load.load_ledger import LoadLedger, compute_load_tag

_LOGGER = get_logger(__name__)


class BulkLoadService:
    """Run bulk loads of file arrays under a per-tag load lock."""

    def __init__(
        self,
        config: BulkLoadConfig,
        ledger: LoadLedger,
        driver: IngestDriver,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._ledger = ledger
        self._driver = driver
        self._retry_rule = RetryRule.from_config(config)
        self._sleep = sleep

    def ingest_bulk_array(
        self,
        request: BulkLoadRequest,
        flight_id: str | None = None,
    ) -> BulkLoadResult:
        """Load every file of ``request`` and report per-file outcomes.

        Re-submitting a request with the same load tag resumes the earlier
        load: already-seeded files keep their state and finished files are
        not loaded again.

        Args:
            request: Files and collection to load into.
            flight_id: Id of the calling flight; holds the load lock.

        Returns:
            Per-file results and summary counts.

        Raises:
            BulkLoadFileMaxExceededError: If the request has too many files.
            LoadLockedError: If another flight is driving the same load tag.
        """
        file_count = len(request.files)
        if file_count > self._config.bulk_array_files_max:
            raise BulkLoadFileMaxExceededError(
                f"Maximum number of files in a bulk load request is "
                f"{self._config.bulk_array_files_max}; request has {file_count}."
            )
        files = _normalized_files(request.files)
        load_tag = compute_load_tag(request.load_tag)
        driver_flight_id = flight_id or str(uuid4())
        load_id = self._ledger.lock_load(load_tag, driver_flight_id)
        _LOGGER.info(
            "bulk_load_started",
            load_id=load_id,
            load_tag=load_tag,
            dataset_id=request.dataset_id,
            file_count=file_count,
        )
        try:
            self._drive_with_retry(load_id, replace(request, files=files, load_tag=load_tag))
            result = self.collect_result(load_id, load_tag)
        finally:
            self._ledger.unlock_load(load_tag, driver_flight_id)
        _LOGGER.info(
            "bulk_load_finished",
            load_id=load_id,
            load_tag=load_tag,
            succeeded=result.summary.succeeded,
            failed=result.summary.failed,
            not_tried=result.summary.not_tried,
        )
        return result

    def _drive_with_retry(self, load_id: str, request: BulkLoadRequest) -> None:
        """Seed and drive the load, re-running both on transient store conflicts.

        Both are idempotent: seeding skips known rows and each driver run
        starts with orphan recovery.
        """
        load_tag = str(request.load_tag)
        attempt = 1
        while True:
            try:
                self._ledger.seed_batch(load_id, request.files)
                self._driver.run(load_id, load_tag, request)
                return
            except RetryableError as error:
                if attempt >= self._retry_rule.max_attempts:
                    raise
                _LOGGER.warning(
                    "load_driver_retry",
                    load_id=load_id,
                    load_tag=load_tag,
                    attempt=attempt,
                    error=str(error),
                )
                attempt += 1
                self._sleep(self._retry_rule.backoff_seconds())

    def collect_result(self, load_id: str, load_tag: str) -> BulkLoadResult:
        """Build the result of a load from its ledger rows."""
        results = tuple(
            BulkLoadFileResult(
                source_path=load_file.source_path,
                target_path=load_file.target_path,
                state=load_file.state,
                file_id=load_file.file_id,
                error=load_file.error,
            )
            for load_file in self._ledger.list_load_files(load_id)
        )
        return BulkLoadResult(
            load_id=load_id,
            load_tag=load_tag,
            results=results,
            summary=self._ledger.summarize(load_id),
        )

    def load_summary(self, load_tag: str) -> BulkLoadResult | None:
        """Result of the load registered under ``load_tag``, if any."""
        load_id = self._ledger.find_load_id(load_tag)
        if load_id is None:
            return None
        return self.collect_result(load_id, load_tag)


def _normalized_files(files: tuple[BulkLoadFileModel, ...]) -> tuple[BulkLoadFileModel, ...]:
    normalized: list[BulkLoadFileModel] = []
    seen: set[str] = set()
    for file_model in files:
        target_path = normalize_path(file_model.target_path)
        if target_path in seen:
            raise LoadRequestError(f"Duplicate target path in bulk load request: {target_path}")
        seen.add(target_path)
        normalized.append(replace(file_model, target_path=target_path))
    return tuple(normalized)