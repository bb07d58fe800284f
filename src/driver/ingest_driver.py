"""Bulk load driver loop.

The driver is the sole dispatcher for one load id. It throttles per-file
flights against the fleet-wide budget, reconciles their terminal states
into the ledger, and stops when the load is drained or the failure
threshold is exceeded. It holds no in-process state between polls: every
decision is made from the ledger and the engine.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Mapping

from core.config import BulkLoadConfig
from core.constants import FILE_INGEST_WORKFLOW_TYPE, UNKNOWN_FLIGHT_ERROR
from core.errors import CorruptMetadataError, FileSystemCorruptError, FlightNotFoundError
from core.logging_config import get_logger
from core.types import BulkLoadRequest, FileInfo, LoadCandidates, LoadFile
from flight.cluster import ClusterSizeProvider
from flight.engine import ACTIVE_FLIGHT_STATUSES, FAILED_FLIGHT_STATUSES, WorkflowEngine
from ingest.file_ingest_flight import FILE_ID, FILE_INFO, build_flight_inputs
from load.load_ledger import LoadLedger

_LOGGER = get_logger(__name__)


class IngestDriver:
    """Drive the per-file flights of one load to completion."""

    def __init__(
        self,
        ledger: LoadLedger,
        engine: WorkflowEngine,
        cluster: ClusterSizeProvider,
        config: BulkLoadConfig,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._ledger = ledger
        self._engine = engine
        self._cluster = cluster
        self._config = config
        self._sleep = sleep

    def run(self, load_id: str, load_tag: str, request: BulkLoadRequest) -> None:
        """Run the load loop until nothing is left or failures exceed the threshold.

        Args:
            load_id: Ledger load id whose rows were already seeded.
            load_tag: Load tag passed to every flight.
            request: Bulk request carrying collection and threshold settings.

        Raises:
            FileSystemCorruptError: If a successful flight carries no result.
            CorruptMetadataError: If the engine reports an unexpected status.
            StoreContentionError: On transient store conflicts; callers re-run the whole run.
        """
        wait_seconds = (
            request.driver_wait_seconds
            if request.driver_wait_seconds is not None
            else self._config.driver_wait_seconds
        )
        self._recover_orphans(load_id)
        while True:
            budget = self._cluster.active_pod_count() * self._config.concurrent_files
            candidates = self._load_candidates(load_id, budget)
            running = len(candidates.running_loads)
            if running == 0 and not candidates.candidate_files:
                break
            max_failed = request.max_failed_file_loads
            if max_failed >= 0 and candidates.failed_loads > max_failed:
                _LOGGER.warning(
                    "load_failure_threshold_exceeded",
                    load_id=load_id,
                    failed=candidates.failed_loads,
                    max_failed_file_loads=max_failed,
                )
                self._wait_for_all(load_id, budget, wait_seconds)
                break
            launch_count = max(0, min(len(candidates.candidate_files), budget - running))
            running += self._launch(load_id, load_tag, request, launch_count)
            self._wait_for_any(load_id, budget, running, wait_seconds)
        _LOGGER.info("load_driver_finished", load_id=load_id, load_tag=load_tag)

    def _recover_orphans(self, load_id: str) -> None:
        # Rows claimed by a driver that died before dispatch are unknown to the engine.
        for load_file in self._ledger.list_running(load_id):
            try:
                self._engine.get_flight_state(str(load_file.flight_id))
            except FlightNotFoundError:
                _LOGGER.info(
                    "load_file_orphan_reset",
                    load_id=load_id,
                    target_path=load_file.target_path,
                    flight_id=load_file.flight_id,
                )
                self._ledger.mark_not_tried(load_id, load_file.target_path)

    def _load_candidates(self, load_id: str, budget: int) -> LoadCandidates:
        """Fetch ledger candidates and reconcile running rows with the engine."""
        candidates = self._ledger.find_candidates(load_id, budget)
        failed = candidates.failed_loads
        still_running: list[LoadFile] = []
        for load_file in candidates.running_loads:
            state = self._engine.get_flight_state(str(load_file.flight_id))
            if state.status in ACTIVE_FLIGHT_STATUSES:
                still_running.append(load_file)
            elif state.status in FAILED_FLIGHT_STATUSES:
                error = state.error or UNKNOWN_FLIGHT_ERROR
                self._ledger.mark_failed(load_id, load_file.target_path, error)
                failed += 1
                _LOGGER.info(
                    "load_file_failed",
                    load_id=load_id,
                    target_path=load_file.target_path,
                    flight_id=state.flight_id,
                    error=error,
                )
            elif state.status == "SUCCESS":
                self._record_success(load_id, load_file, state.result)
            else:
                raise CorruptMetadataError(f"Invalid flight state: {state.status}")
        return LoadCandidates(
            running_loads=tuple(still_running),
            candidate_files=candidates.candidate_files,
            failed_loads=failed,
        )

    def _record_success(
        self,
        load_id: str,
        load_file: LoadFile,
        result: Mapping[str, Any] | None,
    ) -> None:
        if result is None:
            raise FileSystemCorruptError(
                f"No result map in flight state {load_file.flight_id}."
            )
        try:
            file_id = str(result[FILE_ID])
            file_info = FileInfo.from_dict(dict(result[FILE_INFO]))
        except (KeyError, TypeError) as error:
            raise FileSystemCorruptError(
                f"Incomplete result map in flight state {load_file.flight_id}: {error}."
            ) from error
        self._ledger.mark_succeeded(load_id, load_file.target_path, file_id, file_info)
        _LOGGER.debug(
            "load_file_succeeded",
            load_id=load_id,
            target_path=load_file.target_path,
            file_id=file_id,
        )

    def _launch(
        self,
        load_id: str,
        load_tag: str,
        request: BulkLoadRequest,
        launch_count: int,
    ) -> int:
        claimed = self._ledger.claim_candidates(
            load_id, launch_count, self._engine.create_flight_id
        )
        for load_file in claimed:
            flight_id = str(load_file.flight_id)
            # Claimed but not yet dispatched: orphan recovery repairs a crash here.
            self._engine.submit_to_queue(
                flight_id,
                FILE_INGEST_WORKFLOW_TYPE,
                build_flight_inputs(request, load_tag, load_file),
            )
            _LOGGER.info(
                "load_file_launched",
                load_id=load_id,
                target_path=load_file.target_path,
                flight_id=flight_id,
            )
        return len(claimed)

    def _wait_for_any(
        self,
        load_id: str,
        budget: int,
        originally_running: int,
        wait_seconds: float,
    ) -> None:
        if originally_running == 0:
            return
        while True:
            candidates = self._load_candidates(load_id, budget)
            if len(candidates.running_loads) < originally_running:
                return
            self._sleep(wait_seconds)

    def _wait_for_all(self, load_id: str, budget: int, wait_seconds: float) -> None:
        while True:
            candidates = self._load_candidates(load_id, budget)
            if not candidates.running_loads:
                return
            _LOGGER.debug(
                "load_driver_draining",
                load_id=load_id,
                running=len(candidates.running_loads),
            )
            self._sleep(wait_seconds)
