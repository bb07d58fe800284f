"""Python SDK for bulk loads and namespace operations.

This module wires the shared store, namespace, ledger, workflow engine,
and ingest collaborators behind one client object.
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

from core.config import BulkLoadConfig
from core.constants import FILE_INGEST_WORKFLOW_TYPE
from core.errors import FileNotFoundInNamespaceError
from core.logging_config import get_logger
from core.types import BulkLoadRequest, BulkLoadResult, FsItem
from driver.bulk_load_service import BulkLoadService
from driver.ingest_driver import IngestDriver
from flight.cluster import ClusterSizeProvider, StaticClusterSize
from flight.engine import LocalWorkflowEngine
from flight.steps import RetryRule
from ingest.file_ingest_flight import FileIngestWorkerFlight
from ingest.primary_data import PrimaryDataCopier
from ingest.storage_location import LocalStorageLocationProvisioner
from load.load_ledger import LoadLedger
from namespace.namespace_service import NamespaceService
from store.shared_store import SharedStore

_LOGGER = get_logger(__name__)


class BulkLoadClient:
    """Primary SDK entry point."""

    def __init__(
        self,
        config: BulkLoadConfig | None = None,
        cluster: ClusterSizeProvider | None = None,
    ) -> None:
        """Create SDK client and open the shared store.

        Args:
            config: Optional runtime configuration.
            cluster: Optional cluster size provider; defaults to the configured pod count.
        """
        self._config = config or BulkLoadConfig.from_env()
        self._store = SharedStore(self._config.store_path).open()
        self.namespace = NamespaceService(self._store)
        self.ledger = LoadLedger(self._store)
        self.engine = LocalWorkflowEngine(self._config.worker_threads)
        self.engine.register(
            FILE_INGEST_WORKFLOW_TYPE,
            FileIngestWorkerFlight(
                namespace=self.namespace,
                provisioner=LocalStorageLocationProvisioner(
                    self._store, self._config.storage_root
                ),
                copier=PrimaryDataCopier(self._config),
                retry_rule=RetryRule.from_config(self._config),
            ),
        )
        driver = IngestDriver(
            ledger=self.ledger,
            engine=self.engine,
            cluster=cluster or StaticClusterSize(self._config.pod_count),
            config=self._config,
        )
        self._service = BulkLoadService(self._config, self.ledger, driver)

    @property
    def config(self) -> BulkLoadConfig:
        return self._config

    def ingest_bulk(self, request: BulkLoadRequest) -> BulkLoadResult:
        """Load an array of files into a collection.

        Args:
            request: Bulk load request.

        Returns:
            Per-file results and summary.

        Raises:
            BulkLoadFileMaxExceededError: If the request has too many files.
            LoadLockedError: If the load tag is being driven elsewhere.
        """
        return self._service.ingest_bulk_array(request)

    def lookup_path(self, collection_id: str, path: str, depth: int = 0) -> FsItem:
        """Confident lookup of a path.

        Raises:
            FileNotFoundInNamespaceError: If nothing visible exists at the path.
        """
        return self.namespace.retrieve_by_path(collection_id, path, depth)

    def lookup_file(self, collection_id: str, file_id: str, depth: int = 0) -> FsItem:
        """Confident lookup of a file or directory id."""
        return self.namespace.retrieve_by_id(collection_id, file_id, depth)

    def delete_file(self, collection_id: str, file_id: str) -> bool:
        """Delete a file and release its path.

        Raises:
            FileNotFoundInNamespaceError: If the file id is unknown.
            DependencyExistsError: While a consumer references the file.
        """
        if not self.namespace.delete_file(collection_id, file_id):
            raise FileNotFoundInNamespaceError(
                f"Object not found in collection {collection_id}: file id {file_id}"
            )
        return True

    def add_dependency(self, consumer_id: str, file_id: str) -> int:
        return self.namespace.add_dependency(consumer_id, file_id)

    def remove_dependency(self, consumer_id: str, file_id: str) -> int:
        return self.namespace.remove_dependency(consumer_id, file_id)

    def load_summary(self, load_tag: str) -> BulkLoadResult | None:
        """Ledger view of a load, or None for an unknown load tag."""
        return self._service.load_summary(load_tag)

    def with_data_root(self, data_root: str) -> "BulkLoadClient":
        """Create a client over a different local data root.

        Args:
            data_root: New data root path.

        Returns:
            New SDK client instance.
        """
        resolved_root = Path(data_root).expanduser().resolve()
        return BulkLoadClient(replace(self._config, data_root=resolved_root))

    def close(self) -> None:
        """Wait for submitted flights, then close the store."""
        self.engine.close()
        self._store.close()
        _LOGGER.debug("client_closed", data_root=str(self._config.data_root))

    def __enter__(self) -> "BulkLoadClient":
        return self

    def __exit__(self, exc_type, exc_value, tb) -> None:
        self.close()
