"""Per-file ingest workflow.

Four steps run in order for every file of a bulk load:

1. allocate a file id;
2. reserve the target path in the namespace;
3. copy primary data into the collection's storage location;
4. finalize the file entry, which makes the path visible.

Re-running a file under the same load tag is idempotent: the path
reservation adopts the file id of an earlier attempt, and a finalized
earlier attempt short-circuits the copy and finalize steps.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import timezone
import time
from typing import Any, Callable, Mapping
from uuid import uuid4

from core.errors import (
    FileSystemCorruptError,
    NamespaceConflictError,
    PathAlreadyExistsError,
    StoreContentionError,
)
from core.logging_config import get_logger
from core.paths import leaf_name, normalize_path
from core.types import BulkLoadRequest, DirectoryEntry, FileEntry, FileInfo, LoadFile
from flight.steps import NO_RETRY, FlightContext, RetryRule, StepRunner
from ingest.primary_data import PrimaryDataCopier
from ingest.storage_location import StorageLocationProvisioner
from namespace.namespace_service import NamespaceService

_LOGGER = get_logger(__name__)

# Flight inputs
LOAD_TAG = "load_tag"
COLLECTION_ID = "collection_id"
COLLECTION_NAME = "collection_name"
BILLING_CONTEXT = "billing_context"
SOURCE_PATH = "source_path"
TARGET_PATH = "target_path"
MIME_TYPE = "mime_type"
DESCRIPTION = "description"

# Working map
FILE_ID = "file_id"
FILE_INFO = "file_info"
LOAD_COMPLETED = "load_completed"
ENTRY_CREATED = "entry_created"
FILE_ENTRY_CREATED = "file_entry_created"
STORAGE_LOCATION = "storage_location"


def build_flight_inputs(
    request: BulkLoadRequest,
    load_tag: str,
    load_file: LoadFile,
) -> dict[str, Any]:
    """Build the input map of one file's flight."""
    return {
        LOAD_TAG: load_tag,
        COLLECTION_ID: request.dataset_id,
        COLLECTION_NAME: request.collection_name,
        BILLING_CONTEXT: request.profile_id,
        SOURCE_PATH: load_file.source_path,
        TARGET_PATH: load_file.target_path,
        MIME_TYPE: load_file.mime_type,
        DESCRIPTION: load_file.description,
    }


class IngestFileIdStep:
    """Allocate a fresh file id. Nothing to compensate."""

    retry_rule = NO_RETRY

    def do_step(self, context: FlightContext) -> None:
        context.working_map[FILE_ID] = str(uuid4())

    def undo_step(self, context: FlightContext) -> None:
        return None


class IngestFileDirectoryStep:
    """Reserve the target path, reconciling with earlier attempts.

    No entry at the path: create one for the allocated file id. An entry
    with another load tag belongs to someone else. An entry with our load
    tag and another file id is a re-run: adopt that id, and if its file
    entry exists the load already completed. An entry with our load tag
    and our file id is a recovery of this attempt.
    """

    def __init__(self, namespace: NamespaceService, retry_rule: RetryRule) -> None:
        self._namespace = namespace
        self.retry_rule = retry_rule

    def do_step(self, context: FlightContext) -> None:
        working_map = context.working_map
        working_map[LOAD_COMPLETED] = False
        working_map[ENTRY_CREATED] = False
        collection_id = str(context.inputs[COLLECTION_ID])
        load_tag = str(context.inputs[LOAD_TAG])
        target_path = normalize_path(str(context.inputs[TARGET_PATH]))
        file_id = str(working_map[FILE_ID])

        existing = self._namespace.lookup_by_path(collection_id, target_path)
        if existing is None:
            entry = DirectoryEntry(
                file_id=file_id,
                path=target_path,
                name=leaf_name(target_path),
                is_file_ref=True,
                collection_id=collection_id,
                load_tag=load_tag,
            )
            try:
                self._namespace.create_entry(collection_id, entry)
            except NamespaceConflictError as error:
                # Lost the race; the next attempt reconciles with the winner.
                raise StoreContentionError(str(error)) from error
            working_map[ENTRY_CREATED] = True
            return

        if existing.load_tag != load_tag or not existing.is_file_ref:
            raise PathAlreadyExistsError(f"Path already exists: {target_path}")
        if existing.file_id == file_id:
            working_map[ENTRY_CREATED] = True
            return
        working_map[FILE_ID] = existing.file_id
        if self._namespace.lookup_file(collection_id, existing.file_id) is not None:
            working_map[LOAD_COMPLETED] = True
            _LOGGER.info(
                "file_load_already_completed",
                collection_id=collection_id,
                target_path=target_path,
                file_id=existing.file_id,
            )

    def undo_step(self, context: FlightContext) -> None:
        if not context.working_map.get(ENTRY_CREATED):
            return
        self._namespace.delete_entry(
            str(context.inputs[COLLECTION_ID]), str(context.working_map[FILE_ID])
        )


class IngestFilePrimaryDataStep:
    """Copy bytes into the shared storage location of the collection."""

    retry_rule = NO_RETRY

    def __init__(
        self,
        provisioner: StorageLocationProvisioner,
        copier: PrimaryDataCopier,
    ) -> None:
        self._provisioner = provisioner
        self._copier = copier

    def do_step(self, context: FlightContext) -> None:
        if context.working_map.get(LOAD_COMPLETED):
            return
        location = self._provisioner.get_or_create_location(
            str(context.inputs[COLLECTION_NAME]),
            str(context.inputs[BILLING_CONTEXT]),
            context.flight_id,
        )
        context.working_map[STORAGE_LOCATION] = location
        context.working_map[FILE_INFO] = self._copier.copy(
            source_path=str(context.inputs[SOURCE_PATH]),
            location=location,
            collection_id=str(context.inputs[COLLECTION_ID]),
            file_id=str(context.working_map[FILE_ID]),
            target_path=str(context.inputs[TARGET_PATH]),
        )

    def undo_step(self, context: FlightContext) -> None:
        # The location is shared by many files; only its usage record changes.
        location = context.working_map.get(STORAGE_LOCATION)
        if location is not None:
            self._provisioner.update_location_metadata(location, context.flight_id)


class IngestFileFileStep:
    """Write the file entry; compensation removes what this attempt wrote."""

    def __init__(
        self,
        namespace: NamespaceService,
        copier: PrimaryDataCopier,
        retry_rule: RetryRule,
    ) -> None:
        self._namespace = namespace
        self._copier = copier
        self.retry_rule = retry_rule

    def do_step(self, context: FlightContext) -> None:
        if context.working_map.get(LOAD_COMPLETED):
            return
        collection_id = str(context.inputs[COLLECTION_ID])
        file_info: FileInfo = context.working_map[FILE_INFO]
        file_entry = FileEntry(
            file_id=str(context.working_map[FILE_ID]),
            collection_id=collection_id,
            checksum_crc32c=file_info.checksum_crc32c,
            checksum_md5=file_info.checksum_md5,
            size=file_info.size,
            created_date=file_info.created_date,
            storage_location=file_info.storage_location,
            mime_type=_optional_input(context.inputs, MIME_TYPE),
            description=_optional_input(context.inputs, DESCRIPTION),
            load_tag=str(context.inputs[LOAD_TAG]),
        )
        try:
            self._namespace.create_file(collection_id, file_entry)
        except NamespaceConflictError:
            _LOGGER.info(
                "file_entry_already_finalized",
                collection_id=collection_id,
                file_id=file_entry.file_id,
            )
            return
        context.working_map[FILE_ENTRY_CREATED] = True

    def undo_step(self, context: FlightContext) -> None:
        if context.working_map.get(LOAD_COMPLETED):
            return
        collection_id = str(context.inputs[COLLECTION_ID])
        file_id = str(context.working_map[FILE_ID])
        if context.working_map.get(FILE_ENTRY_CREATED):
            self._namespace.delete_file_entry(collection_id, file_id)
            context.working_map[FILE_ENTRY_CREATED] = False
        file_info: FileInfo | None = context.working_map.get(FILE_INFO)
        if file_info is not None:
            self._copier.delete_copy(file_info.storage_location)


class FileIngestWorkerFlight:
    """Workflow callable registered with the engine for per-file ingest."""

    def __init__(
        self,
        namespace: NamespaceService,
        provisioner: StorageLocationProvisioner,
        copier: PrimaryDataCopier,
        retry_rule: RetryRule,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._namespace = namespace
        self._provisioner = provisioner
        self._copier = copier
        self._retry_rule = retry_rule
        self._sleep = sleep

    def build_steps(self) -> list[Any]:
        return [
            IngestFileIdStep(),
            IngestFileDirectoryStep(self._namespace, self._retry_rule),
            IngestFilePrimaryDataStep(self._provisioner, self._copier),
            IngestFileFileStep(self._namespace, self._copier, self._retry_rule),
        ]

    def __call__(self, context: FlightContext) -> dict[str, Any]:
        StepRunner(self.build_steps(), sleep=self._sleep).run(context)
        return self._result_map(context)

    def _result_map(self, context: FlightContext) -> dict[str, Any]:
        collection_id = str(context.inputs[COLLECTION_ID])
        file_id = str(context.working_map[FILE_ID])
        if context.working_map.get(LOAD_COMPLETED) or FILE_INFO not in context.working_map:
            file_entry = self._namespace.lookup_file(collection_id, file_id)
            if file_entry is None:
                raise FileSystemCorruptError(
                    f"Completed load of file {file_id} has no file entry in {collection_id}."
                )
            file_info = _as_utc(file_entry.file_info())
        else:
            file_info = context.working_map[FILE_INFO]
        return {FILE_ID: file_id, FILE_INFO: file_info.to_dict()}


def _optional_input(inputs: Mapping[str, Any], key: str) -> str | None:
    value = inputs.get(key)
    return None if value is None else str(value)


def _as_utc(file_info: FileInfo) -> FileInfo:
    if file_info.created_date.tzinfo is not None:
        return file_info
    return replace(file_info, created_date=file_info.created_date.replace(tzinfo=timezone.utc))
