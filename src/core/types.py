"""Shared typed models.

This module defines immutable data models used by the namespace,
ledger, workflow, and driver layers to keep interfaces explicit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from core.constants import UNLIMITED_FAILED_FILE_LOADS
from core.errors import FileSystemCorruptError

LoadFileState = Literal["NOT_TRIED", "RUNNING", "SUCCEEDED", "FAILED"]
ALLOWED_LOAD_FILE_TRANSITIONS: dict[LoadFileState, tuple[LoadFileState, ...]] = {
    "NOT_TRIED": ("RUNNING",),
    "RUNNING": ("NOT_TRIED", "SUCCEEDED", "FAILED"),
    "SUCCEEDED": (),
    "FAILED": (),
}


@dataclass(frozen=True)
class BulkLoadFileModel:
    """One file requested in a bulk load.

    Attributes:
        source_path: Local path, ``file://`` or ``s3://`` URI of the bytes.
        target_path: Absolute namespace path inside the collection.
        mime_type: Optional MIME type recorded on the file entry.
        description: Optional free-text description.
    """

    source_path: str
    target_path: str
    mime_type: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class BulkLoadRequest:
    """Bulk load request over an array of files.

    Attributes:
        dataset_id: Collection id that receives the files.
        files: Ordered files to load.
        dataset_name: Collection name used for storage location lookup.
        profile_id: Billing context used for storage location lookup.
        load_tag: Correlation key for retries; generated when omitted.
        max_failed_file_loads: Failure threshold; -1 means unlimited.
        driver_wait_seconds: Optional override for driver poll sleep.
    """

    dataset_id: str
    files: tuple[BulkLoadFileModel, ...]
    dataset_name: str | None = None
    profile_id: str = "default"
    load_tag: str | None = None
    max_failed_file_loads: int = UNLIMITED_FAILED_FILE_LOADS
    driver_wait_seconds: float | None = None

    @property
    def collection_name(self) -> str:
        """Name used for storage locations; falls back to the id."""
        return self.dataset_name or self.dataset_id


@dataclass(frozen=True)
class FileInfo:
    """Physical attributes of copied primary data.

    Attributes:
        checksum_md5: Hex md5 of the copied bytes.
        size: Byte count.
        created_date: UTC creation time of the copy.
        storage_location: URI of the copied object.
        checksum_crc32c: Optional crc32c checksum.
    """

    checksum_md5: str | None
    size: int
    created_date: datetime
    storage_location: str
    checksum_crc32c: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Serialize into a flight result payload."""
        return {
            "checksum_crc32c": self.checksum_crc32c,
            "checksum_md5": self.checksum_md5,
            "size": self.size,
            "created_date": self.created_date.isoformat(),
            "storage_location": self.storage_location,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, object]) -> "FileInfo":
        """Deserialize a flight result payload.

        Raises:
            FileSystemCorruptError: If required fields are missing.
        """
        try:
            raw_size = payload["size"]
            return cls(
                checksum_md5=_optional_str(payload.get("checksum_md5")),
                checksum_crc32c=_optional_str(payload.get("checksum_crc32c")),
                size=int(raw_size) if isinstance(raw_size, (int, str)) else 0,
                created_date=datetime.fromisoformat(str(payload["created_date"])),
                storage_location=str(payload["storage_location"]),
            )
        except (KeyError, ValueError) as error:
            raise FileSystemCorruptError(
                f"Invalid file info payload in flight result: {error}."
            ) from error


@dataclass(frozen=True)
class DirectoryEntry:
    """Namespace node reserving a path within a collection.

    Attributes:
        file_id: Stable id of the node.
        path: Full absolute path of the node.
        name: Final path segment.
        is_file_ref: True for files, False for directories.
        collection_id: Owning collection.
        load_tag: Load tag of the attempt that reserved a file path.
    """

    file_id: str
    path: str
    name: str
    is_file_ref: bool
    collection_id: str
    load_tag: str | None = None


@dataclass(frozen=True)
class FileEntry:
    """Finalized file metadata; makes a reserved path visible."""

    file_id: str
    collection_id: str
    checksum_crc32c: str | None
    checksum_md5: str | None
    size: int
    created_date: datetime
    storage_location: str
    mime_type: str | None = None
    description: str | None = None
    load_tag: str | None = None

    def file_info(self) -> FileInfo:
        """Project the physical attributes of this file."""
        return FileInfo(
            checksum_md5=self.checksum_md5,
            checksum_crc32c=self.checksum_crc32c,
            size=self.size,
            created_date=self.created_date,
            storage_location=self.storage_location,
        )


@dataclass(frozen=True)
class FsItem:
    """Confident lookup result for a file or directory.

    Directories carry ``contents`` only when enumerated to the requested depth.
    """

    file_id: str
    collection_id: str
    path: str
    is_directory: bool
    file_entry: FileEntry | None = None
    enumerated: bool = False
    contents: tuple["FsItem", ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, object]:
        """Serialize for CLI output."""
        payload: dict[str, object] = {
            "file_id": self.file_id,
            "collection_id": self.collection_id,
            "path": self.path,
            "type": "DIRECTORY" if self.is_directory else "FILE",
        }
        if self.file_entry is not None:
            payload["mime_type"] = self.file_entry.mime_type
            payload["load_tag"] = self.file_entry.load_tag
            payload.update(self.file_entry.file_info().to_dict())
        if self.is_directory and self.enumerated:
            payload["contents"] = [item.to_dict() for item in self.contents]
        return payload


@dataclass(frozen=True)
class LoadFile:
    """Ledger row tracking one file of one load."""

    load_id: str
    source_path: str
    target_path: str
    state: LoadFileState
    mime_type: str | None = None
    description: str | None = None
    flight_id: str | None = None
    file_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class LoadCandidates:
    """Point-in-time driver view of one load; never persisted."""

    running_loads: tuple[LoadFile, ...]
    candidate_files: tuple[LoadFile, ...]
    failed_loads: int


@dataclass(frozen=True)
class StorageLocation:
    """Provisioned storage location shared by many files."""

    collection_name: str
    billing_context: str
    location_uri: str


@dataclass(frozen=True)
class BulkLoadFileResult:
    """Per-file outcome of a bulk load."""

    source_path: str
    target_path: str
    state: LoadFileState
    file_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class BulkLoadSummary:
    """Aggregate counts of a bulk load."""

    total: int
    succeeded: int
    failed: int
    not_tried: int


@dataclass(frozen=True)
class BulkLoadResult:
    """Final output of a bulk load."""

    load_id: str
    load_tag: str
    results: tuple[BulkLoadFileResult, ...]
    summary: BulkLoadSummary


def _optional_str(raw_value: object) -> str | None:
    if raw_value is None:
        return None
    return str(raw_value)
