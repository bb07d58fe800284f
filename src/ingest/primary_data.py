"""Primary data copy into provisioned storage.

This module copies source bytes from local paths, ``file://`` URIs, or
``s3://`` objects into a storage location and measures the copy.
"""

from __future__ import annotations

from datetime import datetime, timezone
import hashlib
from pathlib import Path
import shutil
from typing import Any, Callable
from urllib.parse import unquote, urlparse

from core.config import BulkLoadConfig
from core.constants import COPY_CHUNK_SIZE_BYTES
from core.errors import BulkLoadDependencyError, IngestSourceError
from core.logging_config import get_logger
from core.paths import leaf_name
from core.s3_uri import is_s3_uri, parse_s3_uri
from core.types import FileInfo, StorageLocation

_LOGGER = get_logger(__name__)


class PrimaryDataCopier:
    """Copy one file per call into ``<location>/<collection_id>/<file_id>/<leaf>``."""

    def __init__(
        self,
        config: BulkLoadConfig,
        s3_client_factory: Callable[[BulkLoadConfig], Any] | None = None,
    ) -> None:
        self._config = config
        self._s3_client_factory = s3_client_factory or create_s3_client
        self._s3_client: Any = None

    def copy(
        self,
        source_path: str,
        location: StorageLocation,
        collection_id: str,
        file_id: str,
        target_path: str,
    ) -> FileInfo:
        """Copy source bytes and compute checksums.

        Args:
            source_path: Local path, ``file://`` URI, or ``s3://bucket/key``.
            location: Provisioned storage location.
            collection_id: Owning collection.
            file_id: Allocated file id; scopes the copy.
            target_path: Namespace path; its leaf names the copy.

        Returns:
            Physical attributes of the copy.

        Raises:
            IngestSourceError: If the source cannot be read.
        """
        destination = (
            Path(location.location_uri) / collection_id / file_id / leaf_name(target_path)
        )
        destination.parent.mkdir(parents=True, exist_ok=True)
        if is_s3_uri(source_path):
            self._download_s3_object(source_path, destination)
        else:
            _copy_local_file(_local_source_path(source_path), destination)
        checksum_md5, size = _md5_and_size(destination)
        _LOGGER.debug(
            "primary_data_copied",
            source_path=source_path,
            destination=str(destination),
            size=size,
        )
        return FileInfo(
            checksum_md5=checksum_md5,
            checksum_crc32c=None,
            size=size,
            created_date=datetime.now(timezone.utc),
            storage_location=str(destination),
        )

    def delete_copy(self, storage_location: str) -> bool:
        """Delete a copied object and its file-scoped directory.

        Returns:
            Whether the object existed.
        """
        copied = Path(storage_location)
        if not copied.is_file():
            return False
        copied.unlink()
        file_dir = copied.parent
        if file_dir.is_dir() and not any(file_dir.iterdir()):
            file_dir.rmdir()
        _LOGGER.info("primary_data_deleted", storage_location=storage_location)
        return True

    def _download_s3_object(self, source_uri: str, destination: Path) -> None:
        location = parse_s3_uri(source_uri)
        if self._s3_client is None:
            self._s3_client = self._s3_client_factory(self._config)
        try:
            with destination.open("wb") as output_file:
                self._s3_client.download_fileobj(location.bucket, location.key, output_file)
        except Exception as error:
            raise IngestSourceError(
                f"Failed to read {source_uri}: {error}. "
                "Check the object exists and AWS credentials allow reading it."
            ) from error


def create_s3_client(config: BulkLoadConfig) -> Any:
    """Create a boto3 S3 client.

    Raises:
        BulkLoadDependencyError: If boto3 is missing.
    """
    try:
        import boto3
    except ImportError as error:
        raise BulkLoadDependencyError(
            "S3 sources require boto3, but it is not installed. "
            "Install boto3 to load files from s3:// sources."
        ) from error
    session_kwargs: dict[str, str] = {}
    if config.s3_profile:
        session_kwargs["profile_name"] = config.s3_profile
    if config.s3_region:
        session_kwargs["region_name"] = config.s3_region
    session = boto3.session.Session(**session_kwargs)
    return session.client("s3")


def _local_source_path(source_path: str) -> Path:
    if source_path.startswith("file://"):
        return Path(unquote(urlparse(source_path).path))
    return Path(source_path).expanduser()


def _copy_local_file(source: Path, destination: Path) -> None:
    if not source.is_file():
        raise IngestSourceError(
            f"Source file not found: {source}. Check source_path in the load request."
        )
    try:
        with source.open("rb") as input_file, destination.open("wb") as output_file:
            shutil.copyfileobj(input_file, output_file, COPY_CHUNK_SIZE_BYTES)
    except OSError as error:
        raise IngestSourceError(f"Failed to copy {source}: {error}") from error


def _md5_and_size(path: Path) -> tuple[str, int]:
    digest = hashlib.md5()
    size = 0
    with path.open("rb") as input_file:
        while chunk := input_file.read(COPY_CHUNK_SIZE_BYTES):
            digest.update(chunk)
            size += len(chunk)
    return digest.hexdigest(), size
