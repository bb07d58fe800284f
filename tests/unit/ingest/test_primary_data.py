"""Unit tests for primary data copy."""

from __future__ import annotations

import io
from pathlib import Path

import pytest

from core.errors import IngestSourceError
from core.types import StorageLocation
from ingest.primary_data import PrimaryDataCopier


def _location(tmp_path: Path) -> StorageLocation:
    return StorageLocation(
        collection_name="col",
        billing_context="default",
        location_uri=str(tmp_path / "storage"),
    )


class _FakeS3Client:
    def __init__(self, payload: bytes) -> None:
        self._payload = payload
        self.requests: list[tuple[str, str]] = []

    def download_fileobj(self, bucket: str, key: str, fileobj: io.BufferedWriter) -> None:
        self.requests.append((bucket, key))
        fileobj.write(self._payload)


def test_copy_places_file_under_file_id(config, tmp_path, write_source) -> None:
    """Copies land at <location>/<collection>/<file_id>/<leaf>."""
    source = write_source("a.txt", "abc")

    info = PrimaryDataCopier(config).copy(str(source), _location(tmp_path), "col", "f1", "/x/a.txt")

    assert Path(info.storage_location) == tmp_path / "storage" / "col" / "f1" / "a.txt"


def test_copy_accepts_file_uri(config, tmp_path, write_source) -> None:
    """file:// sources are read like local paths."""
    source = write_source("a.txt", "abc")

    info = PrimaryDataCopier(config).copy(source.as_uri(), _location(tmp_path), "col", "f1", "/a.txt")

    assert info.size == 3


def test_copy_missing_source_raises(config, tmp_path) -> None:
    """Missing sources are permanent per-file failures."""
    with pytest.raises(IngestSourceError):
        PrimaryDataCopier(config).copy(
            str(tmp_path / "missing.txt"), _location(tmp_path), "col", "f1", "/a.txt"
        )


def test_copy_reads_s3_objects(config, tmp_path) -> None:
    """s3:// sources are downloaded through the S3 client."""
    client = _FakeS3Client(b"from-s3")
    copier = PrimaryDataCopier(config, s3_client_factory=lambda _: client)

    info = copier.copy("s3://bucket/key/a.txt", _location(tmp_path), "col", "f1", "/a.txt")

    assert (client.requests, info.size) == ([("bucket", "key/a.txt")], 7)


def test_delete_copy_removes_file_directory(config, tmp_path, write_source) -> None:
    """Deleting a copy removes the file-scoped directory too."""
    source = write_source("a.txt", "abc")
    copier = PrimaryDataCopier(config)
    info = copier.copy(str(source), _location(tmp_path), "col", "f1", "/a.txt")

    copier.delete_copy(info.storage_location)

    assert not (tmp_path / "storage" / "col" / "f1").exists()
