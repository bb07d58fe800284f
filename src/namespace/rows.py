"""Row mapping between store tuples and namespace models."""

from __future__ import annotations

from typing import Any

from core.types import DirectoryEntry, FileEntry

DIRECTORY_COLUMNS = "file_id, path, name, is_file_ref, collection_id, load_tag"
FILE_COLUMNS = (
    "file_id, collection_id, checksum_crc32c, checksum_md5, size, created_date, "
    "storage_location, mime_type, description, load_tag"
)


def directory_entry_from_row(row: tuple[Any, ...]) -> DirectoryEntry:
    return DirectoryEntry(
        file_id=str(row[0]),
        path=str(row[1]),
        name=str(row[2]),
        is_file_ref=bool(row[3]),
        collection_id=str(row[4]),
        load_tag=row[5],
    )


def file_entry_from_row(row: tuple[Any, ...]) -> FileEntry:
    return FileEntry(
        file_id=str(row[0]),
        collection_id=str(row[1]),
        checksum_crc32c=row[2],
        checksum_md5=row[3],
        size=int(row[4]),
        created_date=row[5],
        storage_location=str(row[6]),
        mime_type=row[7],
        description=row[8],
        load_tag=row[9],
    )
