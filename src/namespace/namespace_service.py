"""Namespace Service: atomic path reservation over the shared store.

Entries are addressed by a stable file id; ``directory_entry`` is the
path->id index keyed by (collection_id, path). The store gives no
referential integrity, so ancestor materialization and empty-ancestor
cleanup are explicit steps inside the same transaction as the change,
followed by a post-commit repair of directories a concurrent writer
removed.

A file-ref entry with no matching ``file_entry`` row is a file being
ingested (or deleted) and is invisible to confident reads.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import duckdb

from core.constants import ROOT_PATH
from core.errors import (
    DependencyExistsError,
    FileNotFoundInNamespaceError,
    FileSystemCorruptError,
    InvalidPathError,
    NamespaceConflictError,
    NamespaceError,
    StoreContentionError,
)
from core.logging_config import get_logger
from core.paths import ancestor_paths, leaf_name, normalize_path, parent_path
from core.types import DirectoryEntry, FileEntry, FsItem
from namespace.rows import (
    DIRECTORY_COLUMNS,
    FILE_COLUMNS,
    directory_entry_from_row,
    file_entry_from_row,
)
from store.shared_store import SharedStore, utc_now_naive

_LOGGER = get_logger(__name__)


class NamespaceService:
    """Directory tree, file metadata, and dependency records."""

    def __init__(self, store: SharedStore) -> None:
        self._store = store

    # ----------------------------
    # Directory entries
    # ----------------------------
    def lookup_by_path(self, collection_id: str, path: str) -> DirectoryEntry | None:
        """Return the entry at exactly ``path``, if any."""
        normalized = normalize_path(path)
        with self._store.cursor() as cursor:
            row = cursor.execute(
                f"SELECT {DIRECTORY_COLUMNS} FROM directory_entry "
                "WHERE collection_id = ? AND path = ?",
                [collection_id, normalized],
            ).fetchone()
        return directory_entry_from_row(row) if row else None

    def lookup_by_id(self, collection_id: str, file_id: str) -> DirectoryEntry | None:
        """Return the entry with ``file_id``, if any."""
        with self._store.cursor() as cursor:
            return _select_entry_by_id(cursor, collection_id, file_id)

    def create_entry(self, collection_id: str, entry: DirectoryEntry) -> DirectoryEntry:
        """Atomically reserve ``entry.path``; the first writer wins.

        Missing ancestor directories are created in the same transaction;
        existing ancestors are left unwritten so sibling creates never
        conflict. A cleanup that removed an ancestor concurrently is
        repaired after commit.

        Args:
            collection_id: Owning collection.
            entry: Entry to create; its path is normalized.

        Returns:
            The stored entry.

        Raises:
            NamespaceConflictError: If an entry already exists at the path.
            InvalidPathError: If an ancestor path is a file.
            StoreContentionError: On a transient write conflict.
        """
        path = normalize_path(entry.path)
        if path == ROOT_PATH:
            raise InvalidPathError("Cannot create an entry at the namespace root.")
        stored = DirectoryEntry(
            file_id=entry.file_id,
            path=path,
            name=leaf_name(path),
            is_file_ref=entry.is_file_ref,
            collection_id=collection_id,
            load_tag=entry.load_tag,
        )
        ancestors = ancestor_paths(path)
        now = utc_now_naive()
        with self._store.transaction() as tx:
            _insert_missing_directories(tx, collection_id, ancestors, now)
            _reject_file_ancestors(tx, collection_id, ancestors, path)
            try:
                tx.execute(
                    "INSERT INTO directory_entry "
                    "(collection_id, path, parent_path, name, file_id, is_file_ref, load_tag, "
                    "created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    [
                        collection_id,
                        path,
                        parent_path(path),
                        stored.name,
                        stored.file_id,
                        stored.is_file_ref,
                        stored.load_tag,
                        now,
                    ],
                )
            except duckdb.ConstraintException as error:
                raise NamespaceConflictError(
                    f"Path already exists in collection {collection_id}: {path}"
                ) from error
        _LOGGER.debug(
            "directory_entry_created",
            collection_id=collection_id,
            path=path,
            file_id=stored.file_id,
        )
        self._restore_directories(collection_id, ancestors)
        return stored

    def delete_entry(self, collection_id: str, file_id: str) -> bool:
        """Remove an entry and any ancestors left without children.

        Cleanup walks upward and stops at the first non-empty ancestor;
        the root is never deleted.

        Returns:
            Whether the entry existed.

        Raises:
            DependencyExistsError: While any consumer references the file.
            NamespaceError: If the entry is a directory that still has children.
        """
        with self._store.transaction() as tx:
            _reject_dependencies(tx, file_id)
            removed = _delete_entry_and_empty_ancestors(tx, collection_id, file_id)
        if removed is None:
            return False
        self._restore_nonempty_directories(collection_id, removed)
        return True

    def list_children(self, collection_id: str, path: str, depth: int) -> FsItem:
        """Enumerate the node at ``path``.

        Args:
            collection_id: Owning collection.
            path: Absolute path; ``/`` is the collection root.
            depth: 0 for the node only, -1 for the full subtree, N for N levels.

        Returns:
            Confident view of the node.

        Raises:
            FileNotFoundInNamespaceError: If nothing visible exists at the path.
        """
        normalized = normalize_path(path)
        with self._store.cursor() as cursor:
            if normalized == ROOT_PATH:
                return _build_root(cursor, collection_id, depth)
            row = cursor.execute(
                f"SELECT {DIRECTORY_COLUMNS} FROM directory_entry "
                "WHERE collection_id = ? AND path = ?",
                [collection_id, normalized],
            ).fetchone()
            item = _build_item(cursor, directory_entry_from_row(row), depth) if row else None
        if item is None:
            raise FileNotFoundInNamespaceError(
                f"Object not found in collection {collection_id}: {normalized}"
            )
        return item

    def retrieve_by_path(self, collection_id: str, path: str, depth: int = 0) -> FsItem:
        """Confident lookup by path; in-flight files are not found."""
        return self.list_children(collection_id, path, depth)

    def retrieve_by_id(self, collection_id: str, file_id: str, depth: int = 0) -> FsItem:
        """Confident lookup by file id.

        Raises:
            FileNotFoundInNamespaceError: If the id is unknown or still in flight.
        """
        with self._store.cursor() as cursor:
            entry = _select_entry_by_id(cursor, collection_id, file_id)
            item = _build_item(cursor, entry, depth) if entry else None
        if item is None:
            raise FileNotFoundInNamespaceError(
                f"Object not found in collection {collection_id}: file id {file_id}"
            )
        return item

    # ----------------------------
    # File entries
    # ----------------------------
    def lookup_file(self, collection_id: str, file_id: str) -> FileEntry | None:
        """Return finalized file metadata, if the file has been finalized."""
        with self._store.cursor() as cursor:
            return _select_file(cursor, collection_id, file_id)

    def create_file(self, collection_id: str, file_entry: FileEntry) -> FileEntry:
        """Atomically write the file entry that makes a reserved path visible.

        Raises:
            FileSystemCorruptError: If no directory entry reserves the file id.
            NamespaceConflictError: If the file entry already exists.
        """
        with self._store.transaction() as tx:
            entry = _select_entry_by_id(tx, collection_id, file_entry.file_id)
            if entry is None or not entry.is_file_ref:
                raise FileSystemCorruptError(
                    f"No file directory entry reserves file id {file_entry.file_id} "
                    f"in collection {collection_id}."
                )
            try:
                tx.execute(
                    "INSERT INTO file_entry "
                    "(collection_id, file_id, mime_type, description, checksum_crc32c, "
                    "checksum_md5, size, created_date, storage_location, load_tag) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    [
                        collection_id,
                        file_entry.file_id,
                        file_entry.mime_type,
                        file_entry.description,
                        file_entry.checksum_crc32c,
                        file_entry.checksum_md5,
                        file_entry.size,
                        _naive_utc(file_entry),
                        file_entry.storage_location,
                        file_entry.load_tag,
                    ],
                )
            except duckdb.ConstraintException as error:
                raise NamespaceConflictError(
                    f"File entry already exists in collection {collection_id}: "
                    f"{file_entry.file_id}"
                ) from error
        _LOGGER.debug("file_entry_created", collection_id=collection_id, file_id=file_entry.file_id)
        return file_entry

    def delete_file_entry(self, collection_id: str, file_id: str) -> bool:
        """Remove only the file entry, returning the path to the in-flight state."""
        with self._store.cursor() as cursor:
            deleted = cursor.execute(
                "DELETE FROM file_entry WHERE collection_id = ? AND file_id = ? RETURNING file_id",
                [collection_id, file_id],
            ).fetchall()
        return bool(deleted)

    def delete_file(self, collection_id: str, file_id: str) -> bool:
        """Delete a file: hide it first, then release its path.

        Returns:
            Whether the file existed.

        Raises:
            DependencyExistsError: While any consumer references the file.
        """
        with self._store.transaction() as tx:
            _reject_dependencies(tx, file_id)
            tx.execute(
                "DELETE FROM file_entry WHERE collection_id = ? AND file_id = ?",
                [collection_id, file_id],
            )
            removed = _delete_entry_and_empty_ancestors(tx, collection_id, file_id)
        existed = removed is not None
        if removed:
            self._restore_nonempty_directories(collection_id, removed)
        _LOGGER.info("file_deleted", collection_id=collection_id, file_id=file_id, existed=existed)
        return existed

    def delete_collection(self, collection_id: str) -> int:
        """Remove every entry of a collection.

        Returns:
            Number of finalized files removed.

        Raises:
            DependencyExistsError: If any file of the collection is referenced.
        """
        with self._store.transaction() as tx:
            row = tx.execute(
                "SELECT d.consumer_id, d.file_id FROM file_dependency d "
                "JOIN directory_entry e ON e.file_id = d.file_id "
                "WHERE e.collection_id = ? AND d.refcount > 0 "
                "ORDER BY d.consumer_id LIMIT 1",
                [collection_id],
            ).fetchone()
            if row:
                raise DependencyExistsError(
                    f"Collection {collection_id} file {row[1]} is referenced by {row[0]}",
                    consumer_id=str(row[0]),
                )
            removed = tx.execute(
                "DELETE FROM file_entry WHERE collection_id = ? RETURNING file_id",
                [collection_id],
            ).fetchall()
            tx.execute("DELETE FROM directory_entry WHERE collection_id = ?", [collection_id])
        _LOGGER.info("collection_deleted", collection_id=collection_id, file_count=len(removed))
        return len(removed)

    # ----------------------------
    # Dependencies
    # ----------------------------
    def add_dependency(self, consumer_id: str, file_id: str) -> int:
        """Increment the reference count of ``consumer_id`` on ``file_id``.

        Returns:
            The new reference count.
        """
        try:
            with self._store.transaction() as tx:
                updated = tx.execute(
                    "UPDATE file_dependency SET refcount = refcount + 1 "
                    "WHERE file_id = ? AND consumer_id = ? RETURNING refcount",
                    [file_id, consumer_id],
                ).fetchone()
                if updated:
                    return int(updated[0])
                tx.execute(
                    "INSERT INTO file_dependency (file_id, consumer_id, refcount) VALUES (?, ?, 1)",
                    [file_id, consumer_id],
                )
                return 1
        except duckdb.ConstraintException as error:
            raise StoreContentionError(
                f"Concurrent dependency insert for file {file_id} by {consumer_id}"
            ) from error

    def remove_dependency(self, consumer_id: str, file_id: str) -> int:
        """Decrement a reference count, never below zero.

        Returns:
            The new reference count (0 when no record exists).
        """
        with self._store.cursor() as cursor:
            updated = cursor.execute(
                "UPDATE file_dependency SET refcount = greatest(refcount - 1, 0) "
                "WHERE file_id = ? AND consumer_id = ? RETURNING refcount",
                [file_id, consumer_id],
            ).fetchone()
        return int(updated[0]) if updated else 0

    def dependency_count(self, file_id: str) -> int:
        """Total reference count held on a file by all consumers."""
        with self._store.cursor() as cursor:
            row = cursor.execute(
                "SELECT coalesce(sum(refcount), 0) FROM file_dependency WHERE file_id = ?",
                [file_id],
            ).fetchone()
        return int(row[0]) if row else 0

    # ----------------------------
    # Create/cleanup race repair
    # ----------------------------
    # Snapshot isolation lets a cleanup remove a directory that a concurrent
    # create is adding a child to. Whichever side commits last sees both
    # effects in its post-commit check and recreates the missing directories.
    def _restore_directories(self, collection_id: str, paths: list[str]) -> None:
        """Recreate any of ``paths`` (top-down) that no longer exist."""
        if not paths:
            return
        placeholders = ", ".join("?" for _ in paths)
        with self._store.cursor() as cursor:
            present = {
                str(row[0])
                for row in cursor.execute(
                    f"SELECT path FROM directory_entry WHERE collection_id = ? "
                    f"AND path IN ({placeholders})",
                    [collection_id, *paths],
                ).fetchall()
            }
        missing = [path for path in paths if path not in present]
        if not missing:
            return
        with self._store.transaction() as tx:
            _insert_missing_directories(tx, collection_id, paths, utc_now_naive())
        _LOGGER.info("directories_restored", collection_id=collection_id, paths=missing)

    def _restore_nonempty_directories(self, collection_id: str, removed: list[str]) -> None:
        """Undo cleanup of directories that gained a child concurrently."""
        if not removed:
            return
        with self._store.cursor() as cursor:
            regained = next(
                (path for path in removed if _has_children(cursor, collection_id, path)),
                None,
            )
        if regained is not None:
            self._restore_directories(collection_id, [*ancestor_paths(regained), regained])


def _insert_missing_directories(
    tx: duckdb.DuckDBPyConnection,
    collection_id: str,
    paths: list[str],
    now: Any,
) -> None:
    for path in paths:
        try:
            tx.execute(
                "INSERT INTO directory_entry "
                "(collection_id, path, parent_path, name, file_id, is_file_ref, load_tag, "
                "created_at) VALUES (?, ?, ?, ?, ?, FALSE, NULL, ?) "
                "ON CONFLICT (collection_id, path) DO NOTHING",
                [collection_id, path, parent_path(path), leaf_name(path), str(uuid4()), now],
            )
        except duckdb.ConstraintException as error:
            # Another uncommitted create is adding the same directory.
            raise StoreContentionError(
                f"Concurrent directory create in collection {collection_id}: {path}"
            ) from error


def _reject_file_ancestors(
    tx: duckdb.DuckDBPyConnection,
    collection_id: str,
    ancestors: list[str],
    path: str,
) -> None:
    if not ancestors:
        return
    placeholders = ", ".join("?" for _ in ancestors)
    row = tx.execute(
        f"SELECT path FROM directory_entry WHERE collection_id = ? "
        f"AND path IN ({placeholders}) AND is_file_ref LIMIT 1",
        [collection_id, *ancestors],
    ).fetchone()
    if row:
        raise InvalidPathError(
            f"Cannot create {path}: ancestor {row[0]} is a file, not a directory."
        )


def _reject_dependencies(tx: duckdb.DuckDBPyConnection, file_id: str) -> None:
    row = tx.execute(
        "SELECT consumer_id FROM file_dependency WHERE file_id = ? AND refcount > 0 "
        "ORDER BY consumer_id LIMIT 1",
        [file_id],
    ).fetchone()
    if row:
        raise DependencyExistsError(
            f"File {file_id} is still referenced by {row[0]}", consumer_id=str(row[0])
        )


def _delete_entry_and_empty_ancestors(
    tx: duckdb.DuckDBPyConnection,
    collection_id: str,
    file_id: str,
) -> list[str] | None:
    """Delete an entry; return the emptied directories removed, bottom-up.

    Returns None when the entry does not exist.
    """
    entry = _select_entry_by_id(tx, collection_id, file_id)
    if entry is None:
        return None
    if not entry.is_file_ref and _has_children(tx, collection_id, entry.path):
        raise NamespaceError(
            f"Cannot delete directory {entry.path} in collection {collection_id}: not empty."
        )
    tx.execute(
        "DELETE FROM directory_entry WHERE collection_id = ? AND path = ?",
        [collection_id, entry.path],
    )
    removed: list[str] = []
    current = parent_path(entry.path)
    while current and not _has_children(tx, collection_id, current):
        tx.execute(
            "DELETE FROM directory_entry WHERE collection_id = ? AND path = ? "
            "AND is_file_ref = FALSE",
            [collection_id, current],
        )
        removed.append(current)
        current = parent_path(current)
    return removed


def _has_children(tx: duckdb.DuckDBPyConnection, collection_id: str, path: str) -> bool:
    row = tx.execute(
        "SELECT 1 FROM directory_entry WHERE collection_id = ? AND parent_path = ? LIMIT 1",
        [collection_id, path],
    ).fetchone()
    return row is not None


def _select_entry_by_id(
    cursor: duckdb.DuckDBPyConnection,
    collection_id: str,
    file_id: str,
) -> DirectoryEntry | None:
    row = cursor.execute(
        f"SELECT {DIRECTORY_COLUMNS} FROM directory_entry "
        "WHERE collection_id = ? AND file_id = ?",
        [collection_id, file_id],
    ).fetchone()
    return directory_entry_from_row(row) if row else None


def _select_file(
    cursor: duckdb.DuckDBPyConnection,
    collection_id: str,
    file_id: str,
) -> FileEntry | None:
    row = cursor.execute(
        f"SELECT {FILE_COLUMNS} FROM file_entry WHERE collection_id = ? AND file_id = ?",
        [collection_id, file_id],
    ).fetchone()
    return file_entry_from_row(row) if row else None


def _build_root(cursor: duckdb.DuckDBPyConnection, collection_id: str, depth: int) -> FsItem:
    contents: tuple[FsItem, ...] = ()
    if depth != 0:
        contents = _build_children(cursor, collection_id, "", depth)
    return FsItem(
        file_id=collection_id,
        collection_id=collection_id,
        path=ROOT_PATH,
        is_directory=True,
        enumerated=depth != 0,
        contents=contents,
    )


def _build_item(
    cursor: duckdb.DuckDBPyConnection,
    entry: DirectoryEntry,
    depth: int,
) -> FsItem | None:
    if entry.is_file_ref:
        file_entry = _select_file(cursor, entry.collection_id, entry.file_id)
        if file_entry is None:
            return None
        return FsItem(
            file_id=entry.file_id,
            collection_id=entry.collection_id,
            path=entry.path,
            is_directory=False,
            file_entry=file_entry,
        )
    contents: tuple[FsItem, ...] = ()
    if depth != 0:
        contents = _build_children(cursor, entry.collection_id, entry.path, depth)
    return FsItem(
        file_id=entry.file_id,
        collection_id=entry.collection_id,
        path=entry.path,
        is_directory=True,
        enumerated=depth != 0,
        contents=contents,
    )


def _build_children(
    cursor: duckdb.DuckDBPyConnection,
    collection_id: str,
    path: str,
    depth: int,
) -> tuple[FsItem, ...]:
    rows = cursor.execute(
        f"SELECT {DIRECTORY_COLUMNS} FROM directory_entry "
        "WHERE collection_id = ? AND parent_path = ? ORDER BY name",
        [collection_id, path],
    ).fetchall()
    child_depth = depth - 1 if depth > 0 else depth
    children = []
    for row in rows:
        item = _build_item(cursor, directory_entry_from_row(row), child_depth)
        if item is not None:
            children.append(item)
    return tuple(children)


def _naive_utc(file_entry: FileEntry) -> datetime:
    created = file_entry.created_date
    if created.tzinfo is not None:
        return created.astimezone(timezone.utc).replace(tzinfo=None)
    return created
