"""Unit tests for the namespace service."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from core.errors import (
    DependencyExistsError,
    FileNotFoundInNamespaceError,
    FileSystemCorruptError,
    InvalidPathError,
    NamespaceConflictError,
    NamespaceError,
)
from core.types import DirectoryEntry, FileEntry
import namespace.namespace_service as namespace_module
from namespace.namespace_service import NamespaceService
from store.shared_store import utc_now_naive

COLLECTION = "col-1"


def _file_ref(file_id: str, path: str, load_tag: str = "tag-1") -> DirectoryEntry:
    return DirectoryEntry(
        file_id=file_id,
        path=path,
        name=path.rsplit("/", 1)[-1],
        is_file_ref=True,
        collection_id=COLLECTION,
        load_tag=load_tag,
    )


def _file_entry(file_id: str) -> FileEntry:
    return FileEntry(
        file_id=file_id,
        collection_id=COLLECTION,
        checksum_crc32c=None,
        checksum_md5="d41d8cd98f00b204e9800998ecf8427e",
        size=0,
        created_date=datetime(2024, 5, 1, tzinfo=timezone.utc),
        storage_location="/storage/x",
        load_tag="tag-1",
    )


def _create_visible_file(namespace: NamespaceService, file_id: str, path: str) -> None:
    namespace.create_entry(COLLECTION, _file_ref(file_id, path))
    namespace.create_file(COLLECTION, _file_entry(file_id))


def test_create_entry_materializes_ancestors(store) -> None:
    """Creating a nested file should create its ancestor directories."""
    namespace = NamespaceService(store)

    namespace.create_entry(COLLECTION, _file_ref("f1", "/a/b/c.txt"))

    assert namespace.lookup_by_path(COLLECTION, "/a/b").is_file_ref is False


def test_lookup_by_id_returns_entry(store) -> None:
    """Entries are reachable by their file id."""
    namespace = NamespaceService(store)
    namespace.create_entry(COLLECTION, _file_ref("f1", "/a/b.txt"))

    assert namespace.lookup_by_id(COLLECTION, "f1").path == "/a/b.txt"


def test_create_entry_first_writer_wins(store) -> None:
    """Second create at the same path should conflict."""
    namespace = NamespaceService(store)
    namespace.create_entry(COLLECTION, _file_ref("f1", "/a.txt", "tag-1"))

    with pytest.raises(NamespaceConflictError):
        namespace.create_entry(COLLECTION, _file_ref("f2", "/a.txt", "tag-2"))

    assert namespace.lookup_by_path(COLLECTION, "/a.txt").file_id == "f1"


def test_create_entry_rejects_file_ancestor(store) -> None:
    """A file cannot act as a directory."""
    namespace = NamespaceService(store)
    namespace.create_entry(COLLECTION, _file_ref("f1", "/a"))

    with pytest.raises(InvalidPathError):
        namespace.create_entry(COLLECTION, _file_ref("f2", "/a/b.txt"))


def test_collections_are_isolated(store) -> None:
    """The same path may exist in two collections."""
    namespace = NamespaceService(store)
    namespace.create_entry(COLLECTION, _file_ref("f1", "/a.txt"))

    namespace.create_entry("col-2", _file_ref("f2", "/a.txt"))

    assert namespace.lookup_by_path("col-2", "/a.txt").file_id == "f2"


def test_in_flight_file_is_not_visible(store) -> None:
    """A reserved path without a file entry is invisible to lookups."""
    namespace = NamespaceService(store)
    namespace.create_entry(COLLECTION, _file_ref("f1", "/dir/a.txt"))

    with pytest.raises(FileNotFoundInNamespaceError):
        namespace.list_children(COLLECTION, "/dir/a.txt", 0)


def test_finalized_file_is_visible(store) -> None:
    """Writing the file entry makes the path visible."""
    namespace = NamespaceService(store)
    _create_visible_file(namespace, "f1", "/dir/a.txt")

    item = namespace.list_children(COLLECTION, "/dir/a.txt", 0)

    assert item.file_entry is not None and item.file_entry.size == 0


def test_create_file_requires_reserved_path(store) -> None:
    """A file entry without a directory entry is corrupt."""
    namespace = NamespaceService(store)

    with pytest.raises(FileSystemCorruptError):
        namespace.create_file(COLLECTION, _file_entry("missing"))


def test_create_file_twice_conflicts(store) -> None:
    """File entries are written once per file id."""
    namespace = NamespaceService(store)
    _create_visible_file(namespace, "f1", "/a.txt")

    with pytest.raises(NamespaceConflictError):
        namespace.create_file(COLLECTION, _file_entry("f1"))


def test_list_children_depth_zero_returns_node_only(store) -> None:
    """Depth 0 should not enumerate directory contents."""
    namespace = NamespaceService(store)
    _create_visible_file(namespace, "f1", "/a/b/c.txt")

    item = namespace.list_children(COLLECTION, "/a", 0)

    assert item.contents == ()


def test_list_children_depth_one_expands_one_level(store) -> None:
    """Depth 1 should list children without grandchildren."""
    namespace = NamespaceService(store)
    _create_visible_file(namespace, "f1", "/a/b/c.txt")

    item = namespace.list_children(COLLECTION, "/a", 1)

    assert [child.path for child in item.contents] == ["/a/b"] and item.contents[0].contents == ()


def test_list_children_full_subtree(store) -> None:
    """Depth -1 should expand every level."""
    namespace = NamespaceService(store)
    _create_visible_file(namespace, "f1", "/a/b/c.txt")
    _create_visible_file(namespace, "f2", "/a/d.txt")

    root = namespace.list_children(COLLECTION, "/", -1)

    assert root.to_dict()["contents"][0]["contents"][0]["contents"][0]["path"] == "/a/b/c.txt"


def test_list_children_missing_path_raises(store) -> None:
    """Missing paths raise not found."""
    namespace = NamespaceService(store)

    with pytest.raises(FileNotFoundInNamespaceError):
        namespace.list_children(COLLECTION, "/missing", 0)


def test_retrieve_by_id_returns_file(store) -> None:
    """Files can be looked up by id."""
    namespace = NamespaceService(store)
    _create_visible_file(namespace, "f1", "/x/y.txt")

    item = namespace.retrieve_by_id(COLLECTION, "f1")

    assert item.path == "/x/y.txt"


def test_retrieve_by_path_returns_file_metadata(store) -> None:
    """Path lookups carry the finalized file entry."""
    namespace = NamespaceService(store)
    _create_visible_file(namespace, "f1", "/x/y.txt")

    item = namespace.retrieve_by_path(COLLECTION, "/x/y.txt")

    assert item.file_entry.file_id == "f1"


def test_delete_entry_removes_empty_ancestors(store) -> None:
    """Deleting the only file removes its now-empty ancestors."""
    namespace = NamespaceService(store)
    namespace.create_entry(COLLECTION, _file_ref("f1", "/a/b/c.txt"))

    namespace.delete_entry(COLLECTION, "f1")

    assert namespace.lookup_by_path(COLLECTION, "/a") is None


def test_delete_entry_stops_at_non_empty_ancestor(store) -> None:
    """Cleanup stops at the first ancestor that still has children."""
    namespace = NamespaceService(store)
    namespace.create_entry(COLLECTION, _file_ref("f1", "/a/b/c.txt"))
    namespace.create_entry(COLLECTION, _file_ref("f2", "/a/d.txt"))

    namespace.delete_entry(COLLECTION, "f1")

    assert namespace.lookup_by_path(COLLECTION, "/a/b") is None and namespace.lookup_by_path(
        COLLECTION, "/a"
    ) is not None


def test_delete_non_empty_directory_fails(store) -> None:
    """Directories with children cannot be deleted."""
    namespace = NamespaceService(store)
    namespace.create_entry(COLLECTION, _file_ref("f1", "/a/b.txt"))
    directory = namespace.lookup_by_path(COLLECTION, "/a")

    with pytest.raises(NamespaceError):
        namespace.delete_entry(COLLECTION, directory.file_id)


def test_delete_entry_unknown_id_returns_false(store) -> None:
    """Deleting an unknown id reports that nothing existed."""
    namespace = NamespaceService(store)

    assert namespace.delete_entry(COLLECTION, "nope") is False


def test_dependency_blocks_delete_and_names_consumer(store) -> None:
    """A referenced file cannot be deleted; the error names the consumer."""
    namespace = NamespaceService(store)
    _create_visible_file(namespace, "f1", "/a/b.txt")
    namespace.add_dependency("snapshot-9", "f1")

    with pytest.raises(DependencyExistsError) as error_info:
        namespace.delete_file(COLLECTION, "f1")

    assert error_info.value.consumer_id == "snapshot-9"


def test_delete_after_dependency_removed_cleans_ancestors(store) -> None:
    """After the refcount drops to zero the delete succeeds up to the root."""
    namespace = NamespaceService(store)
    _create_visible_file(namespace, "f1", "/a/b.txt")
    namespace.add_dependency("snapshot-9", "f1")
    namespace.remove_dependency("snapshot-9", "f1")

    namespace.delete_file(COLLECTION, "f1")

    assert namespace.list_children(COLLECTION, "/", -1).contents == ()


def test_add_dependency_counts_references(store) -> None:
    """Repeated adds increment the same record."""
    namespace = NamespaceService(store)
    namespace.add_dependency("snap", "f1")

    assert namespace.add_dependency("snap", "f1") == 2


def test_remove_dependency_floors_at_zero(store) -> None:
    """Removing more than added never goes negative."""
    namespace = NamespaceService(store)
    namespace.add_dependency("snap", "f1")
    namespace.remove_dependency("snap", "f1")

    assert namespace.remove_dependency("snap", "f1") == 0


def test_dependency_count_sums_consumers(store) -> None:
    """Total count includes every consumer."""
    namespace = NamespaceService(store)
    namespace.add_dependency("snap-a", "f1")
    namespace.add_dependency("snap-b", "f1")

    assert namespace.dependency_count("f1") == 2


def test_delete_collection_removes_everything(store) -> None:
    """Deleting a collection reports the number of files removed."""
    namespace = NamespaceService(store)
    _create_visible_file(namespace, "f1", "/a/b.txt")
    _create_visible_file(namespace, "f2", "/c.txt")

    assert namespace.delete_collection(COLLECTION) == 2


def test_delete_collection_blocked_by_dependency(store) -> None:
    """A referenced file blocks collection deletion."""
    namespace = NamespaceService(store)
    _create_visible_file(namespace, "f1", "/a/b.txt")
    namespace.add_dependency("snap", "f1")

    with pytest.raises(DependencyExistsError):
        namespace.delete_collection(COLLECTION)


def _insert_raw_file_ref(store, path: str) -> None:
    parent, name = path.rsplit("/", 1)
    with store.cursor() as cursor:
        cursor.execute(
            "INSERT INTO directory_entry (collection_id, path, parent_path, name, file_id, "
            "is_file_ref, load_tag, created_at) VALUES (?, ?, ?, ?, ?, TRUE, 'tag-1', ?)",
            [COLLECTION, path, parent, name, f"raw-{name}", utc_now_naive()],
        )


def test_sibling_creates_leave_existing_directory_unwritten(store) -> None:
    """Creating a sibling does not rewrite the shared parent directory."""
    namespace = NamespaceService(store)
    namespace.create_entry(COLLECTION, _file_ref("f1", "/dir/a.txt"))
    parent_id = namespace.lookup_by_path(COLLECTION, "/dir").file_id

    namespace.create_entry(COLLECTION, _file_ref("f2", "/dir/b.txt"))

    assert namespace.lookup_by_path(COLLECTION, "/dir").file_id == parent_id


def test_create_restores_parent_removed_by_concurrent_cleanup(store, monkeypatch) -> None:
    """A parent deleted while a child create is in flight is recreated."""
    namespace = NamespaceService(store)
    namespace.create_entry(COLLECTION, _file_ref("f1", "/dir/a.txt"))
    original_reject = namespace_module._reject_file_ancestors

    def _reject_after_cleanup(tx, collection_id, ancestors, path):
        with store.cursor() as cursor:
            cursor.execute(
                "DELETE FROM directory_entry WHERE collection_id = ? AND path IN (?, ?)",
                [COLLECTION, "/dir", "/dir/a.txt"],
            )
        original_reject(tx, collection_id, ancestors, path)

    monkeypatch.setattr(namespace_module, "_reject_file_ancestors", _reject_after_cleanup)
    namespace.create_entry(COLLECTION, _file_ref("f2", "/dir/b.txt"))

    assert namespace.lookup_by_path(COLLECTION, "/dir") is not None


def test_delete_restores_directory_that_gained_a_child(store, monkeypatch) -> None:
    """Cleanup of a directory that a concurrent create filled is undone."""
    namespace = NamespaceService(store)
    namespace.create_entry(COLLECTION, _file_ref("f1", "/dir/a.txt"))
    original_has_children = namespace_module._has_children
    inserted: list[str] = []

    def _has_children_racing_create(cursor, collection_id, path):
        result = original_has_children(cursor, collection_id, path)
        if path == "/dir" and not inserted:
            _insert_raw_file_ref(store, "/dir/b.txt")
            inserted.append(path)
        return result

    monkeypatch.setattr(namespace_module, "_has_children", _has_children_racing_create)
    namespace.delete_entry(COLLECTION, "f1")

    assert namespace.lookup_by_path(COLLECTION, "/dir") is not None
