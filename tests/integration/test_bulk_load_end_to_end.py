"""Integration tests for bulk loads through the SDK client."""

from __future__ import annotations

from dataclasses import replace
import threading
from pathlib import Path

import pytest

from bulkload import BulkLoadClient, BulkLoadConfig, BulkLoadFileModel, BulkLoadRequest
from core.errors import NamespaceConflictError, StoreContentionError
from core.types import DirectoryEntry


def _request(sources: dict[str, Path], load_tag: str = "tag-1") -> BulkLoadRequest:
    files = tuple(
        BulkLoadFileModel(source_path=str(source), target_path=target, mime_type="text/plain")
        for target, source in sources.items()
    )
    return BulkLoadRequest(dataset_id="col-1", files=files, load_tag=load_tag)


@pytest.fixture
def client(config):
    with BulkLoadClient(config) as bulk_client:
        yield bulk_client


def test_bulk_load_makes_every_file_visible(client, write_source) -> None:
    """Every loaded file should be visible by path with its content size."""
    sources = {f"/docs/{index}.txt": write_source(f"{index}.txt", "x" * index) for index in range(6)}

    client.ingest_bulk(_request(sources))
    sizes = [client.lookup_path("col-1", target).file_entry.size for target in sources]

    assert sizes == list(range(6))


def test_bulk_load_copies_bytes_into_storage(client, write_source) -> None:
    """The stored copy should hold the source bytes."""
    sources = {"/a.txt": write_source("a.txt", "alpha")}

    client.ingest_bulk(_request(sources))
    storage_location = client.lookup_path("col-1", "/a.txt").file_entry.storage_location

    assert Path(storage_location).read_text(encoding="utf-8") == "alpha"


def test_resubmitting_load_tag_keeps_file_ids(client, write_source) -> None:
    """Re-running a finished load returns the same file ids."""
    sources = {"/a.txt": write_source("a.txt", "alpha"), "/b.txt": write_source("b.txt", "beta")}
    first = client.ingest_bulk(_request(sources))

    second = client.ingest_bulk(_request(sources))

    assert [item.file_id for item in second.results] == [item.file_id for item in first.results]


def test_other_load_tag_cannot_overwrite_path(client, write_source) -> None:
    """A second load tag targeting a taken path fails that file."""
    source = write_source("a.txt", "alpha")
    client.ingest_bulk(_request({"/a.txt": source}, load_tag="tag-1"))

    result = client.ingest_bulk(_request({"/a.txt": source}, load_tag="tag-2"))

    assert result.summary.failed == 1 and result.results[0].state == "FAILED"


def test_failed_file_leaves_no_entry(client, write_source, tmp_path) -> None:
    """A failed file load undoes its directory entry."""
    sources = {"/missing.txt": tmp_path / "missing.txt"}

    client.ingest_bulk(_request(sources))

    assert client.namespace.lookup_by_path("col-1", "/missing.txt") is None


def test_partial_failure_still_loads_other_files(client, write_source, tmp_path) -> None:
    """Failures of some files do not stop the rest with unlimited failures."""
    sources = {
        "/missing.txt": tmp_path / "missing.txt",
        "/ok.txt": write_source("ok.txt", "fine"),
    }

    result = client.ingest_bulk(_request(sources))

    assert (result.summary.succeeded, result.summary.failed) == (1, 1)


def test_delete_after_load_releases_path(client, write_source) -> None:
    """Deleted files free their path for a new load."""
    source = write_source("a.txt", "alpha")
    client.ingest_bulk(_request({"/a.txt": source}, load_tag="tag-1"))
    client.delete_file("col-1", client.lookup_path("col-1", "/a.txt").file_id)

    result = client.ingest_bulk(_request({"/a.txt": source}, load_tag="tag-2"))

    assert result.summary.succeeded == 1


def test_concurrent_creates_have_one_winner(client) -> None:
    """Racing creators of one path should leave exactly one entry."""
    barrier = threading.Barrier(2)
    outcomes: list[str] = []
    lock = threading.Lock()

    def _create(load_tag: str) -> None:
        entry = DirectoryEntry(
            file_id=f"id-{load_tag}",
            path="/race/target.txt",
            name="target.txt",
            is_file_ref=True,
            collection_id="col-1",
            load_tag=load_tag,
        )
        barrier.wait()
        try:
            client.namespace.create_entry("col-1", entry)
            outcome = "created"
        except (NamespaceConflictError, StoreContentionError):
            outcome = "lost"
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=_create, args=(tag,)) for tag in ("tag-1", "tag-2")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["created", "lost"]


def test_many_siblings_load_with_default_retry_settings(tmp_path, write_source) -> None:
    """Concurrent loads into one directory never fail on store contention."""
    config = replace(
        BulkLoadConfig.from_env(),
        data_root=tmp_path / "data",
        driver_wait_seconds=0.01,
        concurrent_files=8,
        worker_threads=8,
    )
    sources = {
        f"/dir/{index}.txt": write_source(f"{index}.txt", str(index)) for index in range(120)
    }

    with BulkLoadClient(config) as bulk_client:
        result = bulk_client.ingest_bulk(_request(sources))

    assert (result.summary.succeeded, result.summary.failed) == (120, 0)


def test_orphaned_claim_is_loaded_on_resubmit(client, write_source) -> None:
    """A row claimed by a driver that died before dispatch is loaded later."""
    sources = {"/a.txt": write_source("a.txt", "alpha"), "/b.txt": write_source("b.txt", "beta")}
    request = _request(sources)
    load_id = client.ledger.lock_load("tag-1", "dead-driver")
    client.ledger.seed_batch(load_id, request.files)
    client.ledger.mark_running(load_id, "/a.txt", "never-dispatched")
    client.ledger.unlock_load("tag-1", "dead-driver")

    result = client.ingest_bulk(request)

    assert result.summary.succeeded == 2
