"""Unit tests for local storage-location provisioning."""

from __future__ import annotations

from pathlib import Path

from ingest.storage_location import LocalStorageLocationProvisioner


def test_get_or_create_location_is_idempotent(store, config) -> None:
    """Repeated calls resolve the same location."""
    provisioner = LocalStorageLocationProvisioner(store, config.storage_root)
    first = provisioner.get_or_create_location("collection", "default", "flight-1")

    second = provisioner.get_or_create_location("collection", "default", "flight-2")

    assert first == second


def test_location_directory_is_created(store, config) -> None:
    """Provisioning creates the location directory."""
    provisioner = LocalStorageLocationProvisioner(store, config.storage_root)

    location = provisioner.get_or_create_location("collection", "default", "flight-1")

    assert config.storage_root.resolve() in Path(location.location_uri).parents


def test_update_location_metadata_records_flight(store, config) -> None:
    """Undo bookkeeping records the latest flight id."""
    provisioner = LocalStorageLocationProvisioner(store, config.storage_root)
    location = provisioner.get_or_create_location("collection", "default", "flight-1")

    provisioner.update_location_metadata(location, "flight-9")

    with store.cursor() as cursor:
        row = cursor.execute("SELECT last_flight_id FROM storage_location").fetchone()
    assert row[0] == "flight-9"
