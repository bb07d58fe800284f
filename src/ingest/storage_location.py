"""Storage-location provisioning.

A storage location is shared by every file of a (collection, billing
context) pair. Provisioning is idempotent and locations are never deleted
by a per-file flight.
"""

from __future__ import annotations

from pathlib import Path
import re
from typing import Protocol

import duckdb

from core.errors import StoreContentionError
from core.logging_config import get_logger
from core.types import StorageLocation
from store.shared_store import SharedStore, utc_now_naive

_LOGGER = get_logger(__name__)
_UNSAFE_SEGMENT = re.compile(r"[^A-Za-z0-9._-]+")


class StorageLocationProvisioner(Protocol):
    """Operations consumed from the storage-location provisioner."""

    def get_or_create_location(
        self,
        collection_name: str,
        billing_context: str,
        flight_id: str,
    ) -> StorageLocation: ...

    def update_location_metadata(self, location: StorageLocation, flight_id: str) -> None: ...


class LocalStorageLocationProvisioner:
    """Provision directories under a local storage root.

    Location records live in the shared store so every worker resolves the
    same location for the same pair.
    """

    def __init__(self, store: SharedStore, storage_root: Path) -> None:
        self._store = store
        self._storage_root = storage_root.expanduser().resolve()

    def get_or_create_location(
        self,
        collection_name: str,
        billing_context: str,
        flight_id: str,
    ) -> StorageLocation:
        candidate_uri = str(
            self._storage_root / _safe_segment(collection_name) / _safe_segment(billing_context)
        )
        now = utc_now_naive()
        try:
            with self._store.cursor() as cursor:
                cursor.execute(
                    "INSERT INTO storage_location (collection_name, billing_context, location_uri, "
                    "created_at, last_flight_id, updated_at) VALUES (?, ?, ?, ?, ?, ?) "
                    "ON CONFLICT (collection_name, billing_context) DO NOTHING",
                    [collection_name, billing_context, candidate_uri, now, flight_id, now],
                )
                row = cursor.execute(
                    "SELECT location_uri FROM storage_location "
                    "WHERE collection_name = ? AND billing_context = ?",
                    [collection_name, billing_context],
                ).fetchone()
        except duckdb.ConstraintException as error:
            raise StoreContentionError(
                f"Concurrent provisioning of storage for {collection_name}/{billing_context}"
            ) from error
        location_uri = str(row[0]) if row else candidate_uri
        Path(location_uri).mkdir(parents=True, exist_ok=True)
        return StorageLocation(
            collection_name=collection_name,
            billing_context=billing_context,
            location_uri=location_uri,
        )

    def update_location_metadata(self, location: StorageLocation, flight_id: str) -> None:
        """Record the latest flight that used a location."""
        with self._store.cursor() as cursor:
            cursor.execute(
                "UPDATE storage_location SET last_flight_id = ?, updated_at = ? "
                "WHERE collection_name = ? AND billing_context = ?",
                [flight_id, utc_now_naive(), location.collection_name, location.billing_context],
            )
        _LOGGER.debug(
            "storage_location_touched",
            collection_name=location.collection_name,
            billing_context=location.billing_context,
            flight_id=flight_id,
        )


def _safe_segment(value: str) -> str:
    cleaned = _UNSAFE_SEGMENT.sub("_", value).strip("._")
    return cleaned or "_"
