"""Load Ledger: persistent per-file load status.

Every transition is a conditional update on the current state, so a row
claimed by one driver cannot be claimed again. Rows are retained after
reaching a terminal state for audit. Nothing is cached in process: the
ledger is shared by every instance working on a load.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Sequence
from uuid import uuid4

import duckdb

from core.constants import LOAD_TAG_PREFIX
from core.errors import FileSystemCorruptError, LoadLockedError, StoreContentionError
from core.logging_config import get_logger
from core.types import (
    ALLOWED_LOAD_FILE_TRANSITIONS,
    BulkLoadFileModel,
    BulkLoadSummary,
    FileInfo,
    LoadCandidates,
    LoadFile,
    LoadFileState,
)
from store.shared_store import SharedStore, utc_now_naive

_LOGGER = get_logger(__name__)

_LOAD_FILE_COLUMNS = (
    "load_id, source_path, target_path, state, mime_type, description, flight_id, file_id, error"
)


def compute_load_tag(load_tag: str | None) -> str:
    """Return the caller's load tag, or generate a timestamped one."""
    if load_tag and load_tag.strip():
        return load_tag.strip()
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return f"{LOAD_TAG_PREFIX}{timestamp}"


class LoadLedger:
    """Ledger of loads and their per-file rows."""

    def __init__(self, store: SharedStore) -> None:
        self._store = store

    # ----------------------------
    # Load locks
    # ----------------------------
    def lock_load(self, load_tag: str, flight_id: str) -> str:
        """Take the driver lock for a load tag.

        The same flight may lock again; its load id is stable per tag.

        Returns:
            Load id for the tag.

        Raises:
            LoadLockedError: If another flight holds the lock.
        """
        try:
            with self._store.transaction() as tx:
                tx.execute(
                    "INSERT INTO load (load_tag, load_id, locked, locking_flight_id, created_at) "
                    "VALUES (?, ?, FALSE, NULL, ?) ON CONFLICT (load_tag) DO NOTHING",
                    [load_tag, str(uuid4()), utc_now_naive()],
                )
                locked = tx.execute(
                    "UPDATE load SET locked = TRUE, locking_flight_id = ? "
                    "WHERE load_tag = ? AND (NOT locked OR locking_flight_id = ?) "
                    "RETURNING load_id",
                    [flight_id, load_tag, flight_id],
                ).fetchone()
                if locked is None:
                    holder = tx.execute(
                        "SELECT locking_flight_id FROM load WHERE load_tag = ?", [load_tag]
                    ).fetchone()
                    raise LoadLockedError(
                        f"Load tag {load_tag} is locked by flight {holder[0] if holder else None}."
                    )
        except duckdb.ConstraintException as error:
            raise StoreContentionError(f"Concurrent lock attempt for load {load_tag}") from error
        load_id = str(locked[0])
        _LOGGER.info("load_locked", load_tag=load_tag, load_id=load_id, flight_id=flight_id)
        return load_id

    def unlock_load(self, load_tag: str, flight_id: str) -> bool:
        """Release the driver lock if held by ``flight_id``."""
        with self._store.cursor() as cursor:
            released = cursor.execute(
                "UPDATE load SET locked = FALSE, locking_flight_id = NULL "
                "WHERE load_tag = ? AND locking_flight_id = ? RETURNING load_id",
                [load_tag, flight_id],
            ).fetchall()
        _LOGGER.info("load_unlocked", load_tag=load_tag, flight_id=flight_id, released=bool(released))
        return bool(released)

    def find_load_id(self, load_tag: str) -> str | None:
        """Return the load id previously assigned to a tag."""
        with self._store.cursor() as cursor:
            row = cursor.execute("SELECT load_id FROM load WHERE load_tag = ?", [load_tag]).fetchone()
        return str(row[0]) if row else None

    # ----------------------------
    # Load files
    # ----------------------------
    def seed_batch(self, load_id: str, files: Sequence[BulkLoadFileModel]) -> int:
        """Insert NOT_TRIED rows, skipping target paths already seeded.

        Returns:
            Number of rows inserted.
        """
        with self._store.transaction() as tx:
            row = tx.execute(
                "SELECT coalesce(max(seq), -1) FROM load_file WHERE load_id = ?", [load_id]
            ).fetchone()
            next_seq = int(row[0]) + 1 if row else 0
            inserted = 0
            for offset, file_model in enumerate(files):
                result = tx.execute(
                    "INSERT INTO load_file (load_id, target_path, seq, source_path, mime_type, "
                    "description, state) VALUES (?, ?, ?, ?, ?, ?, 'NOT_TRIED') "
                    "ON CONFLICT (load_id, target_path) DO NOTHING RETURNING target_path",
                    [
                        load_id,
                        file_model.target_path,
                        next_seq + offset,
                        file_model.source_path,
                        file_model.mime_type,
                        file_model.description,
                    ],
                ).fetchall()
                inserted += len(result)
        _LOGGER.info("load_batch_seeded", load_id=load_id, requested=len(files), inserted=inserted)
        return inserted

    def find_candidates(self, load_id: str, candidate_count: int) -> LoadCandidates:
        """Point-in-time view of running, candidate, and failed rows."""
        with self._store.cursor() as cursor:
            running = _select_load_files(cursor, load_id, "RUNNING")
            candidates = _select_load_files(cursor, load_id, "NOT_TRIED", candidate_count)
            failed = _count_state(cursor, load_id, "FAILED")
        return LoadCandidates(
            running_loads=tuple(running),
            candidate_files=tuple(candidates),
            failed_loads=failed,
        )

    def claim_candidates(
        self,
        load_id: str,
        candidate_count: int,
        new_flight_id: Callable[[], str],
    ) -> list[LoadFile]:
        """Claim up to ``candidate_count`` NOT_TRIED rows in insertion order.

        Each row moves to RUNNING under a fresh id from ``new_flight_id``
        through the same conditional update as ``mark_running``, so a row
        claimed concurrently is skipped rather than claimed twice.

        Returns:
            The claimed rows, in RUNNING state with their flight ids.
        """
        if candidate_count <= 0:
            return []
        with self._store.cursor() as cursor:
            candidates = _select_load_files(cursor, load_id, "NOT_TRIED", candidate_count)
        claimed: list[LoadFile] = []
        for load_file in candidates:
            flight_id = new_flight_id()
            if self.mark_running(load_id, load_file.target_path, flight_id):
                claimed.append(replace(load_file, state="RUNNING", flight_id=flight_id))
        return claimed

    def list_running(self, load_id: str) -> list[LoadFile]:
        with self._store.cursor() as cursor:
            return _select_load_files(cursor, load_id, "RUNNING")

    def list_load_files(self, load_id: str) -> list[LoadFile]:
        """All rows of a load in insertion order."""
        with self._store.cursor() as cursor:
            rows = cursor.execute(
                f"SELECT {_LOAD_FILE_COLUMNS} FROM load_file WHERE load_id = ? ORDER BY seq",
                [load_id],
            ).fetchall()
        return [_load_file_from_row(row) for row in rows]

    def count_failed(self, load_id: str) -> int:
        with self._store.cursor() as cursor:
            return _count_state(cursor, load_id, "FAILED")

    def summarize(self, load_id: str) -> BulkLoadSummary:
        """Aggregate counts by state; RUNNING rows count as not tried."""
        with self._store.cursor() as cursor:
            rows = cursor.execute(
                "SELECT state, count(*) FROM load_file WHERE load_id = ? GROUP BY state",
                [load_id],
            ).fetchall()
        counts = {str(state): int(count) for state, count in rows}
        total = sum(counts.values())
        succeeded = counts.get("SUCCEEDED", 0)
        failed = counts.get("FAILED", 0)
        return BulkLoadSummary(
            total=total,
            succeeded=succeeded,
            failed=failed,
            not_tried=total - succeeded - failed,
        )

    # ----------------------------
    # Transitions
    # ----------------------------
    def mark_running(self, load_id: str, target_path: str, flight_id: str) -> bool:
        """Claim a NOT_TRIED row for a flight.

        Returns:
            False if the row was no longer NOT_TRIED.
        """
        return self._transition(
            load_id,
            target_path,
            "RUNNING",
            {"flight_id": flight_id},
        )

    def mark_not_tried(self, load_id: str, target_path: str) -> bool:
        """Return an orphaned RUNNING row to the candidate pool."""
        return self._transition(load_id, target_path, "NOT_TRIED", {"flight_id": None})

    def mark_succeeded(
        self,
        load_id: str,
        target_path: str,
        file_id: str,
        file_info: FileInfo,
    ) -> bool:
        return self._transition(
            load_id,
            target_path,
            "SUCCEEDED",
            {
                "file_id": file_id,
                "checksum_crc32c": file_info.checksum_crc32c,
                "checksum_md5": file_info.checksum_md5,
                "size": file_info.size,
            },
        )

    def mark_failed(self, load_id: str, target_path: str, error: str) -> bool:
        return self._transition(load_id, target_path, "FAILED", {"error": error})

    def _transition(
        self,
        load_id: str,
        target_path: str,
        next_state: LoadFileState,
        values: dict[str, Any],
    ) -> bool:
        from_states = [
            state
            for state, allowed in ALLOWED_LOAD_FILE_TRANSITIONS.items()
            if next_state in allowed
        ]
        if not from_states:
            raise FileSystemCorruptError(f"No load file state may transition to {next_state}.")
        assignments = ", ".join(f"{column} = ?" for column in values)
        state_placeholders = ", ".join("?" for _ in from_states)
        with self._store.cursor() as cursor:
            updated = cursor.execute(
                f"UPDATE load_file SET state = ?, {assignments} "
                f"WHERE load_id = ? AND target_path = ? AND state IN ({state_placeholders}) "
                "RETURNING target_path",
                [next_state, *values.values(), load_id, target_path, *from_states],
            ).fetchall()
        _LOGGER.debug(
            "load_file_transition",
            load_id=load_id,
            target_path=target_path,
            state=next_state,
            applied=bool(updated),
        )
        return bool(updated)


def _select_load_files(
    cursor: duckdb.DuckDBPyConnection,
    load_id: str,
    state: LoadFileState,
    limit: int | None = None,
) -> list[LoadFile]:
    query = f"SELECT {_LOAD_FILE_COLUMNS} FROM load_file WHERE load_id = ? AND state = ? ORDER BY seq"
    params: list[Any] = [load_id, state]
    if limit is not None:
        query += " LIMIT ?"
        params.append(max(limit, 0))
    rows = cursor.execute(query, params).fetchall()
    return [_load_file_from_row(row) for row in rows]


def _count_state(cursor: duckdb.DuckDBPyConnection, load_id: str, state: LoadFileState) -> int:
    row = cursor.execute(
        "SELECT count(*) FROM load_file WHERE load_id = ? AND state = ?",
        [load_id, state],
    ).fetchone()
    return int(row[0]) if row else 0


def _load_file_from_row(row: tuple[Any, ...]) -> LoadFile:
    return LoadFile(
        load_id=str(row[0]),
        source_path=str(row[1]),
        target_path=str(row[2]),
        state=row[3],
        mime_type=row[4],
        description=row[5],
        flight_id=row[6],
        file_id=row[7],
        error=row[8],
    )
