"""Shared document store backed by DuckDB.

The store holds every piece of ledger and namespace state. Callers get a
fresh cursor per operation so worker threads never share a cursor, and all
mutual exclusion is expressed as conditional writes: primary-key inserts
where the first writer wins and ``UPDATE ... WHERE state = ?`` transitions.

Tables:
  load, load_file, directory_entry, file_entry, file_dependency,
  storage_location
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import duckdb

from core.errors import BulkLoadError, StoreContentionError
from core.logging_config import get_logger

_LOGGER = get_logger(__name__)

_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS load (
      load_tag           VARCHAR PRIMARY KEY,
      load_id            VARCHAR NOT NULL,
      locked             BOOLEAN NOT NULL,
      locking_flight_id  VARCHAR,
      created_at         TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS load_file (
      load_id            VARCHAR NOT NULL,
      target_path        VARCHAR NOT NULL,
      seq                BIGINT  NOT NULL,
      source_path        VARCHAR NOT NULL,
      mime_type          VARCHAR,
      description        VARCHAR,
      state              VARCHAR NOT NULL,
      flight_id          VARCHAR,
      file_id            VARCHAR,
      checksum_crc32c    VARCHAR,
      checksum_md5       VARCHAR,
      size               BIGINT,
      error              VARCHAR,
      PRIMARY KEY (load_id, target_path)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS directory_entry (
      collection_id      VARCHAR NOT NULL,
      path               VARCHAR NOT NULL,
      parent_path        VARCHAR NOT NULL,
      name               VARCHAR NOT NULL,
      file_id            VARCHAR NOT NULL,
      is_file_ref        BOOLEAN NOT NULL,
      load_tag           VARCHAR,
      created_at         TIMESTAMP NOT NULL,
      PRIMARY KEY (collection_id, path)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS file_entry (
      collection_id      VARCHAR NOT NULL,
      file_id            VARCHAR NOT NULL,
      mime_type          VARCHAR,
      description        VARCHAR,
      checksum_crc32c    VARCHAR,
      checksum_md5       VARCHAR,
      size               BIGINT NOT NULL,
      created_date       TIMESTAMP NOT NULL,
      storage_location   VARCHAR NOT NULL,
      load_tag           VARCHAR,
      PRIMARY KEY (collection_id, file_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS file_dependency (
      file_id            VARCHAR NOT NULL,
      consumer_id        VARCHAR NOT NULL,
      refcount           BIGINT NOT NULL,
      PRIMARY KEY (file_id, consumer_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS storage_location (
      collection_name    VARCHAR NOT NULL,
      billing_context    VARCHAR NOT NULL,
      location_uri       VARCHAR NOT NULL,
      created_at         TIMESTAMP NOT NULL,
      last_flight_id     VARCHAR,
      updated_at         TIMESTAMP NOT NULL,
      PRIMARY KEY (collection_name, billing_context)
    )
    """,
)


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SharedStore:
    """Connection owner for the shared DuckDB database.

    Use as a context manager or call ``open``/``close`` explicitly.
    """

    def __init__(self, db_path: Path | str, *, auto_bootstrap: bool = True) -> None:
        self._db_path = str(db_path)
        self._auto_bootstrap = auto_bootstrap
        self._connection: duckdb.DuckDBPyConnection | None = None

    def open(self) -> "SharedStore":
        if self._connection is not None:
            raise RuntimeError("Store connection already open")
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._connection = duckdb.connect(self._db_path)
        if self._auto_bootstrap:
            self._bootstrap()
        _LOGGER.debug("store_connected", db_path=self._db_path)
        return self

    def close(self) -> None:
        if self._connection is None:
            return
        try:
            self._connection.close()
        finally:
            self._connection = None

    def __enter__(self) -> "SharedStore":
        return self.open()

    def __exit__(self, exc_type, exc_value, tb) -> None:
        self.close()

    @contextmanager
    def cursor(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """Yield a thread-private cursor in autocommit mode."""
        cursor = self._require_connection().cursor()
        try:
            yield cursor
        except duckdb.TransactionException as error:
            raise StoreContentionError(f"Store write conflict: {error}") from error
        finally:
            cursor.close()

    @contextmanager
    def transaction(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """Yield a cursor inside one transaction.

        Commits on success and rolls back on any error. Write-write
        conflicts surface as ``StoreContentionError`` so the enclosing
        step can retry.
        """
        cursor = self._require_connection().cursor()
        cursor.execute("BEGIN TRANSACTION")
        try:
            yield cursor
            try:
                cursor.execute("COMMIT")
            except duckdb.ConstraintException as error:
                # A concurrent transaction committed the same key first.
                raise StoreContentionError(f"Store commit conflict: {error}") from error
        except duckdb.TransactionException as error:
            _rollback_quietly(cursor)
            raise StoreContentionError(f"Store transaction conflict: {error}") from error
        except BaseException:
            _rollback_quietly(cursor)
            raise
        finally:
            cursor.close()

    def _require_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            raise BulkLoadError("Store is not connected; open it or use it as a context manager")
        return self._connection

    def _bootstrap(self) -> None:
        connection = self._require_connection()
        for statement in _SCHEMA_STATEMENTS:
            connection.execute(statement)


def _rollback_quietly(cursor: duckdb.DuckDBPyConnection) -> None:
    # A failed COMMIT may already have aborted the transaction.
    try:
        cursor.execute("ROLLBACK")
    except duckdb.Error as error:
        _LOGGER.debug("store_rollback_skipped", error=str(error))
