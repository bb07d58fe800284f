"""Bulkload exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Each subsystem raises a specific error type for debuggability.
Retryable errors mark transient store contention that the enclosing
step may retry; everything else is permanent for its scope.
"""

from __future__ import annotations


class BulkLoadError(Exception):
    """Base exception for all bulkload failures."""


class BulkLoadConfigError(BulkLoadError):
    """Raised for invalid runtime configuration."""


class BulkLoadDependencyError(BulkLoadError):
    """Raised when an optional runtime dependency is missing."""


class LoadRequestError(BulkLoadError):
    """Raised for invalid or unsupported load request files."""


class BulkLoadFileMaxExceededError(BulkLoadError):
    """Raised when a bulk request holds more files than allowed."""


class LoadLockedError(BulkLoadError):
    """Raised when another flight already drives the same load tag."""


class RetryableError(BulkLoadError):
    """Base for transient failures the enclosing step should retry."""


class StoreContentionError(RetryableError):
    """Raised when a conditional write loses a transaction conflict."""


class NamespaceError(BulkLoadError):
    """Raised for namespace protocol failures."""


class InvalidPathError(NamespaceError):
    """Raised for malformed namespace paths."""


class NamespaceConflictError(NamespaceError):
    """Raised when an atomic create finds an existing entry."""


class PathAlreadyExistsError(NamespaceError):
    """Raised when a target path is owned by a different load tag."""


class DependencyExistsError(NamespaceError):
    """Raised when deleting a file still referenced by a consumer."""

    def __init__(self, message: str, consumer_id: str) -> None:
        super().__init__(message)
        self.consumer_id = consumer_id


class FileNotFoundInNamespaceError(NamespaceError):
    """Raised when a path or file id is not visible in a collection."""


class FileSystemCorruptError(BulkLoadError):
    """Raised when persisted state violates namespace or ledger invariants."""


class CorruptMetadataError(FileSystemCorruptError):
    """Raised when an external collaborator reports an impossible state."""


class IngestSourceError(BulkLoadError):
    """Raised when primary data cannot be read from its source."""


class FlightError(BulkLoadError):
    """Base for durable-execution failures."""


class FlightNotFoundError(FlightError):
    """Raised when the workflow engine does not know a flight id."""


class FlightFailedError(FlightError):
    """Raised when a flight failed and its compensations completed."""


class FlightFatalError(FlightError):
    """Raised when a flight failed and a compensation also failed."""
