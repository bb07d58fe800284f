"""Public SDK surface for bulkload.

This module provides a stable import path for SDK users.
It re-exports the primary client and typed request models.
"""

from __future__ import annotations

from core.config import BulkLoadConfig
from core.load_request import load_request_file, parse_load_request
from core.types import (
    BulkLoadFileModel,
    BulkLoadFileResult,
    BulkLoadRequest,
    BulkLoadResult,
    BulkLoadSummary,
    FsItem,
)
from driver.client import BulkLoadClient

__all__ = [
    "BulkLoadClient",
    "BulkLoadConfig",
    "BulkLoadFileModel",
    "BulkLoadFileResult",
    "BulkLoadRequest",
    "BulkLoadResult",
    "BulkLoadSummary",
    "FsItem",
    "load_request_file",
    "parse_load_request",
]
