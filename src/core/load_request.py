"""Typed bulk load request parsing.

This module loads and validates YAML (or JSON) bulk load request files
used by CLI workflows. It provides one strict schema so CLI and SDK
callers submit the same request shape.
"""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, cast

import yaml

from core.constants import LOAD_REQUEST_VERSION, UNLIMITED_FAILED_FILE_LOADS
from core.errors import LoadRequestError
from core.load_request_fields import (
    expect_mapping,
    expect_sequence,
    optional_float,
    optional_int,
    optional_string,
    reject_unknown_keys,
    required_string,
)
from core.types import BulkLoadFileModel, BulkLoadRequest

_ROOT_KEYS = {
    "version",
    "dataset_id",
    "dataset_name",
    "profile_id",
    "load_tag",
    "max_failed_file_loads",
    "driver_wait_seconds",
    "files",
}
_FILE_KEYS = {"source_path", "target_path", "mime_type", "description"}


def load_request_file(request_path: str) -> BulkLoadRequest:
    """Load and validate a bulk load request from disk.

    Args:
        request_path: File path to a YAML or JSON request.

    Returns:
        Fully validated bulk load request.

    Raises:
        LoadRequestError: If file is invalid or schema checks fail.
    """
    payload = _load_yaml_payload(request_path)
    return parse_load_request(payload)


def parse_load_request(payload: object) -> BulkLoadRequest:
    """Validate an already-decoded request payload.

    Args:
        payload: Decoded YAML/JSON object.

    Returns:
        Typed bulk load request.

    Raises:
        LoadRequestError: If schema checks fail.
    """
    root = expect_mapping(payload, "load request root")
    reject_unknown_keys(root, _ROOT_KEYS, "Load request")
    _parse_version(root)
    context = "load request"
    max_failed = optional_int(root, "max_failed_file_loads", context)
    if max_failed is None:
        max_failed = UNLIMITED_FAILED_FILE_LOADS
    if max_failed < UNLIMITED_FAILED_FILE_LOADS:
        raise LoadRequestError(
            "Invalid load request: 'max_failed_file_loads' must be -1 (unlimited) or >= 0."
        )
    wait_seconds = optional_float(root, "driver_wait_seconds", context)
    if wait_seconds is not None and wait_seconds < 0:
        raise LoadRequestError("Invalid load request: 'driver_wait_seconds' must not be negative.")
    return BulkLoadRequest(
        dataset_id=required_string(root, "dataset_id", context),
        dataset_name=optional_string(root, "dataset_name", context),
        profile_id=optional_string(root, "profile_id", context) or "default",
        load_tag=optional_string(root, "load_tag", context),
        max_failed_file_loads=max_failed,
        driver_wait_seconds=wait_seconds,
        files=_parse_files(root),
    )


def _load_yaml_payload(request_path: str) -> object:
    request_file = Path(request_path).expanduser().resolve()
    if not request_file.exists():
        raise LoadRequestError(
            f"Load request file does not exist at {request_file}. Provide a valid file path."
        )
    try:
        payload = cast(object, yaml.safe_load(request_file.read_text(encoding="utf-8")))
    except OSError as error:
        raise LoadRequestError(
            f"Failed to read load request at {request_file}: {error}. "
            "Check file permissions and retry."
        ) from error
    except yaml.YAMLError as error:
        raise LoadRequestError(
            f"Failed to parse load request at {request_file}: {error}. Fix syntax and retry."
        ) from error
    if payload is None:
        raise LoadRequestError(
            f"Load request at {request_file} is empty. Define 'version', 'dataset_id' and 'files'."
        )
    return payload


def _parse_version(root: Mapping[str, object]) -> None:
    raw_version = root.get("version", LOAD_REQUEST_VERSION)
    if not isinstance(raw_version, int) or isinstance(raw_version, bool):
        raise LoadRequestError("Load request field 'version' must be an integer. Set version: 1.")
    if raw_version != LOAD_REQUEST_VERSION:
        raise LoadRequestError(
            f"Unsupported load request version {raw_version}. Use version: {LOAD_REQUEST_VERSION}."
        )


def _parse_files(root: Mapping[str, object]) -> tuple[BulkLoadFileModel, ...]:
    raw_files = root.get("files")
    if raw_files is None:
        raise LoadRequestError(
            "Load request missing required field 'files'. Add a non-empty list of files."
        )
    rows = expect_sequence(raw_files, "load request files")
    if len(rows) == 0:
        raise LoadRequestError("Load request field 'files' must include at least one file.")
    parsed_files = []
    seen_targets: set[str] = set()
    for index, row in enumerate(rows):
        file_model = _parse_file(row, index)
        if file_model.target_path in seen_targets:
            raise LoadRequestError(
                f"Load request lists target path '{file_model.target_path}' more than once."
            )
        seen_targets.add(file_model.target_path)
        parsed_files.append(file_model)
    return tuple(parsed_files)


def _parse_file(row: object, index: int) -> BulkLoadFileModel:
    context = f"load request file #{index + 1}"
    mapping = expect_mapping(row, context)
    reject_unknown_keys(mapping, _FILE_KEYS, f"Load request file #{index + 1}")
    return BulkLoadFileModel(
        source_path=required_string(mapping, "source_path", context),
        target_path=required_string(mapping, "target_path", context),
        mime_type=optional_string(mapping, "mime_type", context),
        description=optional_string(mapping, "description", context),
    )
