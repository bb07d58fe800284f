"""Type-safe field parsing helpers for load request files.

This module centralizes primitive parsing so request loading stays
concise and produces consistent validation errors for CLI and SDK use.
"""

from __future__ import annotations

from typing import Mapping, Sequence

from core.errors import LoadRequestError


def expect_mapping(value: object, context: str) -> Mapping[str, object]:
    """Require a mapping with string keys."""
    if isinstance(value, Mapping):
        normalized_mapping = {}
        for key, payload in value.items():
            if not isinstance(key, str):
                raise LoadRequestError(
                    f"Invalid {context}: expected string keys, got {type(key).__name__}."
                )
            normalized_mapping[key] = payload
        return normalized_mapping
    raise LoadRequestError(
        f"Invalid {context}: expected object mapping, got {type(value).__name__}."
    )


def expect_sequence(value: object, context: str) -> Sequence[object]:
    """Require a list-like value that is not a string."""
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return value
    raise LoadRequestError(f"Invalid {context}: expected list, got {type(value).__name__}.")


def required_string(args: Mapping[str, object], field_name: str, context: str) -> str:
    """Read a required string field."""
    value = optional_string(args, field_name, context)
    if value is None:
        raise LoadRequestError(f"Invalid {context}: missing required field '{field_name}'.")
    return value


def optional_string(args: Mapping[str, object], field_name: str, context: str) -> str | None:
    """Read an optional string field."""
    value = args.get(field_name)
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped if stripped else None
    raise LoadRequestError(
        f"Invalid {context}: field '{field_name}' must be a string when provided."
    )


def optional_int(args: Mapping[str, object], field_name: str, context: str) -> int | None:
    """Read an optional integer field, rejecting booleans."""
    value = args.get(field_name)
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    raise LoadRequestError(f"Invalid {context}: field '{field_name}' must be an integer.")


def optional_float(args: Mapping[str, object], field_name: str, context: str) -> float | None:
    """Read an optional number field, rejecting booleans."""
    value = args.get(field_name)
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    raise LoadRequestError(f"Invalid {context}: field '{field_name}' must be a number.")


def reject_unknown_keys(
    mapping: Mapping[str, object],
    allowed_keys: set[str],
    context: str,
) -> None:
    """Fail when a mapping carries fields outside the schema."""
    unknown_keys = sorted(set(mapping) - allowed_keys)
    if unknown_keys:
        raise LoadRequestError(f"{context} contains unknown fields: {', '.join(unknown_keys)}.")
