"""Namespace path helpers.

Paths are absolute, slash separated, and never end with a slash.
Root-level entries have the empty string as their parent.
"""

from __future__ import annotations

from core.constants import PATH_SEPARATOR, ROOT_PATH
from core.errors import InvalidPathError


def normalize_path(path: str) -> str:
    """Validate and canonicalize an absolute namespace path.

    Args:
        path: Raw path such as ``/a//b/``.

    Returns:
        Canonical path such as ``/a/b``; the root stays ``/``.

    Raises:
        InvalidPathError: If the path is relative or contains dot segments.
    """
    if not path.startswith(PATH_SEPARATOR):
        raise InvalidPathError(
            f"Invalid namespace path '{path}': paths must start with '/'."
        )
    segments = [segment for segment in path.split(PATH_SEPARATOR) if segment]
    if any(segment in (".", "..") for segment in segments):
        raise InvalidPathError(
            f"Invalid namespace path '{path}': '.' and '..' segments are not allowed."
        )
    if not segments:
        return ROOT_PATH
    return PATH_SEPARATOR + PATH_SEPARATOR.join(segments)


def parent_path(path: str) -> str:
    """Return the parent directory path.

    ``parent_path("/a/b/c") == "/a/b"`` and ``parent_path("/a") == ""``.
    """
    index = path.rfind(PATH_SEPARATOR)
    if index <= 0:
        return ""
    return path[:index]


def leaf_name(path: str) -> str:
    """Return the final path segment."""
    return path[path.rfind(PATH_SEPARATOR) + 1 :]


def ancestor_paths(path: str) -> list[str]:
    """List ancestor directory paths from the top down, excluding the root.

    ``ancestor_paths("/a/b/c") == ["/a", "/a/b"]``.
    """
    ancestors: list[str] = []
    current = parent_path(path)
    while current:
        ancestors.append(current)
        current = parent_path(current)
    ancestors.reverse()
    return ancestors
