"""Unit tests for namespace path helpers."""

from __future__ import annotations

import pytest

from core.errors import InvalidPathError
from core.paths import ancestor_paths, leaf_name, normalize_path, parent_path


def test_parent_path_of_nested_path() -> None:
    """Parent of a nested path drops the last segment."""
    assert parent_path("/a/b/c") == "/a/b"


def test_parent_path_of_root_level_path_is_empty() -> None:
    """Root-level entries use the empty-string parent sentinel."""
    assert parent_path("/a") == ""


def test_leaf_name_returns_last_segment() -> None:
    """Leaf name should be the final segment."""
    assert leaf_name("/a/b/file.txt") == "file.txt"


def test_ancestor_paths_lists_top_down() -> None:
    """Ancestors exclude the root and the path itself."""
    assert ancestor_paths("/a/b/c") == ["/a", "/a/b"]


def test_normalize_path_collapses_slashes() -> None:
    """Duplicate and trailing slashes are removed."""
    assert normalize_path("//a///b/") == "/a/b"


def test_normalize_path_keeps_root() -> None:
    """Root path normalizes to itself."""
    assert normalize_path("/") == "/"


def test_normalize_path_rejects_relative_path() -> None:
    """Relative paths are invalid."""
    with pytest.raises(InvalidPathError):
        normalize_path("a/b")


def test_normalize_path_rejects_dot_segments() -> None:
    """Dot segments are invalid."""
    with pytest.raises(InvalidPathError):
        normalize_path("/a/../b")
