"""Pytest configuration for repository test runs."""

from __future__ import annotations

from dataclasses import replace
import sys
from pathlib import Path
from typing import Any, Callable, Iterator

import pytest


def pytest_sessionstart() -> None:
    """Add src directory to sys.path for test imports."""
    project_root = Path(__file__).resolve().parent.parent
    src_path = project_root / "src"
    if str(src_path) not in sys.path:
        sys.path.insert(0, str(src_path))


@pytest.fixture
def config(tmp_path: Path) -> Any:
    """Config rooted at tmp_path with default retry attempts and short waits."""
    from core.config import BulkLoadConfig

    return replace(
        BulkLoadConfig.from_env(),
        data_root=tmp_path / "data",
        driver_wait_seconds=0.01,
        step_retry_min_backoff_seconds=0.0,
        step_retry_max_backoff_seconds=0.02,
    )


@pytest.fixture
def store(config: Any) -> Iterator[Any]:
    """Open shared store for one test."""
    from store.shared_store import SharedStore

    with SharedStore(config.store_path) as shared_store:
        yield shared_store


@pytest.fixture
def write_source(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write a source file under tmp_path/sources and return its path."""

    def _write(name: str, content: str) -> Path:
        source_path = tmp_path / "sources" / name
        source_path.parent.mkdir(parents=True, exist_ok=True)
        source_path.write_text(content, encoding="utf-8")
        return source_path

    return _write
