"""Cluster size provider contract and its static implementation."""

from __future__ import annotations

from typing import Protocol

from core.errors import BulkLoadConfigError


class ClusterSizeProvider(Protocol):
    """Reports how many fleet members currently consume the work queue."""

    def active_pod_count(self) -> int: ...


class StaticClusterSize:
    """Fixed pod count taken from config; ``resize`` changes it at runtime."""

    def __init__(self, pod_count: int) -> None:
        self._pod_count = _validated(pod_count)

    def active_pod_count(self) -> int:
        return self._pod_count

    def resize(self, pod_count: int) -> None:
        self._pod_count = _validated(pod_count)


def _validated(pod_count: int) -> int:
    if pod_count < 1:
        raise BulkLoadConfigError(f"Active pod count must be at least 1, got {pod_count}.")
    return pod_count
