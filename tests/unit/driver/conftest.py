"""Shared driver test doubles."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Mapping

import pytest

from core.errors import FlightNotFoundError
from core.types import FileInfo
from flight.engine import FlightState


class ScriptedEngine:
    """Engine whose flights finish after a fixed number of status polls.

    Attributes:
        fail_targets: Target paths whose flights end in ERROR.
        polls_to_finish: Status polls before a flight reaches its terminal state.
        terminal_status: Status reported for non-failing flights.
        running_counter: Optional callable counting RUNNING ledger rows at submit.
    """

    def __init__(self) -> None:
        self.fail_targets: set[str] = set()
        self.failure_text: str | None = "boom"
        self.polls_to_finish = 2
        self.terminal_status = "SUCCESS"
        self.include_result = True
        self.running_counter: Callable[[], int] | None = None
        self.submitted: list[str] = []
        self.max_running = 0
        self._inputs: dict[str, Mapping[str, Any]] = {}
        self._polls: dict[str, int] = {}
        self._next_id = 0

    def create_flight_id(self) -> str:
        self._next_id += 1
        return f"flight-{self._next_id}"

    def submit_to_queue(self, flight_id: str, workflow_type: str, inputs: Mapping[str, Any]) -> None:
        self._inputs[flight_id] = inputs
        self._polls[flight_id] = 0
        self.submitted.append(str(inputs["target_path"]))
        if self.running_counter is not None:
            self.max_running = max(self.max_running, self.running_counter())

    def get_flight_state(self, flight_id: str) -> FlightState:
        if flight_id not in self._inputs:
            raise FlightNotFoundError(f"Flight not found: {flight_id}")
        self._polls[flight_id] += 1
        if self._polls[flight_id] < self.polls_to_finish:
            return FlightState(flight_id=flight_id, status="RUNNING")
        target_path = str(self._inputs[flight_id]["target_path"])
        if target_path in self.fail_targets:
            return FlightState(flight_id=flight_id, status="ERROR", error=self.failure_text)
        if self.terminal_status != "SUCCESS":
            return FlightState(flight_id=flight_id, status=self.terminal_status)  # type: ignore[arg-type]
        result = None
        if self.include_result:
            result = {
                "file_id": f"file-{target_path}",
                "file_info": FileInfo(
                    checksum_md5="abc",
                    size=3,
                    created_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
                    storage_location=f"/storage{target_path}",
                ).to_dict(),
            }
        return FlightState(flight_id=flight_id, status="SUCCESS", result=result)


@pytest.fixture
def scripted_engine() -> ScriptedEngine:
    return ScriptedEngine()
