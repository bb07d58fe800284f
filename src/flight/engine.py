"""Durable workflow engine contract and in-process adapter.

The driver only needs three engine operations: allocate a flight id,
submit a flight to the shared queue, and poll its status. Allocation is
separate from submission so a ledger row can be claimed before dispatch.
"""

from __future__ import annotations

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
import threading
from typing import Any, Callable, Literal, Mapping, Protocol
from uuid import uuid4

from core.errors import FlightError, FlightFatalError, FlightNotFoundError
from core.logging_config import get_logger
from flight.steps import FlightContext

_LOGGER = get_logger(__name__)

FlightStatus = Literal["RUNNING", "WAITING", "READY", "QUEUED", "SUCCESS", "ERROR", "FATAL"]
ACTIVE_FLIGHT_STATUSES: frozenset[str] = frozenset({"RUNNING", "WAITING", "READY", "QUEUED"})
FAILED_FLIGHT_STATUSES: frozenset[str] = frozenset({"ERROR", "FATAL"})

Workflow = Callable[[FlightContext], Mapping[str, Any]]


@dataclass(frozen=True)
class FlightState:
    """Engine view of one flight.

    Attributes:
        flight_id: Flight id.
        status: Current engine status.
        result: Result map of a successful flight.
        error: Failure description of a failed flight.
    """

    flight_id: str
    status: FlightStatus
    result: Mapping[str, Any] | None = None
    error: str | None = None


class WorkflowEngine(Protocol):
    """Operations consumed from the durable workflow engine."""

    def create_flight_id(self) -> str: ...

    def submit_to_queue(
        self,
        flight_id: str,
        workflow_type: str,
        inputs: Mapping[str, Any],
    ) -> None: ...

    def get_flight_state(self, flight_id: str) -> FlightState: ...


class LocalWorkflowEngine:
    """Thread-pool engine that runs registered workflows in process.

    Worker threads stand in for fleet members consuming a shared queue.
    Flight states live in memory, so a new engine knows none of the flights
    submitted by a previous one.
    """

    def __init__(self, max_workers: int) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="flight")
        self._workflows: dict[str, Workflow] = {}
        self._states: dict[str, FlightState] = {}
        self._futures: dict[str, Future[None]] = {}
        self._lock = threading.Lock()

    def register(self, workflow_type: str, workflow: Workflow) -> None:
        """Make ``workflow`` runnable under ``workflow_type``."""
        self._workflows[workflow_type] = workflow

    def create_flight_id(self) -> str:
        return str(uuid4())

    def submit_to_queue(
        self,
        flight_id: str,
        workflow_type: str,
        inputs: Mapping[str, Any],
    ) -> None:
        """Queue a flight for execution.

        Raises:
            FlightError: If the workflow type is unknown or the id was already submitted.
        """
        workflow = self._workflows.get(workflow_type)
        if workflow is None:
            raise FlightError(f"Unknown workflow type: {workflow_type}")
        with self._lock:
            if flight_id in self._states:
                raise FlightError(f"Flight {flight_id} was already submitted.")
            self._states[flight_id] = FlightState(flight_id=flight_id, status="QUEUED")
            self._futures[flight_id] = self._executor.submit(
                self._run_flight, flight_id, workflow, dict(inputs)
            )
        _LOGGER.debug("flight_submitted", flight_id=flight_id, workflow_type=workflow_type)

    def get_flight_state(self, flight_id: str) -> FlightState:
        """Return the current state of a flight.

        Raises:
            FlightNotFoundError: If the engine does not know the flight.
        """
        with self._lock:
            state = self._states.get(flight_id)
        if state is None:
            raise FlightNotFoundError(f"Flight not found: {flight_id}")
        return state

    def wait_for_all(self, timeout: float | None = None) -> None:
        """Block until every submitted flight has finished."""
        with self._lock:
            pending = list(self._futures.values())
        wait(pending, timeout=timeout)

    def wait_for_any(self, timeout: float | None = None) -> None:
        """Block until at least one unfinished flight completes."""
        with self._lock:
            pending = [future for future in self._futures.values() if not future.done()]
        if pending:
            wait(pending, timeout=timeout, return_when=FIRST_COMPLETED)

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "LocalWorkflowEngine":
        return self

    def __exit__(self, exc_type, exc_value, tb) -> None:
        self.close()

    def _run_flight(self, flight_id: str, workflow: Workflow, inputs: dict[str, Any]) -> None:
        self._set_state(FlightState(flight_id=flight_id, status="RUNNING"))
        context = FlightContext(flight_id=flight_id, inputs=inputs)
        try:
            result = workflow(context)
        except FlightFatalError as error:
            _LOGGER.error("flight_fatal", flight_id=flight_id, error=str(error))
            self._set_state(FlightState(flight_id=flight_id, status="FATAL", error=str(error)))
            return
        except Exception as error:
            # A workflow failure is the flight's terminal state, not the worker's.
            _LOGGER.warning("flight_failed", flight_id=flight_id, error=str(error))
            self._set_state(FlightState(flight_id=flight_id, status="ERROR", error=str(error)))
            return
        self._set_state(FlightState(flight_id=flight_id, status="SUCCESS", result=dict(result)))
        _LOGGER.debug("flight_succeeded", flight_id=flight_id)

    def _set_state(self, state: FlightState) -> None:
        with self._lock:
            self._states[state.flight_id] = state
