"""Step execution with paired do/undo actions.

A flight is an ordered list of steps. Steps run forward; a step raising a
retryable error is retried under its retry rule. Any other failure undoes
the completed work from the failing step back to the first step.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import random
import time
from typing import Any, Callable, Mapping, Protocol, Sequence

from core.config import BulkLoadConfig
from core.errors import FlightFailedError, FlightFatalError, RetryableError
from core.logging_config import get_logger

_LOGGER = get_logger(__name__)


@dataclass
class FlightContext:
    """Per-attempt state shared by the steps of one flight.

    Attributes:
        flight_id: Id assigned by the workflow engine.
        inputs: Immutable inputs given at submission.
        working_map: Mutable values handed from step to step.
    """

    flight_id: str
    inputs: Mapping[str, Any]
    working_map: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RetryRule:
    """Bounded retry with uniformly random backoff."""

    max_attempts: int = 1
    min_backoff_seconds: float = 0.0
    max_backoff_seconds: float = 0.0

    def backoff_seconds(self) -> float:
        if self.max_backoff_seconds <= 0:
            return 0.0
        return random.uniform(self.min_backoff_seconds, self.max_backoff_seconds)

    @classmethod
    def from_config(cls, config: BulkLoadConfig) -> "RetryRule":
        """Retry rule for steps that touch the shared store."""
        return cls(
            max_attempts=config.step_retry_max,
            min_backoff_seconds=config.step_retry_min_backoff_seconds,
            max_backoff_seconds=config.step_retry_max_backoff_seconds,
        )


NO_RETRY = RetryRule()


class FlightStep(Protocol):
    """One stage of a flight with its compensating action."""

    retry_rule: RetryRule

    def do_step(self, context: FlightContext) -> None: ...

    def undo_step(self, context: FlightContext) -> None: ...


class StepRunner:
    """Run flight steps forward and compensate on failure."""

    def __init__(
        self,
        steps: Sequence[FlightStep],
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._steps = tuple(steps)
        self._sleep = sleep

    def run(self, context: FlightContext) -> None:
        """Execute every step in order.

        Raises:
            FlightFailedError: If a step failed and every undo completed.
            FlightFatalError: If an undo failed after a step failure.
        """
        for index, step in enumerate(self._steps):
            try:
                self._do_with_retry(step, context)
            except Exception as error:
                _LOGGER.warning(
                    "flight_step_failed",
                    flight_id=context.flight_id,
                    step=type(step).__name__,
                    error=str(error),
                )
                self._undo_from(index, context, error)
                raise FlightFailedError(str(error)) from error

    def _do_with_retry(self, step: FlightStep, context: FlightContext) -> None:
        rule = getattr(step, "retry_rule", NO_RETRY)
        attempt = 1
        while True:
            try:
                step.do_step(context)
                return
            except RetryableError as error:
                if attempt >= rule.max_attempts:
                    raise
                _LOGGER.debug(
                    "flight_step_retry",
                    flight_id=context.flight_id,
                    step=type(step).__name__,
                    attempt=attempt,
                    error=str(error),
                )
                attempt += 1
                self._sleep(rule.backoff_seconds())

    def _undo_from(self, failed_index: int, context: FlightContext, cause: Exception) -> None:
        for step in reversed(self._steps[: failed_index + 1]):
            try:
                self._undo_with_retry(step, context)
            except Exception as undo_error:
                _LOGGER.error(
                    "flight_undo_failed",
                    flight_id=context.flight_id,
                    step=type(step).__name__,
                    error=str(undo_error),
                )
                raise FlightFatalError(
                    f"{cause}; compensation of {type(step).__name__} failed: {undo_error}"
                ) from undo_error

    def _undo_with_retry(self, step: FlightStep, context: FlightContext) -> None:
        rule = getattr(step, "retry_rule", NO_RETRY)
        attempt = 1
        while True:
            try:
                step.undo_step(context)
                return
            except RetryableError:
                if attempt >= rule.max_attempts:
                    raise
                attempt += 1
                self._sleep(rule.backoff_seconds())
