"""Per-operation circuit breaker.

Consecutive terminal failures for one key open the circuit; while open,
calls fail immediately. After ``reset_timeout_seconds`` the circuit
moves to half-open and admits up to ``half_open_max_calls`` probe calls.
The first success closes it again and a failure re-opens it.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

import structlog

from ledger_resilience.exceptions import CircuitOpenError

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


class CircuitState(StrEnum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class _KeyState:
    state: CircuitState = CircuitState.CLOSED
    failures: int = 0
    opened_at: float = 0.0
    half_open_calls: int = 0


class CircuitBreaker:
    """Tracks failure streaks per key and rejects calls while open.

    Attributes:
        failure_threshold: Consecutive failures that open the circuit.
        reset_timeout_seconds: How long the circuit stays open.
        half_open_max_calls: Calls admitted while half-open.
        trips: Number of times any circuit has opened.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout_seconds: float = 60.0,
        half_open_max_calls: int = 3,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            msg = "failure_threshold must be >= 1"
            raise ValueError(msg)
        self.failure_threshold = failure_threshold
        self.reset_timeout_seconds = reset_timeout_seconds
        self.half_open_max_calls = half_open_max_calls
        self.trips = 0
        self._clock = clock
        self._lock = threading.Lock()
        self._states: dict[str, _KeyState] = {}

    def _get(self, key: str) -> _KeyState:
        if key not in self._states:
            self._states[key] = _KeyState()
        return self._states[key]

    def before_call(self, key: str) -> None:
        """Admit or reject a call for ``key``.

        Raises:
            CircuitOpenError: If the circuit is open, or half-open with
                its probe allowance used up.
        """
        with self._lock:
            entry = self._get(key)
            if entry.state == CircuitState.OPEN:
                if self._clock() - entry.opened_at < self.reset_timeout_seconds:
                    raise CircuitOpenError(key, entry.state.value)
                entry.state = CircuitState.HALF_OPEN
                entry.half_open_calls = 0
                logger.info("circuit_half_open", key=key)

            if entry.state == CircuitState.HALF_OPEN:
                if entry.half_open_calls >= self.half_open_max_calls:
                    raise CircuitOpenError(key, entry.state.value)
                entry.half_open_calls += 1

    def record_success(self, key: str) -> None:
        with self._lock:
            entry = self._get(key)
            if entry.state != CircuitState.CLOSED:
                logger.info("circuit_closed", key=key)
            entry.state = CircuitState.CLOSED
            entry.failures = 0
            entry.half_open_calls = 0

    def record_failure(self, key: str) -> None:
        with self._lock:
            entry = self._get(key)
            entry.failures += 1
            reopen = entry.state == CircuitState.HALF_OPEN
            if reopen or entry.failures >= self.failure_threshold:
                if entry.state != CircuitState.OPEN:
                    self.trips += 1
                entry.state = CircuitState.OPEN
                entry.opened_at = self._clock()
                logger.warning("circuit_opened", key=key, failures=entry.failures)

    def state(self, key: str) -> CircuitState:
        with self._lock:
            return self._get(key).state

    def failures(self, key: str) -> int:
        with self._lock:
            return self._get(key).failures

    def reset(self, key: str) -> None:
        """Manually close the circuit for ``key``."""
        with self._lock:
            self._states[key] = _KeyState()
        logger.info("circuit_reset", key=key)

    def snapshot(self) -> dict[str, dict[str, object]]:
        """State of every known key, for reports."""
        with self._lock:
            return {
                key: {"state": entry.state.value, "failures": entry.failures}
                for key, entry in self._states.items()
            }
