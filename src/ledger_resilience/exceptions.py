"""Centralized exception hierarchy for the ledger-resilience package.

All domain-specific exceptions inherit from ``LedgerResilienceError`` so
callers can catch the entire family with a single ``except`` clause.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ledger_resilience.models import ErrorRecord, HealthCheckResult


class LedgerResilienceError(Exception):
    """Base exception for all ledger-resilience errors."""


class ConfigurationError(LedgerResilienceError):
    """Raised when executor or settings values are inconsistent."""


# ---------------------------------------------------------------------------
# Operation errors
# ---------------------------------------------------------------------------


class OperationFailedError(LedgerResilienceError):
    """Raised when an operation ends in a terminal failure.

    Carries the ``ErrorRecord`` that was appended to the error ledger, so
    callers can tell an exhausted retry budget from a fatal failure
    without parsing the message.
    """

    def __init__(self, record: ErrorRecord) -> None:
        self.record = record
        super().__init__(
            f"{record.operation_name} failed after {record.attempts_made} "
            f"attempt(s) [{record.kind.label}]: {record.message}"
        )


class OperationCancelledError(LedgerResilienceError):
    """Raised when a retry sequence is cancelled between attempts."""

    def __init__(self, operation_name: str, attempts_made: int) -> None:
        self.operation_name = operation_name
        self.attempts_made = attempts_made
        super().__init__(
            f"{operation_name} cancelled after {attempts_made} attempt(s)"
        )


class ReceiptStatusError(LedgerResilienceError):
    """Raised when a transaction receipt reports a non-success status."""

    def __init__(self, status: str, transaction_id: str | None = None) -> None:
        self.status = status
        self.transaction_id = transaction_id
        suffix = f" for {transaction_id}" if transaction_id else ""
        super().__init__(f"Transaction failed with status: {status}{suffix}")


# ---------------------------------------------------------------------------
# Circuit breaker errors
# ---------------------------------------------------------------------------


class CircuitOpenError(LedgerResilienceError):
    """Raised when a circuit breaker rejects a call."""

    def __init__(self, key: str, state: str) -> None:
        self.key = key
        self.state = state
        super().__init__(
            f"Circuit breaker is {state.upper()} for {key}. Try again later."
        )


# ---------------------------------------------------------------------------
# Health errors
# ---------------------------------------------------------------------------


class UnhealthyNetworkError(LedgerResilienceError):
    """Raised when the network health check falls below its threshold."""

    def __init__(self, result: HealthCheckResult) -> None:
        self.result = result
        failed = ", ".join(result.failed_probes) or "none"
        super().__init__(
            f"Ledger network unhealthy: score {result.score}/{result.probe_count} "
            f"(threshold {result.threshold}), failed probes: {failed}"
        )
