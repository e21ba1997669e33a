"""Append-only store of terminal operation failures.

The ledger is the only shared mutable state in the package. Every
mutation takes a ``threading.Lock`` so records are never lost when
several tasks, or several threads driving their own event loops, write
to the same instance.
"""

from __future__ import annotations

import threading

import structlog

from ledger_resilience.models import ErrorRecord, ExecutionStats

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


class ErrorLedger:
    """Thread-safe, append-only list of ``ErrorRecord`` plus counters.

    Recovered operations are never appended as failures; they only bump
    ``successful_retries`` through ``note_success``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: list[ErrorRecord] = []
        self._stats = ExecutionStats()

    def append(self, record: ErrorRecord) -> None:
        """Record a terminal failure.

        Args:
            record: The failure to store. Records are frozen models and
                are never mutated after this call.
        """
        with self._lock:
            self._records.append(record)
            self._stats.failed_operations += 1
            size = len(self._records)
        logger.debug(
            "error_recorded",
            operation=record.operation_name,
            kind=record.kind.label,
            attempts=record.attempts_made,
            ledger_size=size,
        )

    def note_operation(self) -> None:
        """Count an operation that was started."""
        with self._lock:
            self._stats.total_operations += 1

    def note_success(self, attempts_made: int) -> None:
        """Count a successful operation; more than one attempt means it recovered."""
        with self._lock:
            self._stats.successful_operations += 1
            if attempts_made > 1:
                self._stats.recovered_operations += 1

    def note_retry(self) -> None:
        """Count one backoff-and-retry cycle."""
        with self._lock:
            self._stats.retries_attempted += 1

    def records(self) -> list[ErrorRecord]:
        """Snapshot of the records in append order."""
        with self._lock:
            return list(self._records)

    def stats(self) -> ExecutionStats:
        """Snapshot of the execution counters."""
        with self._lock:
            return self._stats.model_copy()

    @property
    def successful_retries(self) -> int:
        """Operations that only succeeded after at least one retry."""
        with self._lock:
            return self._stats.recovered_operations

    def reset(self) -> None:
        """Drop all records and counters."""
        with self._lock:
            cleared = len(self._records)
            self._records.clear()
            self._stats = ExecutionStats()
        logger.debug("error_ledger_reset", cleared=cleared)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
