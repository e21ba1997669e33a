"""Unit tests for ledger_resilience.ledger - the error ledger."""

from __future__ import annotations

import asyncio
import threading

import pytest

from ledger_resilience.ledger import ErrorLedger
from ledger_resilience.models import ErrorKind, ErrorRecord, FatalReason


def _record(name: str = "mint") -> ErrorRecord:
    return ErrorRecord(
        operation_name=name,
        kind=ErrorKind.fatal(FatalReason.INVALID_SIGNATURE),
        message="bad signature",
    )


class TestAppend:
    """append stores records and counts failures."""

    def test_append_and_snapshot(self, ledger: ErrorLedger) -> None:
        ledger.append(_record("a"))
        ledger.append(_record("b"))

        snapshot = ledger.records()
        assert [r.operation_name for r in snapshot] == ["a", "b"]
        assert len(ledger) == 2
        assert ledger.stats().failed_operations == 2

    def test_snapshot_is_a_copy(self, ledger: ErrorLedger) -> None:
        ledger.append(_record())
        snapshot = ledger.records()
        snapshot.clear()
        assert len(ledger) == 1

    def test_records_are_frozen(self) -> None:
        record = _record()
        with pytest.raises(ValueError, match="frozen"):
            record.attempts_made = 5  # type: ignore[misc]


class TestCounters:
    """Operation, success and retry counters."""

    def test_recovery_counts_only_multi_attempt_success(
        self, ledger: ErrorLedger
    ) -> None:
        ledger.note_success(1)
        ledger.note_success(3)

        stats = ledger.stats()
        assert stats.successful_operations == 2
        assert stats.recovered_operations == 1
        assert ledger.successful_retries == 1
        assert len(ledger) == 0

    def test_retry_and_operation_counters(self, ledger: ErrorLedger) -> None:
        ledger.note_operation()
        ledger.note_retry()
        ledger.note_retry()

        stats = ledger.stats()
        assert stats.total_operations == 1
        assert stats.retries_attempted == 2

    def test_reset(self, ledger: ErrorLedger) -> None:
        ledger.append(_record())
        ledger.note_success(2)

        ledger.reset()

        assert len(ledger) == 0
        assert ledger.successful_retries == 0


class TestConcurrentWriters:
    """No record is lost under concurrent appends."""

    def test_threads(self, ledger: ErrorLedger) -> None:
        def writer() -> None:
            for _ in range(200):
                ledger.append(_record())

        threads = [threading.Thread(target=writer) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(ledger) == 1600
        assert ledger.stats().failed_operations == 1600

    @pytest.mark.asyncio
    async def test_tasks(self, ledger: ErrorLedger) -> None:
        async def writer(name: str) -> None:
            for _ in range(50):
                ledger.append(_record(name))
                await asyncio.sleep(0)

        await asyncio.gather(*(writer(f"op-{i}") for i in range(10)))

        assert len(ledger) == 500
