"""Unit tests for ledger_resilience.transaction - submit-and-confirm."""

from __future__ import annotations

from enum import IntEnum

import pytest

from ledger_resilience.ledger import ErrorLedger
from ledger_resilience.models import (
    ErrorKind,
    FatalReason,
    RetryPolicy,
    TransientReason,
)
from ledger_resilience.retry import RetryExecutor
from ledger_resilience.transaction import TransactionExecutor, has_acceptance_evidence
from tests.fakes import (
    FakeClient,
    FakePending,
    FakeReceipt,
    RecordingSleep,
    StatusError,
)


class Status(IntEnum):
    SUCCESS = 22


class _Builder:
    """Counts how many fresh transactions were built."""

    def __init__(self) -> None:
        self.built = 0

    def __call__(self) -> dict[str, int]:
        self.built += 1
        return {"body": self.built}


def _executor(
    ledger: ErrorLedger,
    sleep: RecordingSleep,
    timeout: float | None = None,
) -> TransactionExecutor:
    policy = RetryPolicy(
        max_retries=3, base_delay_seconds=0.0, attempt_timeout_seconds=timeout
    )
    return TransactionExecutor(RetryExecutor(policy, ledger=ledger, sleep=sleep))


class TestAcceptanceEvidence:
    """A transaction ID is the evidence of acceptance."""

    def test_with_id(self) -> None:
        assert has_acceptance_evidence(FakePending("0.0.2@1.0", []))

    def test_without_id(self) -> None:
        assert not has_acceptance_evidence(FakePending(None, []))
        assert not has_acceptance_evidence(None)


class TestHappyPath:
    """Submit once, confirm once."""

    @pytest.mark.asyncio
    async def test_single_submission(
        self, ledger: ErrorLedger, recording_sleep: RecordingSleep
    ) -> None:
        client = FakeClient()
        builder = _Builder()

        outcome = await _executor(ledger, recording_sleep).submit_and_confirm(
            builder, client, "mint"
        )

        result = outcome.unwrap()
        assert client.submit_calls == 1
        assert builder.built == 1
        assert result.submissions == 1
        assert result.receipt_polls == 1
        assert result.transaction_id == "0.0.2@1.0"

    @pytest.mark.asyncio
    async def test_numeric_success_status(
        self, ledger: ErrorLedger, recording_sleep: RecordingSleep
    ) -> None:
        pending = FakePending("0.0.2@5.0", [FakeReceipt(Status.SUCCESS)])
        client = FakeClient([pending])

        outcome = await _executor(ledger, recording_sleep).submit_and_confirm(
            _Builder(), client, "mint"
        )

        assert outcome.ok


class TestNoDoubleSubmission:
    """After acceptance, later attempts only re-poll the receipt."""

    @pytest.mark.asyncio
    async def test_receipt_timeout_repolls_same_transaction(
        self, ledger: ErrorLedger, recording_sleep: RecordingSleep
    ) -> None:
        pending = FakePending("0.0.2@7.0", ["hang", FakeReceipt()])
        client = FakeClient([pending])
        builder = _Builder()

        outcome = await _executor(
            ledger, recording_sleep, timeout=0.05
        ).submit_and_confirm(builder, client, "mint")

        result = outcome.unwrap()
        assert client.submit_calls == 1
        assert builder.built == 1
        assert pending.polls == 2
        assert result.receipt_polls == 2
        assert result.transaction_id == "0.0.2@7.0"

    @pytest.mark.asyncio
    async def test_receipt_not_found_repolls(
        self, ledger: ErrorLedger, recording_sleep: RecordingSleep
    ) -> None:
        pending = FakePending(
            "0.0.2@8.0",
            [StatusError("RECEIPT_NOT_FOUND"), StatusError("BUSY"), FakeReceipt()],
        )
        client = FakeClient([pending])

        outcome = await _executor(ledger, recording_sleep).submit_and_confirm(
            _Builder(), client, "transfer"
        )

        assert outcome.ok
        assert client.submit_calls == 1
        assert pending.polls == 3
        assert ledger.successful_retries == 1

    @pytest.mark.asyncio
    async def test_exhausted_receipt_polls_never_resubmit(
        self, ledger: ErrorLedger, recording_sleep: RecordingSleep
    ) -> None:
        pending = FakePending(
            "0.0.2@9.0", [StatusError("RECEIPT_NOT_FOUND") for _ in range(10)]
        )
        client = FakeClient([pending])

        outcome = await _executor(ledger, recording_sleep).submit_and_confirm(
            _Builder(), client, "transfer"
        )

        assert not outcome.ok
        assert client.submit_calls == 1
        assert pending.polls == 4
        assert outcome.error is not None
        assert outcome.error.kind == ErrorKind.transient(
            TransientReason.RECEIPT_PENDING
        )


class TestResubmission:
    """Without acceptance evidence a fresh transaction is submitted."""

    @pytest.mark.asyncio
    async def test_submit_failure_rebuilds(
        self, ledger: ErrorLedger, recording_sleep: RecordingSleep
    ) -> None:
        client = FakeClient([StatusError("BUSY")])
        builder = _Builder()

        outcome = await _executor(ledger, recording_sleep).submit_and_confirm(
            builder, client, "mint"
        )

        result = outcome.unwrap()
        assert client.submit_calls == 2
        assert builder.built == 2
        assert result.submissions == 1
        assert client.submitted == [{"body": 2}]

    @pytest.mark.asyncio
    async def test_confirmed_not_accepted_resubmits(
        self, ledger: ErrorLedger, recording_sleep: RecordingSleep
    ) -> None:
        expired = FakePending("0.0.2@1.0", [StatusError("TRANSACTION_EXPIRED")])
        client = FakeClient([expired])
        builder = _Builder()

        outcome = await _executor(ledger, recording_sleep).submit_and_confirm(
            builder, client, "mint"
        )

        assert outcome.ok
        assert client.submit_calls == 2
        assert builder.built == 2

    @pytest.mark.asyncio
    async def test_pending_without_id_resubmits(
        self, ledger: ErrorLedger, recording_sleep: RecordingSleep
    ) -> None:
        anonymous = FakePending(None, [TimeoutError("no answer")])
        client = FakeClient([anonymous])

        outcome = await _executor(ledger, recording_sleep).submit_and_confirm(
            _Builder(), client, "mint"
        )

        assert outcome.ok
        assert client.submit_calls == 2


class TestReceiptStatus:
    """A finalised non-success receipt is a terminal failure."""

    @pytest.mark.asyncio
    async def test_fatal_receipt_status(
        self, ledger: ErrorLedger, recording_sleep: RecordingSleep
    ) -> None:
        pending = FakePending(
            "0.0.2@3.0", [FakeReceipt("INSUFFICIENT_PAYER_BALANCE")]
        )
        client = FakeClient([pending])

        outcome = await _executor(ledger, recording_sleep).submit_and_confirm(
            _Builder(), client, "mint", {"amount": 100}
        )

        assert outcome.error is not None
        assert outcome.error.kind == ErrorKind.fatal(FatalReason.INSUFFICIENT_BALANCE)
        assert outcome.error.status == "INSUFFICIENT_PAYER_BALANCE"
        assert outcome.error.attempts_made == 1
        assert outcome.error.context == {"amount": 100}
        assert client.submit_calls == 1
        assert recording_sleep.delays == []
        assert len(ledger) == 1

    @pytest.mark.asyncio
    async def test_numeric_status_is_not_success(
        self, ledger: ErrorLedger, recording_sleep: RecordingSleep
    ) -> None:
        pending = FakePending("0.0.2@5.0", [FakeReceipt(22)])
        client = FakeClient([pending])

        outcome = await _executor(ledger, recording_sleep).submit_and_confirm(
            _Builder(), client, "mint"
        )

        assert not outcome.ok
        assert outcome.error is not None
        assert outcome.error.status == "22"
        assert client.submit_calls == 1
