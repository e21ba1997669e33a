"""Two-phase submit-and-confirm for mutating ledger transactions.

A transaction goes through submission (the network accepts it and
assigns a transaction ID) and confirmation (its receipt reaches
finality). A failure before acceptance is retried with a freshly built
transaction. A failure after acceptance only ever re-polls the receipt
of the transaction already submitted, because resubmitting could
execute the effect twice.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import structlog

from ledger_resilience.classifier import normalise_status
from ledger_resilience.client import LedgerClient, PendingTransaction, Receipt
from ledger_resilience.exceptions import ReceiptStatusError
from ledger_resilience.models import Outcome, TransactionResult
from ledger_resilience.retry import RetryExecutor

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

# Statuses are matched by name, as in the status rules.
DEFAULT_SUCCESS_STATUSES: frozenset[str] = frozenset({"SUCCESS"})

TransactionBuilder = Callable[[], Any]


@dataclass
class _SubmissionState:
    """Mutable per-call state shared by successive attempts."""

    pending: PendingTransaction | None = None
    submissions: int = 0
    receipt_polls: int = 0


def has_acceptance_evidence(pending: PendingTransaction | None) -> bool:
    """True when the network assigned the submission an identity."""
    if pending is None:
        return False
    return bool(getattr(pending, "transaction_id", None))


class TransactionExecutor:
    """Submits a transaction and waits for its receipt without double-submitting.

    Attributes:
        retry_executor: Supplies the retry budget, classifier and ledger.
        success_statuses: Receipt statuses treated as finalised success.
    """

    def __init__(
        self,
        retry_executor: RetryExecutor,
        success_statuses: Iterable[str] = DEFAULT_SUCCESS_STATUSES,
    ) -> None:
        self.retry_executor = retry_executor
        self.success_statuses = frozenset(s.upper() for s in success_statuses)

    async def submit_and_confirm(
        self,
        build_transaction: TransactionBuilder,
        client: LedgerClient,
        operation_name: str,
        context: Mapping[str, Any] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> Outcome[TransactionResult]:
        """Submit a transaction and confirm it with at most one accepted submission.

        Args:
            build_transaction: Returns a new, unsubmitted transaction each
                time it is called. Called again only when no submission
                has been accepted.
            client: Ledger client used for submission.
            operation_name: Name used in logs and error records.
            context: Caller metadata copied into any error record.
            cancel_event: When set, no further attempt is started.

        Returns:
            ``Outcome`` holding a ``TransactionResult`` or the terminal
            ``ErrorRecord``.
        """
        state = _SubmissionState()
        classifier = self.retry_executor.classifier

        async def _attempt() -> TransactionResult:
            if state.pending is None:
                transaction = build_transaction()
                state.pending = await client.submit(transaction)
                state.submissions += 1
                logger.info(
                    "transaction_submitted",
                    operation=operation_name,
                    transaction_id=_transaction_id(state.pending),
                    submissions=state.submissions,
                )

            pending = state.pending
            state.receipt_polls += 1
            try:
                receipt = await pending.get_receipt()
                self._validate_receipt(receipt, pending)
            except Exception as exc:
                accepted = has_acceptance_evidence(pending)
                if not accepted or classifier.confirms_not_accepted(exc):
                    logger.warning(
                        "submission_not_accepted",
                        operation=operation_name,
                        transaction_id=_transaction_id(pending),
                        error=str(exc),
                    )
                    state.pending = None
                else:
                    logger.info(
                        "receipt_poll_failed",
                        operation=operation_name,
                        transaction_id=_transaction_id(pending),
                        poll=state.receipt_polls,
                        error=str(exc),
                    )
                raise

            return TransactionResult(
                response=pending,
                receipt=receipt,
                submissions=state.submissions,
                receipt_polls=state.receipt_polls,
            )

        outcome = await self.retry_executor.run(
            _attempt, operation_name, context, cancel_event=cancel_event
        )
        if outcome.ok and outcome.value is not None:
            logger.info(
                "transaction_confirmed",
                operation=operation_name,
                transaction_id=outcome.value.transaction_id,
                submissions=state.submissions,
                receipt_polls=state.receipt_polls,
            )
        return outcome

    def _validate_receipt(self, receipt: Receipt, pending: PendingTransaction) -> None:
        status = normalise_status(getattr(receipt, "status", None))
        if status is None or status in self.success_statuses:
            return
        raise ReceiptStatusError(status, _transaction_id(pending))


def _transaction_id(pending: PendingTransaction | None) -> str | None:
    raw = getattr(pending, "transaction_id", None)
    return str(raw) if raw is not None else None
