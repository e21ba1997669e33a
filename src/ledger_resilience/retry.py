"""Generic async retry primitive driven by tenacity.

``RetryExecutor.run`` treats the operation as an opaque coroutine
factory. Each failure is classified; only transient kinds are retried,
with the backoff policy deciding the sleep between attempts. Terminal
failures become an ``ErrorRecord`` appended to the error ledger and are
returned on the ``Outcome`` rather than raised.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime
from typing import Any, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)

from ledger_resilience.backoff import BackoffPolicy
from ledger_resilience.circuit import CircuitBreaker
from ledger_resilience.classifier import (
    ErrorClassifier,
    extract_status,
    remediation_hint,
)
from ledger_resilience.exceptions import CircuitOpenError, OperationCancelledError
from ledger_resilience.ledger import ErrorLedger
from ledger_resilience.logging import operation_logging_context
from ledger_resilience.models import (
    AttemptOutcome,
    ErrorKind,
    ErrorRecord,
    FatalReason,
    OperationAttempt,
    Outcome,
    RetryPolicy,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
SleepFn = Callable[[float], Awaitable[None]]


def build_error_record(
    operation_name: str,
    error: BaseException,
    kind: ErrorKind,
    attempts_made: int,
    context: Mapping[str, Any] | None = None,
) -> ErrorRecord:
    """Fold a terminal failure into an immutable ``ErrorRecord``."""
    return ErrorRecord(
        operation_name=operation_name,
        kind=kind,
        message=str(error) or error.__class__.__name__,
        error_type=error.__class__.__name__,
        status=extract_status(error),
        context=dict(context or {}),
        attempts_made=attempts_made,
        recovered_by_retry=False,
    )


def _check_cancelled(
    cancel_event: asyncio.Event | None, operation_name: str, attempts_made: int
) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelledError(operation_name, attempts_made)


class RetryExecutor:
    """Runs an async operation up to ``policy.max_retries + 1`` times.

    Attributes:
        policy: Immutable retry budget.
        classifier: Decides whether a failure is retried.
        ledger: Receives terminal failures and recovery counters.
        backoff: Delay schedule between attempts.
        circuit_breaker: Optional per-operation fail-fast guard.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        classifier: ErrorClassifier | None = None,
        ledger: ErrorLedger | None = None,
        backoff: BackoffPolicy | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.policy = policy
        self.classifier = classifier or ErrorClassifier()
        self.ledger = ledger if ledger is not None else ErrorLedger()
        self.backoff = backoff or BackoffPolicy(policy)
        self.circuit_breaker = circuit_breaker
        self._sleep = sleep

    async def run(
        self,
        operation: Operation[T],
        operation_name: str,
        context: Mapping[str, Any] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> Outcome[T]:
        """Run ``operation`` with classification-aware retries.

        Args:
            operation: Zero-argument callable returning a fresh awaitable
                on every call.
            operation_name: Name used in logs and error records.
            context: Caller metadata copied into any error record.
            cancel_event: When set, no further attempt is started.

        Returns:
            ``Outcome`` holding the value, or the terminal ``ErrorRecord``
            together with the attempt log.

        Raises:
            OperationCancelledError: If ``cancel_event`` was set before an
                attempt began. Cancellation is not a ledger failure.
        """
        self.ledger.note_operation()
        attempts: list[OperationAttempt] = []

        with operation_logging_context(operation_name) as log:
            if self.circuit_breaker is not None:
                try:
                    self.circuit_breaker.before_call(operation_name)
                except CircuitOpenError as exc:
                    return self._terminal(
                        log,
                        operation_name,
                        exc,
                        attempts,
                        context,
                        kind=ErrorKind.fatal(FatalReason.CIRCUIT_OPEN),
                    )

            retrying = AsyncRetrying(
                stop=stop_after_attempt(self.policy.total_attempts),
                wait=self._wait,
                retry=retry_if_exception(self._should_retry),
                sleep=self._sleep,
                before_sleep=self._before_sleep,
                reraise=True,
            )

            try:
                async for attempt in retrying:
                    with attempt:
                        index = attempt.retry_state.attempt_number
                        _check_cancelled(cancel_event, operation_name, index - 1)
                        try:
                            value = await self._attempt(
                                log, operation, index, attempts
                            )
                        except Exception:
                            # Checked again before any backoff sleep is scheduled.
                            _check_cancelled(cancel_event, operation_name, index)
                            raise
            except OperationCancelledError:
                log.warning("operation_cancelled", attempts=len(attempts))
                raise
            except Exception as exc:
                if self.circuit_breaker is not None:
                    self.circuit_breaker.record_failure(operation_name)
                return self._terminal(log, operation_name, exc, attempts, context)

            if self.circuit_breaker is not None:
                self.circuit_breaker.record_success(operation_name)
            self.ledger.note_success(len(attempts))
            if len(attempts) > 1:
                log.info("operation_recovered", attempts=len(attempts))
            return Outcome.success(value, tuple(attempts))

    async def _attempt(
        self,
        log: structlog.stdlib.BoundLogger,
        operation: Operation[T],
        index: int,
        attempts: list[OperationAttempt],
    ) -> T:
        log.debug(
            "attempt_started",
            attempt=index,
            max_attempts=self.policy.total_attempts,
        )
        started_at = datetime.now(tz=UTC).isoformat()
        started = time.monotonic()
        try:
            value = await self._invoke(operation)
        except Exception as exc:
            attempts.append(
                OperationAttempt(
                    attempt_index=index,
                    started_at=started_at,
                    duration_seconds=time.monotonic() - started,
                    outcome=AttemptOutcome.FAILURE,
                    error=str(exc) or exc.__class__.__name__,
                )
            )
            log.warning(
                "attempt_failed",
                attempt=index,
                max_attempts=self.policy.total_attempts,
                error_type=exc.__class__.__name__,
                error=str(exc),
            )
            raise
        attempts.append(
            OperationAttempt(
                attempt_index=index,
                started_at=started_at,
                duration_seconds=time.monotonic() - started,
                outcome=AttemptOutcome.SUCCESS,
            )
        )
        return value

    async def _invoke(self, operation: Operation[T]) -> T:
        timeout = self.policy.attempt_timeout_seconds
        if timeout is None:
            return await operation()
        try:
            return await asyncio.wait_for(operation(), timeout=timeout)
        except TimeoutError as exc:
            if str(exc):
                raise
            msg = f"attempt timed out after {timeout}s"
            raise TimeoutError(msg) from exc

    def _terminal(
        self,
        log: structlog.stdlib.BoundLogger,
        operation_name: str,
        error: BaseException,
        attempts: list[OperationAttempt],
        context: Mapping[str, Any] | None,
        kind: ErrorKind | None = None,
    ) -> Outcome[Any]:
        kind = kind or self.classifier.classify(error)
        record = build_error_record(
            operation_name, error, kind, len(attempts), context
        )
        self.ledger.append(record)
        log.error(
            "operation_failed",
            kind=kind.label,
            attempts=record.attempts_made,
            error=record.message,
        )
        hint = remediation_hint(kind)
        if hint:
            log.info("remediation_hint", kind=kind.label, hint=hint)
        return Outcome.failure(record, tuple(attempts))

    def _should_retry(self, error: BaseException) -> bool:
        if not isinstance(error, Exception) or isinstance(
            error, OperationCancelledError
        ):
            return False
        return self.classifier.is_retryable(error)

    def _wait(self, retry_state: RetryCallState) -> float:
        return self.backoff.delay_for(retry_state.attempt_number)

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        self.ledger.note_retry()
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        logger.info(
            "retry_scheduled",
            attempt=retry_state.attempt_number,
            delay_seconds=round(retry_state.upcoming_sleep, 3),
            kind=self.classifier.classify(error).label if error else None,
        )
