"""Session-level facade over the resilient executors.

``LedgerExecutor`` is what calling scripts construct once per session:
it owns the retry policy, classifier, error ledger, health checker and
optional circuit breaker, and exposes the raise-on-failure API that
scripts use directly.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, Any, TypeVar

import structlog
from pydantic import ValidationError

from ledger_resilience.backoff import BackoffPolicy
from ledger_resilience.circuit import CircuitBreaker
from ledger_resilience.classifier import ErrorClassifier
from ledger_resilience.config import format_validation_error
from ledger_resilience.exceptions import ConfigurationError
from ledger_resilience.health import HealthChecker
from ledger_resilience.ledger import ErrorLedger
from ledger_resilience.models import RetryPolicy, TransactionResult
from ledger_resilience.query import QueryExecutor
from ledger_resilience.report import build_report
from ledger_resilience.retry import RetryExecutor, SleepFn
from ledger_resilience.transaction import TransactionBuilder, TransactionExecutor

if TYPE_CHECKING:
    from ledger_resilience.client import LedgerClient, LedgerQuery
    from ledger_resilience.config import Settings
    from ledger_resilience.models import HealthCheckResult

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

T = TypeVar("T")


class LedgerExecutor:
    """Retrying executor for one ledger session.

    Attributes:
        policy: The immutable retry policy.
        ledger: Terminal failures and session counters.
        health_checker: Probe battery used by ``perform_health_check``.
        circuit_breaker: Optional per-operation guard.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay_ms: int = 1000,
        *,
        backoff_multiplier: float = 2.0,
        jitter_ratio: float = 0.1,
        max_delay_ms: int = 30_000,
        attempt_timeout_seconds: float | None = 60.0,
        classifier: ErrorClassifier | None = None,
        ledger: ErrorLedger | None = None,
        health_checker: HealthChecker | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        rng: random.Random | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        try:
            self.policy = RetryPolicy(
                max_retries=max_retries,
                base_delay_seconds=base_delay_ms / 1000,
                backoff_multiplier=backoff_multiplier,
                jitter_ratio=jitter_ratio,
                max_delay_seconds=max_delay_ms / 1000,
                attempt_timeout_seconds=attempt_timeout_seconds,
            )
        except ValidationError as exc:
            raise ConfigurationError(format_validation_error(exc)) from exc

        self.ledger = ledger if ledger is not None else ErrorLedger()
        self.health_checker = health_checker or HealthChecker()
        self.circuit_breaker = circuit_breaker
        self._retry = RetryExecutor(
            self.policy,
            classifier=classifier,
            ledger=self.ledger,
            backoff=BackoffPolicy(self.policy, rng),
            circuit_breaker=circuit_breaker,
            sleep=sleep,
        )
        self._transactions = TransactionExecutor(self._retry)
        self._queries = QueryExecutor(self._retry)
        self._last_health: dict[str, Any] | None = None

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> LedgerExecutor:
        """Build an executor from resolved ``Settings``.

        Args:
            settings: Loaded application settings.
            **kwargs: Collaborators (``sleep``, ``rng``, ``ledger`` ...)
                forwarded to the constructor.
        """
        retry = settings.retry
        health = settings.health
        breaker_cfg = settings.circuit_breaker

        breaker = None
        if breaker_cfg.enabled:
            breaker = CircuitBreaker(
                failure_threshold=breaker_cfg.failure_threshold,
                reset_timeout_seconds=breaker_cfg.reset_timeout_seconds,
                half_open_max_calls=breaker_cfg.half_open_max_calls,
            )

        kwargs.setdefault(
            "health_checker",
            HealthChecker(
                threshold=health.threshold,
                threshold_ratio=health.threshold_ratio,
                probe_timeout_seconds=health.probe_timeout_seconds,
            ),
        )
        kwargs.setdefault("circuit_breaker", breaker)
        return cls(
            retry.max_retries,
            retry.base_delay_ms,
            backoff_multiplier=retry.backoff_multiplier,
            jitter_ratio=retry.jitter_ratio,
            max_delay_ms=retry.max_delay_ms,
            attempt_timeout_seconds=retry.attempt_timeout_seconds,
            **kwargs,
        )

    @property
    def classifier(self) -> ErrorClassifier:
        return self._retry.classifier

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def check_health(self, client: LedgerClient) -> HealthCheckResult:
        """Run the probe battery and remember the result for the report."""
        result = await self.health_checker.check(client)
        self._last_health = result.model_dump(mode="json")
        return result

    async def perform_health_check(self, client: LedgerClient) -> dict[str, Any]:
        """Run the probe battery and return a plain dict.

        Never raises; an unexpected failure yields an unhealthy result
        with an ``error`` entry.

        Returns:
            Dict with ``healthy``, ``score``, ``threshold``, ``checks`` and
            ``failed_probes``, plus ``error`` if the check itself failed.
        """
        try:
            result = await self.check_health(client)
        except Exception as exc:
            logger.exception("health_check_error", error=str(exc))
            health: dict[str, Any] = {
                "healthy": False,
                "score": 0,
                "threshold": self.health_checker.threshold,
                "checks": {},
                "failed_probes": [p.name for p in self.health_checker.probes],
                "error": str(exc),
            }
            self._last_health = health
            return health
        health = {
            "healthy": result.healthy,
            "score": result.score,
            "threshold": result.threshold,
            "checks": result.checks,
            "failed_probes": result.failed_probes,
        }
        if result.errors:
            health["errors"] = result.errors
        return health

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str = "operation",
        context: Mapping[str, Any] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> T:
        """Run an arbitrary async operation with retries.

        Raises:
            OperationFailedError: On a fatal failure or an exhausted budget.
            OperationCancelledError: If ``cancel_event`` is set between attempts.
        """
        outcome = await self._retry.run(
            operation, description, context, cancel_event=cancel_event
        )
        return outcome.unwrap()

    async def safe_transaction_execute(
        self,
        build_transaction: TransactionBuilder,
        client: LedgerClient,
        description: str = "transaction",
        context: Mapping[str, Any] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> TransactionResult:
        """Submit a transaction and wait for a successful receipt.

        The transaction is never submitted again once the network has
        accepted it; later attempts only re-poll its receipt.

        Raises:
            OperationFailedError: On a fatal failure or an exhausted budget.
        """
        outcome = await self._transactions.submit_and_confirm(
            build_transaction,
            client,
            description,
            context,
            cancel_event=cancel_event,
        )
        return outcome.unwrap()

    async def safe_query_execute(
        self,
        query: LedgerQuery,
        client: Any,
        description: str = "query",
        context: Mapping[str, Any] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> Any:
        """Execute a read-only query with retries.

        Raises:
            OperationFailedError: On a fatal failure or an exhausted budget.
        """
        outcome = await self._queries.run_query(
            query, client, description, context, cancel_event=cancel_event
        )
        return outcome.unwrap()

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def generate_error_report(self) -> dict[str, Any]:
        """JSON-ready report of every terminal failure so far."""
        circuits = self.circuit_breaker.snapshot() if self.circuit_breaker else None
        report = build_report(self.ledger, health=self._last_health, circuits=circuits)
        logger.info(
            "error_report_generated",
            total_errors=report["total_errors"],
            most_common_error=report["summary"]["most_common_error"],
        )
        return report

    def reset(self) -> None:
        """Clear the ledger, counters, circuits and last health result."""
        self.ledger.reset()
        if self.circuit_breaker is not None:
            for key in self.circuit_breaker.snapshot():
                self.circuit_breaker.reset(key)
        self._last_health = None
        logger.info("executor_reset")
