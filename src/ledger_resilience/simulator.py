"""Seeded in-memory ledger client for reliability drills and tests.

``SimulatedLedgerClient`` satisfies the ``LedgerClient`` protocol and
injects failures at configurable rates: transient and fatal precheck
errors on submission, receipts that are not yet available on the first
poll, and probe outages. With a fixed ``seed`` every run is repeatable.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from ledger_resilience.exceptions import OperationFailedError

if TYPE_CHECKING:
    from ledger_resilience.executor import LedgerExecutor

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

DEFAULT_TRANSIENT_STATUSES = ("BUSY", "PLATFORM_NOT_ACTIVE", "THROTTLED_AT_CONSENSUS")
DEFAULT_FATAL_STATUSES = ("INVALID_SIGNATURE", "INSUFFICIENT_PAYER_BALANCE")
PROBE_NAMES = ("network-info", "operator-balance", "account-record")

# Valid-start seconds of the first simulated transaction ID.
_EPOCH = 1_700_000_000


class LedgerStatusError(Exception):
    """A failure reported by the network with a ledger status code."""

    def __init__(self, status: str, message: str | None = None) -> None:
        self.status = status
        super().__init__(message or f"Ledger returned status {status}")


@dataclass(frozen=True)
class SimulatedTransaction:
    """A transaction body; only its name and memo are simulated."""

    name: str = "transfer"
    memo: str = ""


@dataclass(frozen=True)
class SimulatedReceipt:
    status: str
    transaction_id: str


@dataclass
class SimulatedPending:
    """Accepted submission whose receipt may need several polls."""

    transaction_id: str
    transaction: SimulatedTransaction
    client: SimulatedLedgerClient
    pending_polls: int = 0
    final_status: str = "SUCCESS"
    polls: int = 0

    async def get_receipt(self) -> SimulatedReceipt:
        await self.client._latency()
        self.polls += 1
        self.client.counters.receipt_polls += 1
        if self.pending_polls > 0:
            self.pending_polls -= 1
            raise LedgerStatusError("RECEIPT_NOT_FOUND", "receipt not yet available")
        return SimulatedReceipt(
            status=self.final_status, transaction_id=self.transaction_id
        )


@dataclass(frozen=True)
class SimulatedQuery:
    """Read-only query answered by ``SimulatedLedgerClient.answer``."""

    name: str = "account-balance"

    async def execute(self, client: SimulatedLedgerClient) -> dict[str, Any]:
        return await client.answer(self.name)


@dataclass
class SimulationCounters:
    submissions: int = 0
    accepted: int = 0
    receipt_polls: int = 0
    queries: int = 0
    injected_transient: int = 0
    injected_fatal: int = 0


class SimulatedLedgerClient:
    """Failure-injecting ledger client.

    Attributes:
        operator_id: Account ID used as the payer prefix of transaction IDs.
        counters: Running totals of calls and injected failures.
        submitted: Every transaction that was accepted, in order.
    """

    def __init__(
        self,
        seed: int | None = None,
        *,
        transient_rate: float = 0.2,
        fatal_rate: float = 0.0,
        receipt_delay_rate: float = 0.2,
        latency_seconds: tuple[float, float] = (0.0, 0.0),
        failing_probes: Iterable[str] = (),
        transient_statuses: Sequence[str] = DEFAULT_TRANSIENT_STATUSES,
        fatal_statuses: Sequence[str] = DEFAULT_FATAL_STATUSES,
        operator_id: str = "0.0.1001",
    ) -> None:
        for label, rate in (
            ("transient_rate", transient_rate),
            ("fatal_rate", fatal_rate),
            ("receipt_delay_rate", receipt_delay_rate),
        ):
            if not 0.0 <= rate <= 1.0:
                msg = f"{label} must be within [0, 1], got {rate}"
                raise ValueError(msg)
        if transient_rate + fatal_rate > 1.0:
            msg = "transient_rate + fatal_rate must not exceed 1"
            raise ValueError(msg)
        unknown = set(failing_probes) - set(PROBE_NAMES)
        if unknown:
            msg = f"unknown probes: {sorted(unknown)}"
            raise ValueError(msg)

        self.transient_rate = transient_rate
        self.fatal_rate = fatal_rate
        self.receipt_delay_rate = receipt_delay_rate
        self.latency_seconds = latency_seconds
        self.failing_probes = frozenset(failing_probes)
        self.transient_statuses = tuple(transient_statuses)
        self.fatal_statuses = tuple(fatal_statuses)
        self.operator_id = operator_id
        self.counters = SimulationCounters()
        self.submitted: list[SimulatedPending] = []
        self._rng = random.Random(seed)

    async def _latency(self) -> None:
        low, high = self.latency_seconds
        if high > 0:
            await asyncio.sleep(self._rng.uniform(low, high))

    def _inject(self, what: str) -> None:
        roll = self._rng.random()
        if roll < self.fatal_rate:
            self.counters.injected_fatal += 1
            status = self._rng.choice(self.fatal_statuses)
            logger.debug("simulated_failure", call=what, status=status, fatal=True)
            raise LedgerStatusError(status)
        if roll < self.fatal_rate + self.transient_rate:
            self.counters.injected_transient += 1
            status = self._rng.choice(self.transient_statuses)
            logger.debug("simulated_failure", call=what, status=status, fatal=False)
            raise LedgerStatusError(status)

    # ------------------------------------------------------------------
    # LedgerClient protocol
    # ------------------------------------------------------------------

    async def submit(self, transaction: Any) -> SimulatedPending:
        await self._latency()
        self.counters.submissions += 1
        self._inject("submit")

        self.counters.accepted += 1
        sequence = self.counters.accepted
        pending = SimulatedPending(
            transaction_id=f"{self.operator_id}@{_EPOCH + sequence}.{sequence:09d}",
            transaction=transaction,
            client=self,
            pending_polls=1 if self._rng.random() < self.receipt_delay_rate else 0,
        )
        self.submitted.append(pending)
        return pending

    async def get_network_info(self) -> dict[str, Any]:
        await self._probe("network-info")
        return {"network": "simulated", "nodes": {"0.0.3": "127.0.0.1:50211"}}

    async def get_operator_balance(self) -> dict[str, Any]:
        await self._probe("operator-balance")
        return {"account_id": self.operator_id, "hbars": 100}

    async def get_account_info(self) -> dict[str, Any]:
        await self._probe("account-record")
        return {"account_id": self.operator_id, "deleted": False}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def answer(self, name: str) -> dict[str, Any]:
        """Answer a simulated query, possibly failing transiently."""
        await self._latency()
        self.counters.queries += 1
        self._inject(f"query:{name}")
        return {"query": name, "account_id": self.operator_id, "hbars": 100}

    async def _probe(self, name: str) -> None:
        await self._latency()
        if name in self.failing_probes:
            msg = f"{name}: node unreachable"
            raise ConnectionError(msg)


# ---------------------------------------------------------------------------
# Simulated session
# ---------------------------------------------------------------------------


@dataclass
class SimulationResult:
    """Outcome of one simulated session."""

    health: dict[str, Any]
    completed: int = 0
    failed: int = 0
    aborted: bool = False
    transaction_ids: list[str] = field(default_factory=list)


async def run_simulation(
    executor: LedgerExecutor,
    client: SimulatedLedgerClient,
    transactions: int = 10,
    queries: int = 5,
    names: Sequence[str] = ("mint", "transfer", "burn"),
) -> SimulationResult:
    """Run a health-checked session of transactions and queries.

    The session stops before any submission when the health check fails.
    Each operation is independent: a terminal failure is counted and the
    session moves on to the next one.

    Args:
        executor: Executor whose ledger collects the failures.
        client: The simulated client.
        transactions: Number of transactions to submit.
        queries: Number of queries to run afterwards.
        names: Transaction names, used round-robin.
    """
    health = await executor.perform_health_check(client)
    result = SimulationResult(health=health)
    if not health["healthy"]:
        logger.error("simulation_aborted", score=health["score"])
        result.aborted = True
        return result

    for index in range(1, transactions + 1):
        name = names[(index - 1) % len(names)]
        try:
            confirmed = await executor.safe_transaction_execute(
                lambda name=name, index=index: SimulatedTransaction(
                    name=name, memo=f"simulated {name} #{index}"
                ),
                client,
                f"{name}-{index}",
                {"index": index},
            )
        except OperationFailedError:
            result.failed += 1
            continue
        result.completed += 1
        if confirmed.transaction_id:
            result.transaction_ids.append(confirmed.transaction_id)

    for index in range(1, queries + 1):
        try:
            await executor.safe_query_execute(
                SimulatedQuery(), client, f"balance-query-{index}", {"index": index}
            )
        except OperationFailedError:
            result.failed += 1
            continue
        result.completed += 1

    logger.info(
        "simulation_completed",
        completed=result.completed,
        failed=result.failed,
        submissions=client.counters.submissions,
    )
    return result
