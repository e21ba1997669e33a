"""Structural interfaces for the ledger client library.

The executors never import a concrete SDK. Anything matching these
protocols (an SDK adapter, a mirror-node HTTP client, or the bundled
``SimulatedLedgerClient``) can be driven by them.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Receipt(Protocol):
    """Confirmation that a submitted transaction reached finality."""

    status: Any


@runtime_checkable
class PendingTransaction(Protocol):
    """Handle returned by a successful submission.

    A non-empty ``transaction_id`` is the evidence that the network
    accepted the transaction; once present, the transaction must not be
    submitted again.
    """

    transaction_id: Any

    async def get_receipt(self) -> Receipt: ...


@runtime_checkable
class LedgerQuery(Protocol):
    """Read-only request; always safe to re-issue."""

    async def execute(self, client: Any) -> Any: ...


@runtime_checkable
class LedgerClient(Protocol):
    """Network client used for submissions and health probes."""

    async def submit(self, transaction: Any) -> PendingTransaction: ...

    async def get_network_info(self) -> Any: ...

    async def get_operator_balance(self) -> Any: ...

    async def get_account_info(self) -> Any: ...
