"""Retried read-only queries.

Queries have no double-execution hazard, so every attempt simply
re-issues the read.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

from ledger_resilience.client import LedgerQuery
from ledger_resilience.models import Outcome
from ledger_resilience.retry import RetryExecutor


class QueryExecutor:
    """Thin wrapper running ``query.execute(client)`` through a RetryExecutor."""

    def __init__(self, retry_executor: RetryExecutor) -> None:
        self.retry_executor = retry_executor

    async def run_query(
        self,
        query: LedgerQuery,
        client: Any,
        operation_name: str,
        context: Mapping[str, Any] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> Outcome[Any]:
        async def _attempt() -> Any:
            return await query.execute(client)

        return await self.retry_executor.run(
            _attempt, operation_name, context, cancel_event=cancel_event
        )
