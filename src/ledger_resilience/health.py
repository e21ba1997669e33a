"""Network health check built from independent read-only probes."""

from __future__ import annotations

import asyncio
import math
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from ledger_resilience.exceptions import UnhealthyNetworkError
from ledger_resilience.models import HealthCheckResult

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_DEFAULT_THRESHOLD_RATIO = 2 / 3
_DEFAULT_PROBE_TIMEOUT = 10.0


@dataclass(frozen=True)
class HealthProbe:
    """A named read-only check worth one point when it succeeds."""

    name: str
    check: Callable[[Any], Awaitable[Any]]


async def _probe_network_info(client: Any) -> Any:
    info = await client.get_network_info()
    if not info:
        msg = "network info is empty"
        raise RuntimeError(msg)
    return info


async def _probe_operator_balance(client: Any) -> Any:
    return await client.get_operator_balance()


async def _probe_account_record(client: Any) -> Any:
    return await client.get_account_info()


DEFAULT_PROBES: tuple[HealthProbe, ...] = (
    HealthProbe("network-info", _probe_network_info),
    HealthProbe("operator-balance", _probe_operator_balance),
    HealthProbe("account-record", _probe_account_record),
)


class HealthChecker:
    """Runs a fixed probe battery and scores the network.

    A single failing probe never aborts the others. The network is
    healthy when the number of passing probes reaches ``threshold``.

    Attributes:
        probes: The probe battery.
        threshold: Minimum passing probes for a healthy result.
        probe_timeout_seconds: Deadline for each probe.
    """

    def __init__(
        self,
        probes: Sequence[HealthProbe] = DEFAULT_PROBES,
        threshold: int | None = None,
        threshold_ratio: float = _DEFAULT_THRESHOLD_RATIO,
        probe_timeout_seconds: float = _DEFAULT_PROBE_TIMEOUT,
    ) -> None:
        self.probes = tuple(probes)
        if threshold is None:
            # Round away float noise before the ceiling (2/3 * 3 -> 2).
            threshold = math.ceil(round(threshold_ratio * len(self.probes), 9))
        if not 0 <= threshold <= len(self.probes):
            msg = f"threshold must be within [0, {len(self.probes)}], got {threshold}"
            raise ValueError(msg)
        self.threshold = threshold
        self.probe_timeout_seconds = probe_timeout_seconds

    async def check(self, client: Any) -> HealthCheckResult:
        """Run every probe concurrently and score the result.

        Args:
            client: The ledger client passed to each probe.

        Returns:
            A fresh ``HealthCheckResult``; nothing is cached.
        """
        logger.info("health_check_started", probes=len(self.probes))
        outcomes = await asyncio.gather(
            *(self._run_probe(probe, client) for probe in self.probes)
        )

        checks: dict[str, bool] = {}
        errors: dict[str, str] = {}
        for probe, error in zip(self.probes, outcomes, strict=True):
            checks[probe.name] = error is None
            if error is not None:
                errors[probe.name] = error

        score = sum(1 for passed in checks.values() if passed)
        result = HealthCheckResult(
            score=score,
            probe_count=len(self.probes),
            threshold=self.threshold,
            healthy=score >= self.threshold,
            checks=checks,
            failed_probes=[name for name, passed in checks.items() if not passed],
            errors=errors,
        )
        log = logger.info if result.healthy else logger.warning
        log(
            "health_check_completed",
            score=score,
            probe_count=result.probe_count,
            threshold=self.threshold,
            healthy=result.healthy,
            failed_probes=result.failed_probes,
        )
        return result

    async def ensure_healthy(self, client: Any) -> HealthCheckResult:
        """Run the check and fail fast on an unhealthy network.

        Raises:
            UnhealthyNetworkError: If the score is below the threshold.
        """
        result = await self.check(client)
        if not result.healthy:
            raise UnhealthyNetworkError(result)
        return result

    async def _run_probe(self, probe: HealthProbe, client: Any) -> str | None:
        """Return ``None`` on success or the failure message."""
        try:
            await asyncio.wait_for(
                probe.check(client), timeout=self.probe_timeout_seconds
            )
        except TimeoutError:
            message = f"probe timed out after {self.probe_timeout_seconds}s"
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
        else:
            logger.debug("health_probe_passed", probe=probe.name)
            return None
        logger.warning("health_probe_failed", probe=probe.name, error=message)
        return message
