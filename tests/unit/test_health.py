"""Unit tests for ledger_resilience.health - probe battery and scoring."""

from __future__ import annotations

import asyncio
import itertools
from typing import Any

import pytest

from ledger_resilience.exceptions import UnhealthyNetworkError
from ledger_resilience.health import DEFAULT_PROBES, HealthChecker, HealthProbe
from tests.fakes import FakeClient

PROBES = [probe.name for probe in DEFAULT_PROBES]


class TestThreshold:
    """Threshold is explicit or derived from the ratio."""

    def test_default_ratio_gives_two_of_three(self) -> None:
        assert HealthChecker().threshold == 2

    def test_ratio_rounds_up(self) -> None:
        assert HealthChecker(threshold_ratio=0.5).threshold == 2
        assert HealthChecker(threshold_ratio=1.0).threshold == 3

    def test_explicit_threshold(self) -> None:
        assert HealthChecker(threshold=1).threshold == 1

    def test_threshold_above_probe_count_rejected(self) -> None:
        with pytest.raises(ValueError, match="threshold"):
            HealthChecker(threshold=4)


class TestCheck:
    """Scoring over every combination of probe outcomes."""

    @pytest.mark.asyncio
    async def test_two_of_three_is_healthy(self) -> None:
        client = FakeClient(failing_probes={"account-record"})

        result = await HealthChecker(threshold=2).check(client)

        assert result.healthy is True
        assert result.score == 2
        assert result.failed_probes == ["account-record"]
        assert "account-record probe failed" in result.errors["account-record"]

    @pytest.mark.parametrize(
        "failing",
        [
            set(combo)
            for size in range(len(PROBES) + 1)
            for combo in itertools.combinations(PROBES, size)
        ],
    )
    @pytest.mark.asyncio
    async def test_score_and_verdict(self, failing: set[str]) -> None:
        checker = HealthChecker()

        result = await checker.check(FakeClient(failing_probes=failing))

        assert 0 <= result.score <= result.probe_count == 3
        assert result.score == 3 - len(failing)
        assert result.healthy == (result.score >= checker.threshold)
        assert set(result.failed_probes) == failing
        assert all(result.checks[name] == (name not in failing) for name in PROBES)

    @pytest.mark.asyncio
    async def test_probe_timeout_counts_as_failure(self) -> None:
        async def slow(_: Any) -> None:
            await asyncio.sleep(10)

        async def fast(_: Any) -> str:
            return "ok"

        checker = HealthChecker(
            probes=[HealthProbe("slow", slow), HealthProbe("fast", fast)],
            threshold=1,
            probe_timeout_seconds=0.05,
        )

        result = await checker.check(FakeClient())

        assert result.checks == {"slow": False, "fast": True}
        assert "timed out" in result.errors["slow"]
        assert result.healthy

    @pytest.mark.asyncio
    async def test_empty_network_info_fails_probe(self) -> None:
        class EmptyNetworkClient(FakeClient):
            async def get_network_info(self) -> dict[str, str]:
                return {}

        result = await HealthChecker().check(EmptyNetworkClient())

        assert result.checks["network-info"] is False
        assert result.score == 2

    @pytest.mark.asyncio
    async def test_results_are_not_cached(self) -> None:
        client = FakeClient()
        checker = HealthChecker()

        first = await checker.check(client)
        client.failing_probes = set(PROBES)
        second = await checker.check(client)

        assert first.healthy
        assert not second.healthy
        assert second.score == 0


class TestEnsureHealthy:
    """ensure_healthy fails the session on an unhealthy network."""

    @pytest.mark.asyncio
    async def test_raises_below_threshold(self) -> None:
        client = FakeClient(failing_probes={"network-info", "operator-balance"})

        with pytest.raises(UnhealthyNetworkError, match="score 1/3") as excinfo:
            await HealthChecker().ensure_healthy(client)

        assert excinfo.value.result.score == 1

    @pytest.mark.asyncio
    async def test_returns_result_when_healthy(self) -> None:
        result = await HealthChecker().ensure_healthy(FakeClient())
        assert result.score == 3
