"""Shared pytest fixtures for the ledger-resilience test suite."""

from __future__ import annotations

import pytest

from ledger_resilience.ledger import ErrorLedger
from ledger_resilience.models import RetryPolicy
from tests.fakes import RecordingSleep


@pytest.fixture()
def recording_sleep() -> RecordingSleep:
    """Sleep stand-in so retry tests run instantly."""
    return RecordingSleep()


@pytest.fixture()
def ledger() -> ErrorLedger:
    return ErrorLedger()


@pytest.fixture()
def policy() -> RetryPolicy:
    """Three retries, 2s base delay, doubling, 10% jitter."""
    return RetryPolicy(
        max_retries=3,
        base_delay_seconds=2.0,
        backoff_multiplier=2.0,
        jitter_ratio=0.1,
        attempt_timeout_seconds=None,
    )
