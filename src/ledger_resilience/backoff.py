"""Exponential backoff with a symmetric jitter band."""

from __future__ import annotations

import random

from ledger_resilience.models import RetryPolicy


class BackoffPolicy:
    """Delay schedule derived from a ``RetryPolicy``.

    The delay after attempt ``k`` (1-based) is
    ``min(base * multiplier ** (k - 1), max_delay)`` widened uniformly by
    ``+/- jitter_ratio`` so concurrent callers do not retry in lockstep.
    Holds no mutable state beyond the random source.

    Attributes:
        policy: The retry policy the schedule is computed from.
    """

    def __init__(self, policy: RetryPolicy, rng: random.Random | None = None) -> None:
        self.policy = policy
        self._rng = rng or random.Random()

    def nominal_delay(self, attempt_index: int) -> float:
        """Capped delay before jitter, in seconds."""
        if attempt_index < 1:
            msg = f"attempt_index must be >= 1, got {attempt_index}"
            raise ValueError(msg)
        raw = self.policy.base_delay_seconds * (
            self.policy.backoff_multiplier ** (attempt_index - 1)
        )
        return min(raw, self.policy.max_delay_seconds)

    def bounds(self, attempt_index: int) -> tuple[float, float]:
        """Inclusive jitter band for ``delay_for(attempt_index)``."""
        nominal = self.nominal_delay(attempt_index)
        spread = nominal * self.policy.jitter_ratio
        return nominal - spread, nominal + spread

    def delay_for(self, attempt_index: int) -> float:
        """Seconds to wait after failed attempt ``attempt_index``.

        Args:
            attempt_index: 1-based index of the attempt that just failed.

        Returns:
            A delay drawn uniformly from ``bounds(attempt_index)``.
        """
        low, high = self.bounds(attempt_index)
        if high <= low:
            return low
        return self._rng.uniform(low, high)
