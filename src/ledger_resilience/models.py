"""Data model shared by the executors, ledger, and report generator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from ledger_resilience.exceptions import OperationFailedError

T = TypeVar("T")


def _utc_now() -> str:
    return datetime.now(tz=UTC).isoformat()


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------


class RetryPolicy(BaseModel):
    """Immutable retry budget for one executor instance.

    ``max_retries`` counts retries after the initial attempt, so an
    operation is attempted at most ``max_retries + 1`` times.
    """

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=1)
    base_delay_seconds: float = Field(default=1.0, ge=0.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    jitter_ratio: float = Field(default=0.1, ge=0.0, lt=1.0)
    max_delay_seconds: float = Field(default=30.0, gt=0.0)
    attempt_timeout_seconds: float | None = Field(default=60.0, gt=0.0)

    @property
    def total_attempts(self) -> int:
        """Initial attempt plus every allowed retry."""
        return self.max_retries + 1


# ---------------------------------------------------------------------------
# Error taxonomy
# ---------------------------------------------------------------------------


class ErrorCategory(StrEnum):
    """Whether a failure is eligible for retry."""

    TRANSIENT = "transient"
    FATAL = "fatal"


class TransientReason(StrEnum):
    """Known retry-eligible failure reasons."""

    TIMEOUT = "timeout"
    BUSY = "busy"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    UNREACHABLE = "unreachable"
    RECEIPT_PENDING = "receipt_pending"
    EXPIRED = "expired"


class FatalReason(StrEnum):
    """Known never-retried failure reasons."""

    INVALID_SIGNATURE = "invalid_signature"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    MALFORMED_REQUEST = "malformed_request"
    DUPLICATE = "duplicate"
    UNAUTHORIZED = "unauthorized"
    INVALID_ACCOUNT = "invalid_account"
    REJECTED = "rejected"
    CIRCUIT_OPEN = "circuit_open"
    UNRECOGNIZED = "unrecognized"


class ErrorKind(BaseModel):
    """Tagged classification of a failure: a category plus a reason."""

    model_config = ConfigDict(frozen=True)

    category: ErrorCategory
    reason: str

    @classmethod
    def transient(cls, reason: str) -> ErrorKind:
        return cls(category=ErrorCategory.TRANSIENT, reason=str(reason))

    @classmethod
    def fatal(cls, reason: str) -> ErrorKind:
        return cls(category=ErrorCategory.FATAL, reason=str(reason))

    @property
    def retryable(self) -> bool:
        return self.category == ErrorCategory.TRANSIENT

    @property
    def label(self) -> str:
        """Stable string key, e.g. ``"transient:busy"``."""
        return f"{self.category.value}:{self.reason}"


# ---------------------------------------------------------------------------
# Attempts and records
# ---------------------------------------------------------------------------


class AttemptOutcome(StrEnum):
    """Result of a single attempt."""

    SUCCESS = "success"
    FAILURE = "failure"


class OperationAttempt(BaseModel):
    """One attempt made by the retry executor."""

    attempt_index: int = Field(ge=1)
    started_at: str = Field(default_factory=_utc_now)
    duration_seconds: float = Field(default=0.0, ge=0.0)
    outcome: AttemptOutcome
    error: str | None = None


class ErrorRecord(BaseModel):
    """Terminal failure of an operation, appended to the error ledger."""

    model_config = ConfigDict(frozen=True)

    operation_name: str
    kind: ErrorKind
    message: str
    error_type: str = "Exception"
    status: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)
    attempts_made: int = Field(default=1, ge=0)
    recovered_by_retry: bool = False
    timestamp: str = Field(default_factory=_utc_now)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthCheckResult(BaseModel):
    """Outcome of one probe battery run."""

    score: int = Field(ge=0)
    probe_count: int = Field(ge=0)
    threshold: int = Field(ge=0)
    healthy: bool
    checks: dict[str, bool] = Field(default_factory=dict)
    failed_probes: list[str] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=_utc_now)


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


class ExecutionStats(BaseModel):
    """Session-level execution counters kept alongside the error ledger."""

    total_operations: int = Field(default=0, ge=0)
    successful_operations: int = Field(default=0, ge=0)
    failed_operations: int = Field(default=0, ge=0)
    retries_attempted: int = Field(default=0, ge=0)
    recovered_operations: int = Field(default=0, ge=0)


class ReportSummary(BaseModel):
    """Read-only view derived from an error ledger."""

    total_errors: int = Field(default=0, ge=0)
    count_by_kind: dict[str, int] = Field(default_factory=dict)
    count_by_category: dict[str, int] = Field(default_factory=dict)
    most_common_kind: ErrorKind | None = None
    successful_retries: int = Field(default=0, ge=0)
    stats: ExecutionStats = Field(default_factory=ExecutionStats)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Tagged result of an executor call: a value or a terminal ErrorRecord."""

    value: T | None = None
    error: ErrorRecord | None = None
    attempts: tuple[OperationAttempt, ...] = field(default_factory=tuple)

    @classmethod
    def success(
        cls, value: T, attempts: tuple[OperationAttempt, ...] = ()
    ) -> Outcome[T]:
        return cls(value=value, attempts=attempts)

    @classmethod
    def failure(
        cls, record: ErrorRecord, attempts: tuple[OperationAttempt, ...] = ()
    ) -> Outcome[T]:
        return cls(error=record, attempts=attempts)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def exhausted(self) -> bool:
        """True when a transient failure used up the whole retry budget."""
        return self.error is not None and self.error.kind.retryable

    def unwrap(self) -> T:
        """Return the value or raise ``OperationFailedError``."""
        if self.error is not None:
            raise OperationFailedError(self.error)
        return self.value  # type: ignore[return-value]


@dataclass(frozen=True)
class TransactionResult:
    """Accepted transaction handle and its confirmed receipt."""

    response: Any
    receipt: Any
    submissions: int = 1
    receipt_polls: int = 1

    @property
    def transaction_id(self) -> str | None:
        raw = getattr(self.response, "transaction_id", None)
        return str(raw) if raw is not None else None
