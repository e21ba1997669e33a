"""Failure classification into retryable and fatal kinds.

Structured signals (an explicit category, a ledger status code, an HTTP
status, the exception type) are consulted before the message. Message
patterns only recognise transient failures, and anything unrecognised
is fatal so it is never retried.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Iterable, Mapping

import httpx

from ledger_resilience.exceptions import CircuitOpenError, OperationCancelledError
from ledger_resilience.models import (
    ErrorCategory,
    ErrorKind,
    FatalReason,
    TransientReason,
)

# ---------------------------------------------------------------------------
# Default rule tables
# ---------------------------------------------------------------------------

DEFAULT_STATUS_RULES: dict[str, ErrorKind] = {
    # Retry-eligible network statuses
    "BUSY": ErrorKind.transient(TransientReason.BUSY),
    "PLATFORM_NOT_ACTIVE": ErrorKind.transient(TransientReason.UNAVAILABLE),
    "PLATFORM_TRANSACTION_NOT_CREATED": ErrorKind.transient(
        TransientReason.UNAVAILABLE
    ),
    "INVALID_NODE_ACCOUNT": ErrorKind.transient(TransientReason.UNREACHABLE),
    "TRANSACTION_EXPIRED": ErrorKind.transient(TransientReason.EXPIRED),
    "RECEIPT_NOT_FOUND": ErrorKind.transient(TransientReason.RECEIPT_PENDING),
    "RECORD_NOT_FOUND": ErrorKind.transient(TransientReason.RECEIPT_PENDING),
    "UNKNOWN": ErrorKind.transient(TransientReason.RECEIPT_PENDING),
    "THROTTLED_AT_CONSENSUS": ErrorKind.transient(TransientReason.RATE_LIMITED),
    "RATE_LIMITED": ErrorKind.transient(TransientReason.RATE_LIMITED),
    "TIMEOUT": ErrorKind.transient(TransientReason.TIMEOUT),
    # Never retried
    "INVALID_SIGNATURE": ErrorKind.fatal(FatalReason.INVALID_SIGNATURE),
    "INSUFFICIENT_PAYER_BALANCE": ErrorKind.fatal(FatalReason.INSUFFICIENT_BALANCE),
    "INSUFFICIENT_ACCOUNT_BALANCE": ErrorKind.fatal(
        FatalReason.INSUFFICIENT_BALANCE
    ),
    "INSUFFICIENT_TOKEN_BALANCE": ErrorKind.fatal(FatalReason.INSUFFICIENT_BALANCE),
    "INSUFFICIENT_TX_FEE": ErrorKind.fatal(FatalReason.INSUFFICIENT_BALANCE),
    "INVALID_ACCOUNT_ID": ErrorKind.fatal(FatalReason.INVALID_ACCOUNT),
    "ACCOUNT_DELETED": ErrorKind.fatal(FatalReason.INVALID_ACCOUNT),
    "INVALID_TOKEN_ID": ErrorKind.fatal(FatalReason.MALFORMED_REQUEST),
    "INVALID_TRANSACTION": ErrorKind.fatal(FatalReason.MALFORMED_REQUEST),
    "INVALID_TRANSACTION_BODY": ErrorKind.fatal(FatalReason.MALFORMED_REQUEST),
    "TRANSACTION_OVERSIZE": ErrorKind.fatal(FatalReason.MALFORMED_REQUEST),
    "DUPLICATE_TRANSACTION": ErrorKind.fatal(FatalReason.DUPLICATE),
    "AUTHORIZATION_FAILED": ErrorKind.fatal(FatalReason.UNAUTHORIZED),
    "TOKEN_HAS_NO_SUPPLY_KEY": ErrorKind.fatal(FatalReason.UNAUTHORIZED),
}

# Statuses proving the network never accepted the submitted transaction.
DEFAULT_NOT_ACCEPTED_STATUSES: frozenset[str] = frozenset(
    {
        "PLATFORM_TRANSACTION_NOT_CREATED",
        "TRANSACTION_EXPIRED",
        "INVALID_NODE_ACCOUNT",
    }
)

DEFAULT_TRANSIENT_HTTP_STATUSES: dict[int, ErrorKind] = {
    408: ErrorKind.transient(TransientReason.TIMEOUT),
    425: ErrorKind.transient(TransientReason.UNAVAILABLE),
    429: ErrorKind.transient(TransientReason.RATE_LIMITED),
    500: ErrorKind.transient(TransientReason.UNAVAILABLE),
    502: ErrorKind.transient(TransientReason.UNREACHABLE),
    503: ErrorKind.transient(TransientReason.UNAVAILABLE),
    504: ErrorKind.transient(TransientReason.TIMEOUT),
}

DEFAULT_MESSAGE_PATTERNS: tuple[tuple[re.Pattern[str], ErrorKind], ...] = (
    (
        re.compile(r"\b(busy|overloaded)\b", re.IGNORECASE),
        ErrorKind.transient(TransientReason.BUSY),
    ),
    (
        re.compile(r"throttl|rate[ _-]?limit|too many requests", re.IGNORECASE),
        ErrorKind.transient(TransientReason.RATE_LIMITED),
    ),
    (
        re.compile(r"time[ _-]?d? ?out|ETIMEDOUT|deadline exceeded", re.IGNORECASE),
        ErrorKind.transient(TransientReason.TIMEOUT),
    ),
    (
        re.compile(
            r"temporar(il)?y unavailable|service unavailable|not active",
            re.IGNORECASE,
        ),
        ErrorKind.transient(TransientReason.UNAVAILABLE),
    ),
    (
        re.compile(
            r"connection (refused|reset)|socket hang up|ECONNRESET|ECONNREFUSED"
            r"|ENOTFOUND|(node|host) unreachable|network error",
            re.IGNORECASE,
        ),
        ErrorKind.transient(TransientReason.UNREACHABLE),
    ),
)

_CATEGORY_VALUES = frozenset(c.value for c in ErrorCategory)

# Operator-facing suggestions for fatal kinds.
REMEDIATION_HINTS: dict[str, str] = {
    FatalReason.INVALID_SIGNATURE: (
        "Check the private key format and that it matches the operator account."
    ),
    FatalReason.INSUFFICIENT_BALANCE: (
        "Fund the payer account before retrying the session."
    ),
    FatalReason.INVALID_ACCOUNT: (
        "Verify the account ID format (shard.realm.num) in the environment."
    ),
    FatalReason.MALFORMED_REQUEST: (
        "Inspect the transaction builder; the request was rejected as invalid."
    ),
    FatalReason.DUPLICATE: (
        "The transaction was already processed; look up its receipt instead."
    ),
    FatalReason.UNAUTHORIZED: (
        "The signing key lacks the required permission for this operation."
    ),
    FatalReason.CIRCUIT_OPEN: (
        "Too many recent failures; wait for the circuit breaker to reset."
    ),
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalise_status(raw: object) -> str | None:
    """Normalise a ledger status to its upper-case name.

    Accepts SDK enum members (uses ``.name``) as well as plain strings.
    """
    if raw is None:
        return None
    name = getattr(raw, "name", None)
    text = name if isinstance(name, str) else str(raw)
    return text.strip().upper() or None


def extract_status(error: BaseException) -> str | None:
    """Return the ledger status attached to an error, if any."""
    return normalise_status(getattr(error, "status", None))


def _extract_http_status(error: BaseException) -> int | None:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    # ``status`` belongs to the ledger; only ``status_code`` is HTTP.
    code = getattr(error, "status_code", None)
    if isinstance(code, int) and 100 <= code < 600:
        return code
    return None


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


class ErrorClassifier:
    """Maps a raw failure onto an ``ErrorKind``.

    Rule tables are constructor arguments so callers can extend or swap
    them per network. ``classify`` has no side effects.
    """

    def __init__(
        self,
        status_rules: Mapping[str, ErrorKind] | None = None,
        http_rules: Mapping[int, ErrorKind] | None = None,
        message_patterns: Iterable[tuple[re.Pattern[str], ErrorKind]] | None = None,
        not_accepted_statuses: Iterable[str] | None = None,
    ) -> None:
        self._status_rules = dict(
            DEFAULT_STATUS_RULES if status_rules is None else status_rules
        )
        self._http_rules = dict(
            DEFAULT_TRANSIENT_HTTP_STATUSES if http_rules is None else http_rules
        )
        self._message_patterns = tuple(
            DEFAULT_MESSAGE_PATTERNS if message_patterns is None else message_patterns
        )
        self._not_accepted = frozenset(
            DEFAULT_NOT_ACCEPTED_STATUSES
            if not_accepted_statuses is None
            else not_accepted_statuses
        )

    def classify(self, error: BaseException) -> ErrorKind:
        """Classify ``error``.

        Priority: explicit category, ledger status, HTTP status,
        exception type, message patterns, then ``Fatal(unrecognized)``.
        """
        kind = self._from_structured(error)
        if kind is not None:
            return kind

        message = str(error)
        for pattern, pattern_kind in self._message_patterns:
            if pattern.search(message):
                return pattern_kind

        return ErrorKind.fatal(FatalReason.UNRECOGNIZED)

    def is_retryable(self, error: BaseException) -> bool:
        return self.classify(error).retryable

    def confirms_not_accepted(self, error: BaseException) -> bool:
        """True when ``error`` proves a submission never reached the network."""
        return extract_status(error) in self._not_accepted

    def _from_structured(self, error: BaseException) -> ErrorKind | None:
        if isinstance(error, OperationCancelledError | asyncio.CancelledError):
            return ErrorKind.fatal(FatalReason.REJECTED)
        if isinstance(error, CircuitOpenError):
            return ErrorKind.fatal(FatalReason.CIRCUIT_OPEN)

        category = getattr(error, "category", None)
        if isinstance(category, str) and category.lower() in _CATEGORY_VALUES:
            reason = getattr(error, "reason", None) or extract_status(error)
            return ErrorKind(
                category=ErrorCategory(category.lower()),
                reason=str(reason or "reported").lower(),
            )

        status = extract_status(error)
        if status is not None and status in self._status_rules:
            return self._status_rules[status]

        http_status = _extract_http_status(error)
        if http_status is not None:
            if http_status in self._http_rules:
                return self._http_rules[http_status]
            if 400 <= http_status < 500:
                if http_status in (401, 403):
                    return ErrorKind.fatal(FatalReason.UNAUTHORIZED)
                return ErrorKind.fatal(FatalReason.MALFORMED_REQUEST)

        if isinstance(error, TimeoutError | httpx.TimeoutException):
            return ErrorKind.transient(TransientReason.TIMEOUT)
        if isinstance(error, ConnectionError | httpx.TransportError):
            return ErrorKind.transient(TransientReason.UNREACHABLE)

        return None


def remediation_hint(kind: ErrorKind) -> str | None:
    """Return an operator suggestion for a fatal kind, if one is known."""
    if kind.retryable:
        return None
    return REMEDIATION_HINTS.get(kind.reason)
