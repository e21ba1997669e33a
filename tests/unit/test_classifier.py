"""Unit tests for ledger_resilience.classifier - failure classification."""

from __future__ import annotations

import asyncio
import re
from enum import IntEnum

import httpx
import pytest

from ledger_resilience.classifier import (
    ErrorClassifier,
    extract_status,
    normalise_status,
    remediation_hint,
)
from ledger_resilience.exceptions import (
    CircuitOpenError,
    OperationCancelledError,
    ReceiptStatusError,
)
from ledger_resilience.models import (
    ErrorCategory,
    ErrorKind,
    FatalReason,
    TransientReason,
)
from tests.fakes import StatusError


class Status(IntEnum):
    SUCCESS = 22
    BUSY = 12


def _http_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://mirror.example/api/v1/accounts/0.0.2")
    response = httpx.Response(code, request=request)
    return httpx.HTTPStatusError(f"HTTP {code}", request=request, response=response)


@pytest.fixture()
def classifier() -> ErrorClassifier:
    return ErrorClassifier()


# ---- Status helpers ---------------------------------------------------------


class TestNormaliseStatus:
    """normalise_status accepts enum members and strings."""

    def test_enum_member_uses_name(self) -> None:
        assert normalise_status(Status.SUCCESS) == "SUCCESS"

    def test_string_is_upper_cased(self) -> None:
        assert normalise_status(" busy ") == "BUSY"

    def test_none_and_empty(self) -> None:
        assert normalise_status(None) is None
        assert normalise_status("") is None

    def test_extract_status_reads_attribute(self) -> None:
        assert extract_status(StatusError("invalid_signature")) == "INVALID_SIGNATURE"
        assert extract_status(RuntimeError("x")) is None


# ---- Structured signals -----------------------------------------------------


class TestStatusRules:
    """Ledger statuses map onto kinds before any message matching."""

    @pytest.mark.parametrize(
        ("status", "reason"),
        [
            ("BUSY", TransientReason.BUSY),
            ("PLATFORM_NOT_ACTIVE", TransientReason.UNAVAILABLE),
            ("RECEIPT_NOT_FOUND", TransientReason.RECEIPT_PENDING),
            ("THROTTLED_AT_CONSENSUS", TransientReason.RATE_LIMITED),
            ("TRANSACTION_EXPIRED", TransientReason.EXPIRED),
        ],
    )
    def test_transient_statuses(
        self, classifier: ErrorClassifier, status: str, reason: str
    ) -> None:
        kind = classifier.classify(StatusError(status))
        assert kind == ErrorKind.transient(reason)
        assert kind.retryable

    @pytest.mark.parametrize(
        ("status", "reason"),
        [
            ("INVALID_SIGNATURE", FatalReason.INVALID_SIGNATURE),
            ("INSUFFICIENT_PAYER_BALANCE", FatalReason.INSUFFICIENT_BALANCE),
            ("INVALID_TRANSACTION_BODY", FatalReason.MALFORMED_REQUEST),
            ("DUPLICATE_TRANSACTION", FatalReason.DUPLICATE),
        ],
    )
    def test_fatal_statuses(
        self, classifier: ErrorClassifier, status: str, reason: str
    ) -> None:
        kind = classifier.classify(StatusError(status))
        assert kind == ErrorKind.fatal(reason)
        assert not kind.retryable

    def test_status_beats_misleading_message(self, classifier: ErrorClassifier) -> None:
        error = StatusError("INVALID_SIGNATURE", "node busy, try later")
        assert classifier.classify(error).category == ErrorCategory.FATAL

    def test_enum_status(self, classifier: ErrorClassifier) -> None:
        error = StatusError(Status.BUSY)  # type: ignore[arg-type]
        assert classifier.classify(error) == ErrorKind.transient(TransientReason.BUSY)

    def test_receipt_status_error(self, classifier: ErrorClassifier) -> None:
        kind = classifier.classify(ReceiptStatusError("INSUFFICIENT_PAYER_BALANCE"))
        assert kind == ErrorKind.fatal(FatalReason.INSUFFICIENT_BALANCE)


class TestExplicitCategory:
    """An error that declares its own category is taken at its word."""

    def test_declared_transient(self, classifier: ErrorClassifier) -> None:
        error = RuntimeError("custom")
        error.category = "transient"  # type: ignore[attr-defined]
        error.reason = "maintenance"  # type: ignore[attr-defined]
        kind = classifier.classify(error)
        assert kind == ErrorKind(category=ErrorCategory.TRANSIENT, reason="maintenance")


class TestHttpStatus:
    """HTTP failures from mirror-node style clients."""

    @pytest.mark.parametrize("code", [408, 429, 500, 502, 503, 504])
    def test_retryable_codes(self, classifier: ErrorClassifier, code: int) -> None:
        assert classifier.is_retryable(_http_error(code))

    def test_rate_limit_reason(self, classifier: ErrorClassifier) -> None:
        kind = classifier.classify(_http_error(429))
        assert kind.reason == TransientReason.RATE_LIMITED

    @pytest.mark.parametrize("code", [401, 403])
    def test_auth_codes_fatal(self, classifier: ErrorClassifier, code: int) -> None:
        assert classifier.classify(_http_error(code)) == ErrorKind.fatal(
            FatalReason.UNAUTHORIZED
        )

    def test_other_client_error_fatal(self, classifier: ErrorClassifier) -> None:
        assert classifier.classify(_http_error(404)) == ErrorKind.fatal(
            FatalReason.MALFORMED_REQUEST
        )

    def test_status_code_attribute(self, classifier: ErrorClassifier) -> None:
        error = RuntimeError("upstream")
        error.status_code = 503  # type: ignore[attr-defined]
        assert classifier.is_retryable(error)

    def test_integer_ledger_status_is_not_http(
        self, classifier: ErrorClassifier
    ) -> None:
        error = RuntimeError("ledger rejected")
        error.status = 503  # type: ignore[attr-defined]
        assert classifier.classify(error) == ErrorKind.fatal(FatalReason.UNRECOGNIZED)


class TestExceptionTypes:
    """Exception types classify without looking at the message."""

    def test_timeout_error(self, classifier: ErrorClassifier) -> None:
        assert classifier.classify(TimeoutError()) == ErrorKind.transient(
            TransientReason.TIMEOUT
        )

    def test_httpx_timeout(self, classifier: ErrorClassifier) -> None:
        error = httpx.ReadTimeout("read timed out")
        assert classifier.classify(error).reason == TransientReason.TIMEOUT

    def test_connection_error(self, classifier: ErrorClassifier) -> None:
        kind = classifier.classify(ConnectionRefusedError("refused"))
        assert kind == ErrorKind.transient(TransientReason.UNREACHABLE)

    def test_httpx_connect_error(self, classifier: ErrorClassifier) -> None:
        kind = classifier.classify(httpx.ConnectError("no route"))
        assert kind == ErrorKind.transient(TransientReason.UNREACHABLE)

    def test_cancellation_is_fatal(self, classifier: ErrorClassifier) -> None:
        assert not classifier.is_retryable(OperationCancelledError("op", 1))
        assert not classifier.is_retryable(asyncio.CancelledError())

    def test_circuit_open(self, classifier: ErrorClassifier) -> None:
        kind = classifier.classify(CircuitOpenError("mint", "open"))
        assert kind == ErrorKind.fatal(FatalReason.CIRCUIT_OPEN)


# ---- Message fallback -------------------------------------------------------


class TestMessagePatterns:
    """Message matching is the last resort and only finds transient kinds."""

    @pytest.mark.parametrize(
        ("message", "reason"),
        [
            ("Node is BUSY", TransientReason.BUSY),
            ("request throttled by node", TransientReason.RATE_LIMITED),
            ("operation timed out", TransientReason.TIMEOUT),
            ("ETIMEDOUT", TransientReason.TIMEOUT),
            ("service temporarily unavailable", TransientReason.UNAVAILABLE),
            ("socket hang up", TransientReason.UNREACHABLE),
            ("ECONNRESET while reading", TransientReason.UNREACHABLE),
        ],
    )
    def test_transient_messages(
        self, classifier: ErrorClassifier, message: str, reason: str
    ) -> None:
        assert classifier.classify(RuntimeError(message)) == ErrorKind.transient(
            reason
        )

    def test_unrecognised_is_fatal(self, classifier: ErrorClassifier) -> None:
        kind = classifier.classify(ValueError("something odd happened"))
        assert kind == ErrorKind.fatal(FatalReason.UNRECOGNIZED)

    def test_custom_patterns_replace_defaults(self) -> None:
        classifier = ErrorClassifier(
            message_patterns=[
                (re.compile("glitch"), ErrorKind.transient(TransientReason.BUSY))
            ]
        )
        assert classifier.is_retryable(RuntimeError("glitch"))
        assert not classifier.is_retryable(RuntimeError("node busy"))


# ---- Acceptance evidence ----------------------------------------------------


class TestConfirmsNotAccepted:
    """Only specific statuses prove a submission never reached the network."""

    def test_expired_confirms(self, classifier: ErrorClassifier) -> None:
        assert classifier.confirms_not_accepted(StatusError("TRANSACTION_EXPIRED"))

    def test_receipt_pending_does_not_confirm(
        self, classifier: ErrorClassifier
    ) -> None:
        assert not classifier.confirms_not_accepted(StatusError("RECEIPT_NOT_FOUND"))

    def test_timeout_does_not_confirm(self, classifier: ErrorClassifier) -> None:
        assert not classifier.confirms_not_accepted(TimeoutError())


class TestRemediationHint:
    """Operator hints exist for fatal kinds only."""

    def test_fatal_kind_has_hint(self) -> None:
        hint = remediation_hint(ErrorKind.fatal(FatalReason.INSUFFICIENT_BALANCE))
        assert hint is not None
        assert "Fund" in hint

    def test_transient_kind_has_none(self) -> None:
        assert remediation_hint(ErrorKind.transient(TransientReason.BUSY)) is None
