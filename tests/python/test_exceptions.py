"""
Tests for the alert relay exception hierarchy.

Verifies:
- Error code assignment and ranges
- Factory method behavior
- Retryability defaults
- Serialization to dict for logging
"""

import pytest

from alert_relay.exceptions import (
    ConfigurationError,
    DeliveryError,
    DeliveryRejected,
    ErrorCode,
    MalformedAlert,
    RateLimited,
    RecordNotFound,
    RelayError,
    StoreError,
    StoreUnavailable,
    TransportError,
)


class TestErrorCode:
    """Tests for ErrorCode enum."""

    def test_error_codes_are_strings(self) -> None:
        assert isinstance(ErrorCode.CONFIG_INVALID.value, str)
        assert ErrorCode.CONFIG_INVALID.value == "RELAY_1001"

    def test_error_code_ranges(self) -> None:
        assert ErrorCode.CONFIG_MISSING_TOKEN.value.startswith("RELAY_1")
        assert ErrorCode.STORE_UNAVAILABLE.value.startswith("RELAY_2")
        assert ErrorCode.STORE_NOT_FOUND.value.startswith("RELAY_2")
        assert ErrorCode.DELIVERY_TRANSPORT.value.startswith("RELAY_3")
        assert ErrorCode.DELIVERY_REJECTED.value.startswith("RELAY_3")
        assert ErrorCode.ALERT_UNDECODABLE.value.startswith("RELAY_4")


class TestRelayError:
    """Tests for the base exception."""

    def test_message_and_defaults(self) -> None:
        error = RelayError(message="Something failed")

        assert error.message == "Something failed"
        assert error.error_code == ErrorCode.UNKNOWN
        assert error.context == {}
        assert error.is_retryable is False

    def test_str_includes_code_and_context(self) -> None:
        error = RelayError(message="failed", context={"index": "alerts-systemd"})

        assert str(error) == "[RELAY_9999] failed (index=alerts-systemd)"

    def test_can_be_raised(self) -> None:
        with pytest.raises(RelayError, match="boom"):
            raise RelayError(message="boom")

    def test_to_dict(self) -> None:
        cause = ValueError("root")
        error = RelayError(message="failed", cause=cause)

        data = error.to_dict()

        assert data["error_type"] == "RelayError"
        assert data["error_code"] == "RELAY_9999"
        assert data["cause"] == "root"


class TestHierarchy:
    """Tests for subclass relationships."""

    def test_store_errors(self) -> None:
        assert issubclass(StoreUnavailable, StoreError)
        assert issubclass(RecordNotFound, StoreError)
        assert issubclass(StoreError, RelayError)

    def test_delivery_errors(self) -> None:
        assert issubclass(TransportError, DeliveryError)
        assert issubclass(DeliveryRejected, DeliveryError)
        assert issubclass(RateLimited, TransportError)

    def test_malformed_alert(self) -> None:
        assert issubclass(MalformedAlert, RelayError)


class TestFactories:
    """Tests for classmethod constructors."""

    def test_missing_token(self) -> None:
        error = ConfigurationError.missing_token()
        assert error.error_code == ErrorCode.CONFIG_MISSING_TOKEN

    def test_validation_failed(self) -> None:
        error = ConfigurationError.validation_failed("slack.timeout", -1, "must be positive")

        assert error.error_code == ErrorCode.CONFIG_VALIDATION
        assert error.context["field"] == "slack.timeout"

    def test_store_connection_failed(self) -> None:
        cause = OSError("refused")
        error = StoreUnavailable.connection_failed("http://es:9200", "refused", cause=cause)

        assert error.is_retryable is True
        assert error.cause is cause
        assert "http://es:9200" in error.message

    def test_store_http_error(self) -> None:
        error = StoreUnavailable.http_error("delete", 503, "Service Unavailable")

        assert error.error_code == ErrorCode.STORE_HTTP_ERROR
        assert error.context["status_code"] == 503

    def test_record_not_found(self) -> None:
        error = RecordNotFound.for_record("unsent-slacks", "u1")

        assert error.error_code == ErrorCode.STORE_NOT_FOUND
        assert error.context == {"collection": "unsent-slacks", "record_id": "u1"}

    def test_rejected_not_retryable(self) -> None:
        error = DeliveryRejected.from_reason("#alerts", "channel_not_found")

        assert error.is_retryable is False
        assert error.context["reason"] == "channel_not_found"

    def test_transport_retryable(self) -> None:
        assert TransportError.from_reason("#alerts", "timeout").is_retryable is True

    def test_rate_limited(self) -> None:
        error = RateLimited.with_retry_after("#alerts", 30.0)

        assert error.retry_after == 30.0
        assert error.error_code == ErrorCode.DELIVERY_RATE_LIMITED

    def test_malformed_missing_field(self) -> None:
        error = MalformedAlert.missing_field("system.service.state")
        assert "system.service.state" in str(error)

    def test_malformed_undecodable(self) -> None:
        error = MalformedAlert.undecodable("r1", "bad json")

        assert error.error_code == ErrorCode.ALERT_UNDECODABLE
        assert error.context["record_id"] == "r1"
