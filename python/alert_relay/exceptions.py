"""
Custom exception hierarchy for the alert relay.

Follows a clear exception hierarchy:
- RelayError: Base exception for all relay-specific errors
- ConfigurationError: Configuration and validation issues
- StoreError: Backing index store failures (unavailable, not found)
- DeliveryError: Chat delivery failures (transport, rejected)
- MalformedAlert: Alert documents that cannot be decoded or formatted

Each exception includes:
- error_code: Machine-readable error identifier
- context: Additional structured data for debugging
- is_retryable: Whether the operation can be retried
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable error codes for categorization and monitoring."""

    # Configuration errors (1xxx)
    CONFIG_INVALID = "RELAY_1001"
    CONFIG_MISSING = "RELAY_1002"
    CONFIG_VALIDATION = "RELAY_1003"
    CONFIG_MISSING_TOKEN = "RELAY_1004"

    # Store errors (2xxx)
    STORE_UNAVAILABLE = "RELAY_2001"
    STORE_HTTP_ERROR = "RELAY_2002"
    STORE_NOT_FOUND = "RELAY_2003"

    # Delivery errors (3xxx)
    DELIVERY_TRANSPORT = "RELAY_3001"
    DELIVERY_REJECTED = "RELAY_3002"
    DELIVERY_RATE_LIMITED = "RELAY_3003"

    # Alert document errors (4xxx)
    ALERT_MISSING_FIELD = "RELAY_4001"
    ALERT_UNDECODABLE = "RELAY_4002"

    # General errors (9xxx)
    UNKNOWN = "RELAY_9999"


@dataclass
class RelayError(Exception):
    """
    Base exception for all alert relay errors.

    Provides structured error information for logging and monitoring.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable error identifier
        context: Additional structured data for debugging
        is_retryable: Whether the operation can be safely retried
        cause: Original exception that caused this error
    """

    message: str
    error_code: ErrorCode = ErrorCode.UNKNOWN
    context: dict[str, Any] = field(default_factory=dict)
    is_retryable: bool = False
    cause: Exception | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [f"[{self.error_code.value}] {self.message}"]
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f" ({context_str})")
        return "".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"context={self.context!r}, "
            f"is_retryable={self.is_retryable})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code.value,
            "message": self.message,
            "context": self.context,
            "is_retryable": self.is_retryable,
            "cause": str(self.cause) if self.cause else None,
        }


@dataclass
class ConfigurationError(RelayError):
    """Raised when configuration is invalid or missing."""

    error_code: ErrorCode = ErrorCode.CONFIG_INVALID

    @classmethod
    def missing_file(cls, path: str) -> ConfigurationError:
        """Create error for missing configuration file."""
        return cls(
            message=f"Configuration file not found: {path}",
            error_code=ErrorCode.CONFIG_MISSING,
            context={"path": path},
        )

    @classmethod
    def missing_token(cls) -> ConfigurationError:
        """Create error for an absent Slack token."""
        return cls(
            message="Slack token is not configured",
            error_code=ErrorCode.CONFIG_MISSING_TOKEN,
            context={"setting": "slack.token"},
        )

    @classmethod
    def validation_failed(cls, field: str, value: Any, reason: str) -> ConfigurationError:
        """Create error for validation failure."""
        return cls(
            message=f"Configuration validation failed for '{field}': {reason}",
            error_code=ErrorCode.CONFIG_VALIDATION,
            context={"field": field, "value": str(value), "reason": reason},
        )


@dataclass
class StoreError(RelayError):
    """Base class for backing store failures."""

    error_code: ErrorCode = ErrorCode.STORE_UNAVAILABLE


@dataclass
class StoreUnavailable(StoreError):
    """Raised when the backing store cannot serve a request."""

    error_code: ErrorCode = ErrorCode.STORE_UNAVAILABLE
    is_retryable: bool = True

    @classmethod
    def connection_failed(
        cls, address: str, reason: str, cause: Exception | None = None
    ) -> StoreUnavailable:
        """Create error for connection failure."""
        return cls(
            message=f"Failed to reach store at {address}: {reason}",
            error_code=ErrorCode.STORE_UNAVAILABLE,
            context={"address": address, "reason": reason},
            cause=cause,
        )

    @classmethod
    def http_error(
        cls, operation: str, status_code: int, reason: str, cause: Exception | None = None
    ) -> StoreUnavailable:
        """Create error for a non-successful store response."""
        return cls(
            message=f"Store {operation} failed with HTTP {status_code}: {reason}",
            error_code=ErrorCode.STORE_HTTP_ERROR,
            context={"operation": operation, "status_code": status_code, "reason": reason},
            cause=cause,
        )


@dataclass
class RecordNotFound(StoreError):
    """Raised when a record is already gone from its collection."""

    error_code: ErrorCode = ErrorCode.STORE_NOT_FOUND

    @classmethod
    def for_record(cls, collection: str, record_id: str) -> RecordNotFound:
        """Create error for a missing record."""
        return cls(
            message=f"Record {record_id} not found in {collection}",
            context={"collection": collection, "record_id": record_id},
        )


@dataclass
class DeliveryError(RelayError):
    """Raised when a chat message could not be delivered."""

    error_code: ErrorCode = ErrorCode.DELIVERY_TRANSPORT
    is_retryable: bool = True


@dataclass
class TransportError(DeliveryError):
    """Network, timeout or HTTP-level delivery failure."""

    error_code: ErrorCode = ErrorCode.DELIVERY_TRANSPORT

    @classmethod
    def from_reason(cls, channel: str, reason: str) -> TransportError:
        """Create error for a transport failure."""
        return cls(
            message=f"Failed to deliver to {channel}: {reason}",
            context={"channel": channel, "reason": reason},
        )


@dataclass
class DeliveryRejected(DeliveryError):
    """The chat endpoint answered but did not acknowledge the message."""

    error_code: ErrorCode = ErrorCode.DELIVERY_REJECTED
    is_retryable: bool = False

    @classmethod
    def from_reason(cls, channel: str, reason: str) -> DeliveryRejected:
        """Create error for a non-OK acknowledgment."""
        return cls(
            message=f"Non-OK response delivering to {channel}: {reason}",
            context={"channel": channel, "reason": reason},
        )


@dataclass
class MalformedAlert(RelayError):
    """Raised when an alert document is missing data it must carry."""

    error_code: ErrorCode = ErrorCode.ALERT_MISSING_FIELD

    @classmethod
    def missing_field(cls, path: str) -> MalformedAlert:
        """Create error for a required field that is absent."""
        return cls(
            message=f"Alert is missing required field '{path}'",
            error_code=ErrorCode.ALERT_MISSING_FIELD,
            context={"field": path},
        )

    @classmethod
    def invalid_field(cls, path: str, value: Any) -> MalformedAlert:
        """Create error for a field whose value has the wrong type."""
        return cls(
            message=f"Alert field '{path}' has an invalid value",
            error_code=ErrorCode.ALERT_MISSING_FIELD,
            context={"field": path, "value": repr(value)[:100]},
        )

    @classmethod
    def undecodable(
        cls, record_id: str, reason: str, cause: Exception | None = None
    ) -> MalformedAlert:
        """Create error for an embedded sub-alert list that cannot be decoded."""
        return cls(
            message=f"Cannot decode sub-alerts of record {record_id}: {reason}",
            error_code=ErrorCode.ALERT_UNDECODABLE,
            context={"record_id": record_id, "reason": reason},
            cause=cause,
        )


@dataclass
class RateLimited(TransportError):
    """The chat endpoint asked the client to slow down."""

    error_code: ErrorCode = ErrorCode.DELIVERY_RATE_LIMITED
    retry_after: float = 1.0

    @classmethod
    def with_retry_after(cls, channel: str, retry_after: float) -> RateLimited:
        """Create error for an HTTP 429 answer."""
        return cls(
            message=f"Rate limited delivering to {channel}",
            context={"channel": channel, "retry_after": retry_after},
            retry_after=retry_after,
        )
