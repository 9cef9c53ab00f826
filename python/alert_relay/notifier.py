"""
Chat delivery for formatted alerts.

Notifier holds the common delivery workflow (gate, retries, stats);
SlackNotifier posts to the Slack Web API ``chat.postMessage`` method.
Callers get a DeliveryResult back instead of an exception and must treat
REJECTED and TRANSPORT_ERROR alike as "not delivered".
"""

from __future__ import annotations

import json
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from http.client import HTTPException
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from alert_relay.config import SlackConfig
from alert_relay.exceptions import (
    DeliveryError,
    DeliveryRejected,
    RateLimited,
    TransportError,
)
from alert_relay.logging import get_logger
from alert_relay.rate_limit import SendGate

logger = get_logger(__name__)

ALERT_BANNER = ":anger: " * 4
UNSENT_BANNER = ":hourglass_flowing_sand: " * 4
UNSENT_NOTICE = "<< This message failed to send in a timely manner >>"


def compose_alert_text(subject: str, host: str, message: str) -> str:
    """Chat text for a freshly observed alert."""
    return f"{ALERT_BANNER}\n*{subject}*\n{host}\n\n{message}"


def compose_unsent_text(subject: str, host: str, message: str) -> str:
    """Chat text for a message redelivered from the unsent queue."""
    return f"{UNSENT_BANNER}\n*{subject}*\n{host}\n\n{UNSENT_NOTICE}\n\n{message}"


class DeliveryStatus(str, Enum):
    """Outcome of a delivery attempt."""

    DELIVERED = "delivered"
    REJECTED = "rejected"
    TRANSPORT_ERROR = "transport_error"


@dataclass
class DeliveryResult:
    """
    Result of sending one message.

    Attributes:
        channel: Channel the message was addressed to.
        status: Final delivery status.
        attempts: Number of HTTP attempts made.
        error: Error message if not delivered.
        response_data: Decoded response from the endpoint.
    """

    channel: str
    status: DeliveryStatus
    attempts: int = 1
    error: str | None = None
    response_data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.status == DeliveryStatus.DELIVERED

    def raise_for_status(self) -> None:
        """
        Raise if the message was not delivered.

        Raises:
            DeliveryRejected: If the endpoint answered with a non-OK result.
            TransportError: If the endpoint could not be reached.
        """
        if self.status == DeliveryStatus.REJECTED:
            raise DeliveryRejected.from_reason(self.channel, self.error or "rejected")
        if self.status == DeliveryStatus.TRANSPORT_ERROR:
            raise TransportError.from_reason(self.channel, self.error or "transport error")


class Notifier(ABC):
    """
    Base class for chat notifiers.

    Every attempt goes through the shared SendGate. Transport failures are
    retried with exponential backoff (or the server's Retry-After on rate
    limiting) up to ``max_retries`` attempts; rejections are final.
    """

    def __init__(
        self,
        name: str,
        gate: SendGate | None = None,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._name = name
        self._gate = gate or SendGate(0.0)
        self._max_retries = max(1, max_retries)
        self._retry_delay = retry_delay_seconds
        self._sleep = sleep
        self._logger = logger.bind(notifier=name)
        self._sent_count = 0
        self._failed_count = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def gate(self) -> SendGate:
        return self._gate

    @property
    def stats(self) -> dict[str, int]:
        """Get delivery statistics."""
        return {
            "sent": self._sent_count,
            "failed": self._failed_count,
        }

    def send(self, channel: str, text: str) -> DeliveryResult:
        """
        Deliver ``text`` to ``channel``.

        Returns:
            Result of the delivery; never raises for delivery failures.
        """
        attempts = 0
        last_error: str | None = None

        while attempts < self._max_retries:
            attempts += 1
            try:
                with self._gate.slot():
                    response_data = self._post(channel, text)
            except DeliveryRejected as e:
                self._failed_count += 1
                reason = e.context.get("reason", e.message)
                self._logger.error(
                    "message_rejected",
                    channel=channel,
                    attempt=attempts,
                    reason=reason,
                )
                return DeliveryResult(
                    channel=channel,
                    status=DeliveryStatus.REJECTED,
                    attempts=attempts,
                    error=reason,
                )
            except DeliveryError as e:
                last_error = e.message
                self._logger.warning(
                    "message_send_failed",
                    channel=channel,
                    attempt=attempts,
                    error=last_error,
                )
                if attempts < self._max_retries:
                    if isinstance(e, RateLimited):
                        delay = e.retry_after
                    else:
                        delay = self._retry_delay * (2 ** (attempts - 1))
                    self._sleep(delay)
                continue

            self._sent_count += 1
            self._logger.info(
                "message_sent",
                channel=channel,
                chars=len(text),
                attempts=attempts,
            )
            return DeliveryResult(
                channel=channel,
                status=DeliveryStatus.DELIVERED,
                attempts=attempts,
                response_data=response_data,
            )

        self._failed_count += 1
        self._logger.error(
            "message_delivery_exhausted",
            channel=channel,
            attempts=attempts,
            error=last_error,
        )
        return DeliveryResult(
            channel=channel,
            status=DeliveryStatus.TRANSPORT_ERROR,
            attempts=attempts,
            error=last_error,
        )

    @abstractmethod
    def _post(self, channel: str, text: str) -> dict[str, Any]:
        """
        Perform one delivery attempt.

        Returns:
            Response data from the endpoint.

        Raises:
            DeliveryRejected: The endpoint answered without acknowledging.
            TransportError: The endpoint could not be reached.
        """


class SlackNotifier(Notifier):
    """Posts messages with the Slack Web API using a bot token."""

    def __init__(
        self,
        config: SlackConfig,
        gate: SendGate | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(
            name="slack",
            gate=gate,
            max_retries=config.max_retries,
            retry_delay_seconds=config.retry_delay_seconds,
            sleep=sleep,
        )
        self._config = config
        self._url = f"{config.api_url.rstrip('/')}/chat.postMessage"

    def _post(self, channel: str, text: str) -> dict[str, Any]:
        data = json.dumps({"channel": channel, "text": text}).encode("utf-8")
        request = Request(
            self._url,
            data=data,
            headers={
                "Content-Type": "application/json; charset=utf-8",
                "Authorization": f"Bearer {self._config.token}",
            },
            method="POST",
        )

        try:
            with urlopen(request, timeout=self._config.timeout) as response:
                raw = response.read()
        except HTTPError as e:
            if e.code == 429:
                retry_after = _parse_retry_after(e.headers.get("Retry-After") if e.headers else None)
                raise RateLimited.with_retry_after(channel, retry_after) from e
            self._logger.error(
                "slack_http_error",
                status_code=e.code,
                reason=e.reason,
            )
            raise TransportError.from_reason(channel, f"HTTP {e.code}: {e.reason}") from e
        except (URLError, HTTPException, OSError) as e:
            # OSError covers socket timeouts, resets and ssl failures mid-read.
            reason = str(getattr(e, "reason", None) or e) or type(e).__name__
            self._logger.error(
                "slack_connection_error",
                reason=reason,
                error_type=type(e).__name__,
            )
            raise TransportError.from_reason(channel, reason) from e

        try:
            payload = json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise TransportError.from_reason(channel, "invalid JSON response") from e

        if not isinstance(payload, dict):
            raise TransportError.from_reason(
                channel, f"unexpected {type(payload).__name__} response"
            )

        if not payload.get("ok"):
            raise DeliveryRejected.from_reason(channel, str(payload.get("error", "not ok")))

        return payload

    def validate_config(self) -> dict[str, str]:
        """Check the Slack settings, mapping each bad field to the reason."""
        problems: dict[str, str] = {}
        if not self._config.channel:
            problems["channel"] = "a target channel is required"
        if not self._config.api_url.startswith("https://"):
            problems["api_url"] = "the Slack API must be reached over HTTPS"
        if self._config.timeout <= 0:
            problems["timeout"] = "must be positive"
        return problems


def _parse_retry_after(value: str | None, default: float = 1.0) -> float:
    if value is None:
        return default
    try:
        return max(0.0, float(value))
    except ValueError:
        return default
