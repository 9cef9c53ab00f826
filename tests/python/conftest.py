"""Pytest configuration and shared fixtures for the alert relay tests."""

from __future__ import annotations

import json
from typing import Any

import pytest

from alert_relay.exceptions import DeliveryRejected, TransportError
from alert_relay.notifier import Notifier
from alert_relay.rate_limit import SendGate
from alert_relay.store import InMemoryStore

UNSENT_INDEX = "unsent-slacks"
CHANNEL = "#alerts-and-notifications"


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")


class FakeClock:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedNotifier(Notifier):
    """
    Notifier whose attempts follow a script.

    Each script entry is "ok", "reject" or "transport"; once the script
    runs out every attempt succeeds. Sent texts are recorded together
    with the clock reading at send time.
    """

    def __init__(
        self,
        script: list[str] | None = None,
        gate: SendGate | None = None,
        clock: FakeClock | None = None,
        max_retries: int = 1,
    ) -> None:
        self.clock = clock or FakeClock()
        super().__init__(
            name="scripted",
            gate=gate or SendGate(0.0, clock=self.clock, sleep=self.clock.sleep),
            max_retries=max_retries,
            sleep=self.clock.sleep,
        )
        self.script = list(script or [])
        self.calls: list[tuple[str, str, float]] = []

    def _post(self, channel: str, text: str) -> dict[str, Any]:
        self.calls.append((channel, text, self.clock()))
        outcome = self.script.pop(0) if self.script else "ok"
        if outcome == "reject":
            raise DeliveryRejected.from_reason(channel, "channel_not_found")
        if outcome == "transport":
            raise TransportError.from_reason(channel, "connection reset")
        return {"ok": True}

    @property
    def texts(self) -> list[str]:
        return [text for _, text, _ in self.calls]


def alert_record(*documents: dict[str, Any]) -> dict[str, Any]:
    """Record document as written by a watcher, embedding ``documents``."""
    return {"alertContexts": json.dumps([{"_source": doc} for doc in documents])}


@pytest.fixture
def store() -> InMemoryStore:
    """Empty in-memory store."""
    return InMemoryStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def disk_document() -> dict[str, Any]:
    """A disk-space sub-alert document."""
    return {
        "host": {"name": "web-01"},
        "system": {"filesystem": {"mount_point": "/var", "used": {"pct": 0.92}}},
    }


@pytest.fixture
def systemd_document() -> dict[str, Any]:
    """A systemd sub-alert document."""
    return {
        "host": {"name": "web-02"},
        "system": {"service": {"name": "nginx", "state": "failed"}},
    }
