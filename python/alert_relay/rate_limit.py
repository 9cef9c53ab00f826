"""
Process-wide throttle for chat sends.

Every Slack call goes through one SendGate, so the grace period holds
across the drainer and all category dispatchers rather than per task.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from alert_relay.logging import get_logger

logger = get_logger(__name__)


class SendGate:
    """
    Serialises sends and spaces them by a fixed grace period.

    ``slot()`` waits until ``grace_period`` seconds have passed since the
    previous send finished, then holds the gate for the duration of the
    send. The first send goes through immediately.
    """

    def __init__(
        self,
        grace_period: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if grace_period < 0:
            raise ValueError("grace_period must be non-negative")
        self._grace_period = grace_period
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_release: float | None = None
        self._sends = 0

    @property
    def grace_period(self) -> float:
        return self._grace_period

    @property
    def sends(self) -> int:
        """Number of sends that have passed through the gate."""
        return self._sends

    @contextmanager
    def slot(self) -> Iterator[None]:
        with self._lock:
            if self._last_release is not None:
                remaining = self._last_release + self._grace_period - self._clock()
                if remaining > 0:
                    logger.debug("send_gate_waiting", seconds=round(remaining, 3))
                    self._sleep(remaining)
            try:
                yield
            finally:
                self._sends += 1
                self._last_release = self._clock()
