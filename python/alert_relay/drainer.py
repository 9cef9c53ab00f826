"""
Redelivery of messages stuck in the unsent queue.

Runs once at start-up, one entry at a time. A delivered entry is removed
from the queue; the first failed delivery stops the drain and is raised
to the caller, leaving that entry (and everything after it) in place.
"""

from __future__ import annotations

from dataclasses import dataclass

from alert_relay.exceptions import RecordNotFound
from alert_relay.logging import get_logger
from alert_relay.notifier import Notifier, compose_unsent_text
from alert_relay.store import AlertStore

logger = get_logger(__name__)


@dataclass
class DrainReport:
    """Outcome of a drain pass."""

    found: int = 0
    delivered: int = 0
    already_removed: int = 0


class UnsentQueueDrainer:
    """Re-attempts delivery of every message in the unsent queue."""

    def __init__(
        self,
        store: AlertStore,
        notifier: Notifier,
        unsent_index: str,
        channel: str,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._unsent_index = unsent_index
        self._channel = channel
        self._logger = logger.bind(component="drainer", index=unsent_index)

    def drain(self) -> DrainReport:
        """
        Drain the unsent queue.

        Raises:
            DeliveryError: If a message could not be redelivered.
            StoreUnavailable: If the store fails.
        """
        report = DrainReport()
        messages = self._store.fetch_unsent(self._unsent_index)
        report.found = len(messages)

        for unsent in messages:
            log = self._logger.bind(message_id=unsent.id, subject=unsent.subject)
            log.info("unsent_message_found")

            text = compose_unsent_text(unsent.subject, unsent.host, unsent.message)
            result = self._notifier.send(self._channel, text)

            if not result.is_success:
                log.error(
                    "unsent_message_redelivery_failed",
                    status=result.status.value,
                    error=result.error,
                    remaining=report.found - report.delivered,
                )
                result.raise_for_status()

            report.delivered += 1
            try:
                self._store.remove(self._unsent_index, unsent.id or "")
            except RecordNotFound:
                report.already_removed += 1
                log.warning("unsent_message_already_removed")
            else:
                log.info("unsent_message_redelivered")

        if report.found:
            self._logger.info("unsent_queue_drained", delivered=report.delivered)
        return report
