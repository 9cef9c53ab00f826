"""
Delivery of pending alert records for one category.

For every record the embedded sub-alerts are formatted and sent one by
one. A sub-alert that cannot be delivered (or formatted) is written to
the unsent queue instead, so once the loop over a record finishes every
sub-alert is either delivered or queued and the record can be removed.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

import structlog

from alert_relay.categories import AlertCategory, FormattedMessage, format_sub_alert
from alert_relay.exceptions import MalformedAlert, RecordNotFound
from alert_relay.logging import get_logger
from alert_relay.models import AlertRecord, SubAlert, UnsentMessage
from alert_relay.notifier import Notifier, compose_alert_text
from alert_relay.store import AlertStore

logger = get_logger(__name__)


@dataclass
class DispatchReport:
    """Outcome of dispatching one category."""

    category: AlertCategory
    records_seen: int = 0
    records_removed: int = 0
    malformed_records: int = 0
    delivered: int = 0
    requeued: int = 0


class AlertDispatcher:
    """Fetches, formats and delivers alert records, requeueing failures."""

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

    def dispatch(self, category: AlertCategory) -> DispatchReport:
        """
        Process every pending record of ``category``.

        Records whose sub-alert list cannot be decoded are logged and left
        in place.

        Raises:
            StoreUnavailable: If the store fails; the record being processed
                is not removed.
        """
        log = logger.bind(component="dispatcher", category=category.value)
        report = DispatchReport(category=category)

        for record in self._store.fetch_pending(category.index):
            report.records_seen += 1
            try:
                sub_alerts = record.sub_alerts()
            except MalformedAlert as e:
                report.malformed_records += 1
                log.error("alert_record_undecodable", record_id=record.id, **e.to_dict())
                continue

            for sub_alert in sub_alerts:
                self._process(category, record, sub_alert, report, log)

            try:
                self._store.remove(category.index, record.id)
            except RecordNotFound:
                log.warning("alert_record_already_removed", record_id=record.id)
            else:
                report.records_removed += 1
                log.info(
                    "alert_record_removed",
                    record_id=record.id,
                    sub_alerts=len(sub_alerts),
                )

        log.info(
            "category_dispatched",
            records=report.records_seen,
            delivered=report.delivered,
            requeued=report.requeued,
            malformed=report.malformed_records,
        )
        return report

    def _process(
        self,
        category: AlertCategory,
        record: AlertRecord,
        sub_alert: SubAlert,
        report: DispatchReport,
        log: structlog.stdlib.BoundLogger,
    ) -> None:
        try:
            formatted = format_sub_alert(category, sub_alert)
        except MalformedAlert as e:
            log.error("alert_unformattable", record_id=record.id, **e.to_dict())
            self._requeue(_unformatted(category, sub_alert), record, report, log)
            return

        text = compose_alert_text(formatted.subject, formatted.host, formatted.body)
        try:
            result = self._notifier.send(self._channel, text)
        except Exception as e:
            # Anything escaping the notifier still leaves this sub-alert undelivered.
            log.error(
                "alert_delivery_crashed",
                record_id=record.id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            self._requeue(formatted, record, report, log)
            return

        if result.is_success:
            report.delivered += 1
            log.info("alert_delivered", record_id=record.id, subject=formatted.subject)
            return

        log.error(
            "alert_delivery_failed",
            record_id=record.id,
            status=result.status.value,
            error=result.error,
        )
        self._requeue(formatted, record, report, log)

    def _requeue(
        self,
        formatted: FormattedMessage,
        record: AlertRecord,
        report: DispatchReport,
        log: structlog.stdlib.BoundLogger,
    ) -> None:
        unsent = UnsentMessage(
            host=formatted.host,
            subject=formatted.subject,
            message=formatted.body,
        )
        unsent_id = self._store.insert(self._unsent_index, unsent.to_document())
        report.requeued += 1
        log.warning("alert_requeued", record_id=record.id, unsent_id=unsent_id)


def _unformatted(category: AlertCategory, sub_alert: SubAlert) -> FormattedMessage:
    """Fallback rendering carrying the raw document of a sub-alert."""
    return FormattedMessage(
        host=sub_alert.host,
        subject=f"Unformattable {category.value} alert",
        body=json.dumps(sub_alert.document, sort_keys=True, default=str),
    )
