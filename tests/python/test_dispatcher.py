"""Tests for the per-category alert dispatcher."""

from __future__ import annotations

import json
import ssl
from http.client import IncompleteRead
from typing import Any
from unittest.mock import MagicMock, Mock, patch

import pytest
from conftest import CHANNEL, UNSENT_INDEX, FakeClock, ScriptedNotifier, alert_record

from alert_relay.categories import AlertCategory, format_sub_alert
from alert_relay.config import SlackConfig
from alert_relay.dispatcher import AlertDispatcher
from alert_relay.exceptions import StoreUnavailable
from alert_relay.models import SubAlert
from alert_relay.notifier import SlackNotifier, compose_alert_text
from alert_relay.rate_limit import SendGate
from alert_relay.store import InMemoryStore

DISK = AlertCategory.DISK_SPACE
SYSTEMD = AlertCategory.SYSTEMD


def make_dispatcher(store: InMemoryStore, notifier: ScriptedNotifier) -> AlertDispatcher:
    return AlertDispatcher(store, notifier, UNSENT_INDEX, CHANNEL)


def service(name: str, state: str = "failed", host: str = "web-02") -> dict[str, Any]:
    return {"host": {"name": host}, "system": {"service": {"name": name, "state": state}}}


class TestDeliveryScenarios:
    """End-to-end behaviour of one category dispatch."""

    def test_disk_alert_delivered(self, store: InMemoryStore, disk_document: dict[str, Any]) -> None:
        store.add(DISK.index, alert_record(disk_document))
        notifier = ScriptedNotifier(["ok"])

        report = make_dispatcher(store, notifier).dispatch(DISK)

        assert notifier.texts == [compose_alert_text("High disk usage on /var", "web-01", "92%")]
        assert store.documents(DISK.index) == []
        assert store.documents(UNSENT_INDEX) == []
        assert report.delivered == 1
        assert report.records_removed == 1

    def test_rejected_systemd_alert_requeued(
        self, store: InMemoryStore, systemd_document: dict[str, Any]
    ) -> None:
        store.add(SYSTEMD.index, alert_record(systemd_document))
        notifier = ScriptedNotifier(["reject"])

        report = make_dispatcher(store, notifier).dispatch(SYSTEMD)

        assert store.documents(UNSENT_INDEX) == [
            {"host": "web-02", "subject": "Down systemd service", "message": "nginx is failed"}
        ]
        assert store.documents(SYSTEMD.index) == []
        assert report.requeued == 1
        assert report.records_removed == 1

    def test_transport_error_requeued(
        self, store: InMemoryStore, systemd_document: dict[str, Any]
    ) -> None:
        store.add(SYSTEMD.index, alert_record(systemd_document))
        notifier = ScriptedNotifier(["transport"])

        report = make_dispatcher(store, notifier).dispatch(SYSTEMD)

        assert report.requeued == 1
        assert len(store.documents(UNSENT_INDEX)) == 1

    def test_requeued_message_matches_formatter_output(
        self, store: InMemoryStore, disk_document: dict[str, Any]
    ) -> None:
        store.add(DISK.index, alert_record(disk_document))

        make_dispatcher(store, ScriptedNotifier(["reject"])).dispatch(DISK)

        expected = format_sub_alert(DISK, SubAlert(document=disk_document))
        (stored,) = store.documents(UNSENT_INDEX)
        assert stored == {
            "host": expected.host,
            "subject": expected.subject,
            "message": expected.body,
        }
        assert ":anger:" not in stored["message"]

    def test_empty_sub_alert_list_still_removed(self, store: InMemoryStore) -> None:
        store.add(SYSTEMD.index, {"alertContexts": "[]"})
        notifier = ScriptedNotifier()

        report = make_dispatcher(store, notifier).dispatch(SYSTEMD)

        assert store.documents(SYSTEMD.index) == []
        assert store.documents(UNSENT_INDEX) == []
        assert notifier.calls == []
        assert report.records_removed == 1

    def test_no_pending_records(self, store: InMemoryStore) -> None:
        notifier = ScriptedNotifier()

        report = make_dispatcher(store, notifier).dispatch(SYSTEMD)

        assert report.records_seen == 0
        assert notifier.calls == []


class TestSubAlertIsolation:
    """A failing sub-alert never stops its siblings."""

    def test_mixed_outcomes_account_for_every_sub_alert(self, store: InMemoryStore) -> None:
        names = ["nginx", "postgres", "redis", "cron"]
        store.add(SYSTEMD.index, alert_record(*(service(n) for n in names)))
        notifier = ScriptedNotifier(["ok", "reject", "transport", "ok"])

        report = make_dispatcher(store, notifier).dispatch(SYSTEMD)

        attempted = {text.split("\n\n")[-1] for text in notifier.texts}
        requeued = {d["message"] for d in store.documents(UNSENT_INDEX)}
        successful = {"nginx is failed", "cron is failed"}
        assert requeued == {"postgres is failed", "redis is failed"}
        assert successful <= attempted
        assert successful.isdisjoint(requeued)
        assert report.delivered + report.requeued == len(names)
        assert store.documents(SYSTEMD.index) == []

    def test_each_record_removed_once(self, store: InMemoryStore) -> None:
        for n in range(3):
            store.add(SYSTEMD.index, alert_record(service(f"svc{n}"), service(f"alt{n}")))
        removed: list[str] = []
        original_remove = store.remove

        def tracking_remove(collection: str, record_id: str) -> None:
            removed.append(record_id)
            original_remove(collection, record_id)

        store.remove = tracking_remove  # type: ignore[method-assign]

        report = make_dispatcher(store, ScriptedNotifier(["ok", "reject"] * 3)).dispatch(SYSTEMD)

        assert len(removed) == len(set(removed)) == 3
        assert report.records_removed == 3
        assert report.delivered == 3
        assert report.requeued == 3

    def test_unformattable_sub_alert_requeued_raw(self, store: InMemoryStore) -> None:
        broken = {"host": {"name": "web-09"}, "system": {"service": {"name": "nginx"}}}
        store.add(SYSTEMD.index, alert_record(broken, service("sshd")))
        notifier = ScriptedNotifier()

        report = make_dispatcher(store, notifier).dispatch(SYSTEMD)

        (stored,) = store.documents(UNSENT_INDEX)
        assert stored["host"] == "web-09"
        assert stored["subject"] == "Unformattable alerts-systemd alert"
        assert json.loads(stored["message"]) == broken
        assert len(notifier.calls) == 1
        assert report.delivered == 1
        assert report.requeued == 1
        assert store.documents(SYSTEMD.index) == []

    def test_grace_period_between_sub_alerts(self, store: InMemoryStore, clock: FakeClock) -> None:
        store.add(SYSTEMD.index, alert_record(service("a"), service("b"), service("c")))
        gate = SendGate(5.0, clock=clock, sleep=clock.sleep)
        notifier = ScriptedNotifier(gate=gate, clock=clock)

        make_dispatcher(store, notifier).dispatch(SYSTEMD)

        times = [t for _, _, t in notifier.calls]
        assert all(b - a >= 5.0 for a, b in zip(times, times[1:]))


class TestRecordFailures:
    """Failures that affect a whole record."""

    def test_undecodable_record_left_in_place(self, store: InMemoryStore) -> None:
        bad_id = store.add(SYSTEMD.index, {"alertContexts": "{corrupt"})
        store.add(SYSTEMD.index, alert_record(service("nginx")))
        notifier = ScriptedNotifier()

        report = make_dispatcher(store, notifier).dispatch(SYSTEMD)

        assert [r.id for r in store.fetch_pending(SYSTEMD.index)] == [bad_id]
        assert report.malformed_records == 1
        assert report.delivered == 1
        assert report.records_removed == 1

    def test_missing_sub_alert_list_left_in_place(self, store: InMemoryStore) -> None:
        store.add(SYSTEMD.index, {"watch": "systemd"})

        report = make_dispatcher(store, ScriptedNotifier()).dispatch(SYSTEMD)

        assert report.malformed_records == 1
        assert len(store.documents(SYSTEMD.index)) == 1

    def test_requeue_failure_keeps_record(self, store: InMemoryStore) -> None:
        store.add(SYSTEMD.index, alert_record(service("nginx")))
        store.fail_inserts = lambda collection: True

        with pytest.raises(StoreUnavailable):
            make_dispatcher(store, ScriptedNotifier(["reject"])).dispatch(SYSTEMD)

        assert len(store.documents(SYSTEMD.index)) == 1

    def test_record_already_removed(self, store: InMemoryStore) -> None:
        record_id = store.add(SYSTEMD.index, alert_record(service("nginx")))

        class RemovingNotifier(ScriptedNotifier):
            def _post(self, channel: str, text: str) -> dict[str, Any]:
                store.remove(SYSTEMD.index, record_id)
                return super()._post(channel, text)

        report = make_dispatcher(store, RemovingNotifier()).dispatch(SYSTEMD)

        assert report.delivered == 1
        assert report.records_removed == 0

    def test_remove_failure_propagates(self, store: InMemoryStore) -> None:
        store.add(SYSTEMD.index, alert_record(service("nginx")))
        store.fail_removes = lambda collection: True

        with pytest.raises(StoreUnavailable):
            make_dispatcher(store, ScriptedNotifier()).dispatch(SYSTEMD)


class TestUnexpectedSendFailures:
    """Failures outside the delivery error hierarchy still settle the sub-alert."""

    @staticmethod
    def slack_notifier() -> SlackNotifier:
        config = SlackConfig(token="xoxb-test", max_retries=1)
        return SlackNotifier(config, sleep=lambda _: None)

    @staticmethod
    def response(body: bytes = b"", read_error: Exception | None = None) -> MagicMock:
        response = MagicMock()
        response.read.return_value = body
        response.read.side_effect = read_error
        response.__enter__ = Mock(return_value=response)
        response.__exit__ = Mock(return_value=False)
        return response

    @pytest.mark.parametrize(
        "reply",
        [
            {"body": b"[]"},
            {"read_error": IncompleteRead(b"{\"ok\"")},
            {"read_error": ssl.SSLError("bad record mac")},
        ],
    )
    def test_slack_reply_failure_requeues(
        self,
        reply: dict[str, Any],
        store: InMemoryStore,
        systemd_document: dict[str, Any],
    ) -> None:
        store.add(SYSTEMD.index, alert_record(systemd_document))

        with patch("alert_relay.notifier.urlopen", return_value=self.response(**reply)):
            report = AlertDispatcher(
                store, self.slack_notifier(), UNSENT_INDEX, CHANNEL
            ).dispatch(SYSTEMD)

        assert store.documents(SYSTEMD.index) == []
        assert store.documents(UNSENT_INDEX) == [
            {"host": "web-02", "subject": "Down systemd service", "message": "nginx is failed"}
        ]
        assert report.requeued == 1
        assert report.records_removed == 1

    def test_notifier_crash_requeues_and_continues(self, store: InMemoryStore) -> None:
        store.add(SYSTEMD.index, alert_record(service("nginx"), service("sshd")))

        class CrashingNotifier(ScriptedNotifier):
            def _post(self, channel: str, text: str) -> dict[str, Any]:
                if "nginx" in text:
                    raise RuntimeError("unexpected reply shape")
                return super()._post(channel, text)

        notifier = CrashingNotifier()
        report = make_dispatcher(store, notifier).dispatch(SYSTEMD)

        assert [d["message"] for d in store.documents(UNSENT_INDEX)] == ["nginx is failed"]
        assert notifier.texts[-1].endswith("sshd is failed")
        assert report.requeued == 1
        assert report.delivered == 1
        assert store.documents(SYSTEMD.index) == []
