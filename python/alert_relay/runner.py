"""
Process-level orchestration of one relay pass.

A pass runs the unsent-queue drainer and one dispatcher per configured
category concurrently on a thread pool. All tasks share the store, the
notifier and its SendGate. A failing task does not stop the others;
the pass reports every task's outcome.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent import futures
from dataclasses import dataclass, field
from functools import partial
from typing import Any

from alert_relay.categories import AlertCategory
from alert_relay.config import Config
from alert_relay.dispatcher import AlertDispatcher, DispatchReport
from alert_relay.drainer import DrainReport, UnsentQueueDrainer
from alert_relay.exceptions import ConfigurationError
from alert_relay.logging import get_logger, task_context
from alert_relay.notifier import Notifier, SlackNotifier
from alert_relay.rate_limit import SendGate
from alert_relay.store import AlertStore, ElasticsearchStore

logger = get_logger(__name__)

DRAIN_TASK = "drain-unsent"


@dataclass
class TaskOutcome:
    """Result of one task in a pass."""

    name: str
    report: DrainReport | DispatchReport | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        if self.error is not None:
            return False
        if isinstance(self.report, DispatchReport):
            return self.report.malformed_records == 0
        return True


@dataclass
class RunReport:
    """Outcome of a full relay pass."""

    outcomes: list[TaskOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(outcome.ok for outcome in self.outcomes)

    def outcome(self, name: str) -> TaskOutcome:
        for outcome in self.outcomes:
            if outcome.name == name:
                return outcome
        raise KeyError(name)

    def summary(self) -> dict[str, Any]:
        return {
            outcome.name: "ok" if outcome.ok else str(outcome.error or "malformed records")
            for outcome in self.outcomes
        }


class RelayRunner:
    """Wires the store, notifier, drainer and dispatchers together."""

    def __init__(
        self,
        store: AlertStore,
        notifier: Notifier,
        categories: list[AlertCategory],
        unsent_index: str,
        channel: str,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._categories = list(categories)
        self._drainer = UnsentQueueDrainer(store, notifier, unsent_index, channel)
        self._dispatcher = AlertDispatcher(store, notifier, unsent_index, channel)
        self._logger = logger.bind(component="runner")
        self._passes = 0

    @classmethod
    def from_config(cls, config: Config) -> RelayRunner:
        """
        Build a runner against Elasticsearch and Slack.

        Raises:
            ConfigurationError: If the Slack token is missing or a Slack
                setting is invalid.
            ValueError: If a configured category index is unknown.
        """
        config.require_token()
        gate = SendGate(config.delivery.grace_period_seconds)
        notifier = SlackNotifier(config.slack, gate=gate)
        problems = notifier.validate_config()
        if problems:
            name, reason = next(iter(problems.items()))
            raise ConfigurationError.validation_failed(
                f"slack.{name}", getattr(config.slack, name), reason
            )
        return cls(
            store=ElasticsearchStore(config.store),
            notifier=notifier,
            categories=[AlertCategory.from_index(i) for i in config.delivery.categories],
            unsent_index=config.store.unsent_index,
            channel=config.slack.channel,
        )

    @property
    def categories(self) -> list[AlertCategory]:
        return list(self._categories)

    def run_once(self) -> RunReport:
        """Drain the unsent queue and dispatch every category, concurrently."""
        self._passes += 1
        relay_pass = self._passes
        tasks: dict[str, Callable[[], DrainReport | DispatchReport]] = {
            DRAIN_TASK: self._drainer.drain,
        }
        for category in self._categories:
            tasks[category.value] = partial(self._dispatcher.dispatch, category)

        self._logger.info("relay_pass_started", relay_pass=relay_pass, tasks=list(tasks))
        report = RunReport()
        with futures.ThreadPoolExecutor(
            max_workers=len(tasks), thread_name_prefix="alert-relay"
        ) as executor:
            submitted = {
                name: executor.submit(self._run_task, name, task, relay_pass)
                for name, task in tasks.items()
            }
            for name, future in submitted.items():
                try:
                    report.outcomes.append(TaskOutcome(name=name, report=future.result()))
                except Exception as e:
                    self._logger.error(
                        "relay_task_failed",
                        relay_pass=relay_pass,
                        task=name,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    report.outcomes.append(TaskOutcome(name=name, error=e))

        self._logger.info(
            "relay_pass_finished",
            relay_pass=relay_pass,
            ok=report.ok,
            outcomes=report.summary(),
            notifier=self._notifier.stats,
        )
        return report

    def run_forever(self, interval: float, stop_event: threading.Event | None = None) -> None:
        """Run a pass every ``interval`` seconds until ``stop_event`` is set."""
        stop_event = stop_event or threading.Event()
        while not stop_event.is_set():
            self.run_once()
            stop_event.wait(interval)

    @staticmethod
    def _run_task(
        name: str, task: Callable[[], DrainReport | DispatchReport], relay_pass: int
    ) -> DrainReport | DispatchReport:
        with task_context(name, relay_pass=relay_pass):
            return task()
