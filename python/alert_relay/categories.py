"""
Alert categories and their message formatting rules.

Each category maps to the index its watcher writes to. Formatting reads
only the fields a category needs; a missing required field raises
MalformedAlert for that one sub-alert.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, NamedTuple

from alert_relay.exceptions import MalformedAlert
from alert_relay.models import SubAlert


class AlertCategory(str, Enum):
    """The fixed set of monitoring alert categories, keyed by index name."""

    LOG_ERRORS = "alerts-log-errors"
    DISK_SPACE = "alerts-disk-space"
    MEMORY_USAGE = "alerts-memory-usage"
    SYSTEMD = "alerts-systemd"
    DOCKER_UNHEALTHY_CONTAINER = "alerts-docker-unhealthy-container"

    @property
    def index(self) -> str:
        return self.value

    @classmethod
    def from_index(cls, index: str) -> AlertCategory:
        """
        Resolve a category from its index name.

        Raises:
            ValueError: If no category uses that index.
        """
        for category in cls:
            if category.value == index:
                return category
        raise ValueError(f"Unknown alert index: {index}")


class FormattedMessage(NamedTuple):
    """Human-readable rendering of one sub-alert."""

    host: str
    subject: str
    body: str


def format_percentage(fraction: Any) -> str:
    """Render a 0..1 usage fraction as a percentage, e.g. 0.92 -> "92%"."""
    value = round(float(fraction) * 100, 2)
    return f"{value:g}%"


def _percentage(alert: SubAlert, path: str) -> str:
    value = alert.lookup(path)
    try:
        return format_percentage(value)
    except (TypeError, ValueError) as e:
        raise MalformedAlert.invalid_field(path, value) from e


def format_sub_alert(category: AlertCategory, alert: SubAlert) -> FormattedMessage:
    """
    Build the subject and body for one sub-alert.

    Raises:
        MalformedAlert: If a field the category needs is missing.
    """
    if category is AlertCategory.LOG_ERRORS:
        subject = str(alert.lookup("log.file.path"))
        body = str(alert.lookup("message"))
    elif category is AlertCategory.DISK_SPACE:
        subject = f"High disk usage on {alert.lookup('system.filesystem.mount_point')}"
        body = _percentage(alert, "system.filesystem.used.pct")
    elif category is AlertCategory.MEMORY_USAGE:
        subject = "High memory usage"
        body = _percentage(alert, "system.memory.actual.used.pct")
    elif category is AlertCategory.SYSTEMD:
        subject = "Down systemd service"
        body = f"{alert.lookup('system.service.name')} is {alert.lookup('system.service.state')}"
    elif category is AlertCategory.DOCKER_UNHEALTHY_CONTAINER:
        subject = "Unhealthy docker container"
        body = f"{alert.lookup('container.name')} is {alert.lookup('docker.container.status')}"
    else:
        raise ValueError(f"No formatter for category {category!r}")

    return FormattedMessage(host=alert.host, subject=subject, body=body)
