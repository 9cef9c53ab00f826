"""
Core data models for the alert relay.

Alert records are written by ELK watchers into one index per alert
category. Each record embeds the documents that triggered it as a
JSON-encoded list under ``alertContexts``.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, Field

from alert_relay.exceptions import MalformedAlert

SUB_ALERTS_FIELD = "alertContexts"
UNKNOWN_HOST = "unknown host"


class SubAlert(BaseModel):
    """One deliverable unit extracted from an alert record."""

    document: dict[str, Any] = Field(default_factory=dict, description="The triggering document")

    @classmethod
    def from_context(cls, entry: Any) -> SubAlert:
        """Build from one decoded ``alertContexts`` entry."""
        if not isinstance(entry, dict):
            raise MalformedAlert.missing_field("_source")
        source = entry.get("_source", entry)
        if not isinstance(source, dict):
            raise MalformedAlert.missing_field("_source")
        return cls(document=source)

    @property
    def host(self) -> str:
        """Host the alert fired on, as shown in the chat message."""
        host = self.document.get("host")
        if isinstance(host, dict):
            host = host.get("name") or host.get("hostname")
        if host is None or host == "":
            return UNKNOWN_HOST
        return str(host)

    def lookup(self, path: str) -> Any:
        """
        Resolve a dotted field path.

        Both nested objects and flattened dotted keys are accepted, since
        either shape can come back from the index.

        Raises:
            MalformedAlert: If any segment of the path is absent.
        """
        if path in self.document:
            return self.document[path]

        current: Any = self.document
        for segment in path.split("."):
            if not isinstance(current, dict) or segment not in current:
                raise MalformedAlert.missing_field(path)
            current = current[segment]
        return current


class AlertRecord(BaseModel):
    """A pending alert-log record read from a category index."""

    id: str = Field(..., description="Opaque identifier assigned by the store")
    collection: str = Field(..., description="Index the record was read from")
    source: dict[str, Any] = Field(default_factory=dict, description="Raw record document")

    def sub_alerts(self) -> list[SubAlert]:
        """
        Decode the embedded sub-alert list.

        Raises:
            MalformedAlert: If the list is missing, is not valid JSON, or
                does not decode to a list of documents.
        """
        raw = self.source.get(SUB_ALERTS_FIELD)
        if raw is None:
            raise MalformedAlert.undecodable(self.id, f"'{SUB_ALERTS_FIELD}' is missing")

        if isinstance(raw, str):
            try:
                decoded = json.loads(raw)
            except json.JSONDecodeError as e:
                raise MalformedAlert.undecodable(self.id, str(e), cause=e) from e
        else:
            decoded = raw

        if not isinstance(decoded, list):
            raise MalformedAlert.undecodable(
                self.id, f"expected a list, got {type(decoded).__name__}"
            )

        try:
            return [SubAlert.from_context(entry) for entry in decoded]
        except MalformedAlert as e:
            raise MalformedAlert.undecodable(self.id, e.message, cause=e) from e


class UnsentMessage(BaseModel):
    """A formatted notification waiting for redelivery."""

    id: str | None = Field(default=None, description="Store id once persisted")
    host: str = Field(..., description="Host the alert fired on")
    subject: str = Field(..., description="Message subject line")
    message: str = Field(..., description="Message body")

    @classmethod
    def from_record(cls, record: AlertRecord) -> UnsentMessage:
        """Read an unsent-queue record back into a message."""
        source = record.source
        try:
            return cls(
                id=record.id,
                host=str(source["host"]),
                subject=str(source["subject"]),
                message=str(source["message"]),
            )
        except KeyError as e:
            raise MalformedAlert.missing_field(str(e.args[0])) from e

    def to_document(self) -> dict[str, str]:
        """Document body stored in the unsent index."""
        return {
            "host": self.host,
            "subject": self.subject,
            "message": self.message,
        }
