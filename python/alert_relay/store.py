"""
Index store access for alert records and the unsent queue.

AlertStore is the contract the dispatcher and drainer depend on.
ElasticsearchStore talks to the Elasticsearch REST API; InMemoryStore
keeps everything in process for dry runs and tests.
"""

from __future__ import annotations

import base64
import json
import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from http.client import HTTPException
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from alert_relay.config import StoreConfig
from alert_relay.exceptions import RecordNotFound, StoreUnavailable
from alert_relay.logging import get_logger
from alert_relay.models import AlertRecord, UnsentMessage

logger = get_logger(__name__)

MATCH_ALL_QUERY: dict[str, Any] = {"query": {"match_all": {}}}


class AlertStore(ABC):
    """
    Contract for the backing index store.

    Implementations raise StoreUnavailable for transport or backend
    failures and RecordNotFound when removing a record that is gone.
    """

    @abstractmethod
    def fetch_pending(self, collection: str) -> list[AlertRecord]:
        """Return the records of a match-all scan of ``collection``."""

    @abstractmethod
    def remove(self, collection: str, record_id: str) -> None:
        """Delete one record."""

    @abstractmethod
    def insert(self, collection: str, document: dict[str, Any]) -> str:
        """Index a new document and return its id."""

    def fetch_unsent(self, collection: str) -> list[UnsentMessage]:
        """Read the unsent queue as messages."""
        return [UnsentMessage.from_record(r) for r in self.fetch_pending(collection)]


class ElasticsearchStore(AlertStore):
    """Alert store backed by the Elasticsearch REST API."""

    def __init__(self, config: StoreConfig) -> None:
        self._config = config
        self._base_url = config.url.rstrip("/")
        self._logger = logger.bind(store=self._base_url)

    def fetch_pending(self, collection: str) -> list[AlertRecord]:
        body = dict(MATCH_ALL_QUERY, size=self._config.search_size)
        try:
            response = self._request("POST", f"/{quote(collection)}/_search", body)
        except HTTPError as e:
            if e.code == 404:
                # Watchers create the index lazily on their first alert.
                self._logger.debug("index_missing", collection=collection)
                return []
            raise self._http_error("search", e) from e

        hits = response.get("hits", {}).get("hits", [])
        records = [
            AlertRecord(
                id=str(hit["_id"]),
                collection=collection,
                source=hit.get("_source") or {},
            )
            for hit in hits
        ]
        self._logger.debug("records_fetched", collection=collection, count=len(records))
        return records

    def remove(self, collection: str, record_id: str) -> None:
        path = f"/{quote(collection)}/_doc/{quote(record_id, safe='')}"
        try:
            self._request("DELETE", path)
        except HTTPError as e:
            if e.code == 404:
                raise RecordNotFound.for_record(collection, record_id) from e
            raise self._http_error("delete", e) from e

    def insert(self, collection: str, document: dict[str, Any]) -> str:
        try:
            response = self._request("POST", f"/{quote(collection)}/_doc", document)
        except HTTPError as e:
            raise self._http_error("index", e) from e
        return str(response.get("_id", ""))

    def _request(
        self, method: str, path: str, body: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """
        Perform a JSON request against the store.

        Raises:
            HTTPError: For non-2xx responses, left to the caller to map.
            StoreUnavailable: If the store cannot be reached.
        """
        data = json.dumps(body).encode("utf-8") if body is not None else None
        request = Request(
            f"{self._base_url}{path}",
            data=data,
            headers=self._build_headers(),
            method=method,
        )

        try:
            with urlopen(request, timeout=self._config.timeout) as response:
                raw = response.read().decode("utf-8")
        except HTTPError:
            raise
        except (URLError, HTTPException, OSError) as e:
            reason = str(getattr(e, "reason", e))
            self._logger.error(
                "store_connection_error",
                method=method,
                path=path,
                reason=reason,
            )
            raise StoreUnavailable.connection_failed(self._base_url, reason, cause=e) from e

        return json.loads(raw) if raw else {}

    def _build_headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self._config.username:
            credentials = f"{self._config.username}:{self._config.password or ''}"
            encoded = base64.b64encode(credentials.encode()).decode()
            headers["Authorization"] = f"Basic {encoded}"
        return headers

    def _http_error(self, operation: str, error: HTTPError) -> StoreUnavailable:
        self._logger.error(
            "store_http_error",
            operation=operation,
            status_code=error.code,
            reason=error.reason,
        )
        return StoreUnavailable.http_error(operation, error.code, str(error.reason), cause=error)


class InMemoryStore(AlertStore):
    """
    Thread-safe in-process store.

    Records keep insertion order. ``fail_inserts`` and ``fail_removes``
    accept a predicate on the collection name to simulate an unavailable
    backend.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = threading.Lock()
        self.fail_inserts: Callable[[str], bool] | None = None
        self.fail_removes: Callable[[str], bool] | None = None

    def add(self, collection: str, document: dict[str, Any], record_id: str | None = None) -> str:
        """Seed a record directly, bypassing fault injection."""
        record_id = record_id or uuid.uuid4().hex
        with self._lock:
            self._collections.setdefault(collection, {})[record_id] = dict(document)
        return record_id

    def documents(self, collection: str) -> list[dict[str, Any]]:
        """Snapshot of the documents currently in ``collection``."""
        with self._lock:
            return [dict(doc) for doc in self._collections.get(collection, {}).values()]

    def fetch_pending(self, collection: str) -> list[AlertRecord]:
        with self._lock:
            items = list(self._collections.get(collection, {}).items())
        return [
            AlertRecord(id=record_id, collection=collection, source=dict(doc))
            for record_id, doc in items
        ]

    def remove(self, collection: str, record_id: str) -> None:
        if self.fail_removes is not None and self.fail_removes(collection):
            raise StoreUnavailable.connection_failed("memory", "remove disabled")
        with self._lock:
            records = self._collections.get(collection, {})
            if record_id not in records:
                raise RecordNotFound.for_record(collection, record_id)
            del records[record_id]

    def insert(self, collection: str, document: dict[str, Any]) -> str:
        if self.fail_inserts is not None and self.fail_inserts(collection):
            raise StoreUnavailable.connection_failed("memory", "insert disabled")
        return self.add(collection, document)
