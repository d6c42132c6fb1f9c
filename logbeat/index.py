"""Elasticsearch sink for parsed log entries.

Provisioning is idempotent: the index is created only when missing, then
closed, given its analysis settings and mapping, and re-opened. Entries are
written by their deduplication key, so writing the same entry twice leaves a
single document.
"""

import logging
import threading
from typing import Callable

from elasticsearch import ApiError, Elasticsearch, TransportError

from logbeat.config import IndexConfig
from logbeat.models import IndexedEntry
from logbeat.retry import retry

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (TransportError, ApiError)

LOG_INDEX_SETTINGS = {
    "analysis": {
        "analyzer": {
            "analyzer_keyword": {
                "tokenizer": "keyword",
                "filter": ["lowercase"],
            }
        }
    },
    # Queries without explicit fields search the message only, not every field
    "index": {
        "query": {"default_field": ["message"]},
    },
}

LOG_INDEX_MAPPING = {
    "properties": {
        "key": {"type": "keyword"},
        "severity": {"type": "text", "analyzer": "analyzer_keyword"},
        "timestamp": {"type": "date"},
        "entryPoint": {"type": "text"},
        "fileName": {"type": "text"},
        "containerName": {"type": "text"},
        "message": {"type": "text"},
    }
}


class IndexSetupError(Exception):
    pass


def new_client(config: IndexConfig) -> Elasticsearch:
    return Elasticsearch(
        list(config.urls),
        sniff_on_start=config.sniff,
        sniff_on_node_failure=config.sniff,
        request_timeout=config.request_timeout,
    )


class LogIndex:
    def __init__(self, client: Elasticsearch, config: IndexConfig,
                 stop_event: threading.Event | None = None):
        self._client = client
        self._config = config
        self._stop = stop_event

    @property
    def name(self) -> str:
        return self._config.index

    @classmethod
    def connect(cls, config: IndexConfig, stop_event: threading.Event | None = None,
                client_factory: Callable[[IndexConfig], Elasticsearch] = new_client) -> "LogIndex":
        """Build a client and wait for the cluster to answer.

        Tolerates a cluster that is still starting: up to ``connect_attempts``
        tries, ``connect_delay`` seconds apart. Raises the last error after that.
        """
        def _connect() -> Elasticsearch:
            client = client_factory(config)
            client.info()
            return client

        client = retry(config.connect_attempts, config.connect_delay, _connect,
                       TRANSIENT_ERRORS, stop_event, "Connect to Elasticsearch")
        logger.info("Connected to Elasticsearch at %s", ", ".join(config.urls))
        return cls(client, config, stop_event)

    def provision(self) -> None:
        """Make sure the index exists with the log settings and mapping."""
        self._create_if_not_exists()
        self._with_suspended_index(self._apply_schema)
        logger.info("Index '%s' is ready", self.name)

    def add_entry(self, entry: IndexedEntry) -> None:
        """Write *entry* under its key; replaces any document with that key.

        Retries run to completion even after a stop request, so an entry that
        has started delivery is either indexed or reported as failed.
        """
        retry(
            self._config.upsert_attempts,
            self._config.upsert_delay,
            lambda: self._client.index(index=self.name, id=entry.key,
                                       document=entry.to_document()),
            TRANSIENT_ERRORS, description=f"Index entry {entry.key}",
        )

    def close(self) -> None:
        self._client.close()

    def _create_if_not_exists(self) -> None:
        exists = retry(
            self._config.connect_attempts, self._config.connect_delay,
            lambda: bool(self._client.indices.exists(index=self.name)),
            TRANSIENT_ERRORS, self._stop, f"Check index '{self.name}'",
        )
        if exists:
            return
        try:
            self._client.indices.create(index=self.name)
        except ApiError as e:
            if e.error == "resource_already_exists_exception":
                return
            raise IndexSetupError(f"Failed to create index '{self.name}': {e}") from e
        except TransportError as e:
            raise IndexSetupError(f"Failed to create index '{self.name}': {e}") from e
        logger.info("Created index '%s'", self.name)

    def _apply_schema(self) -> None:
        self._client.indices.put_settings(index=self.name, settings=LOG_INDEX_SETTINGS)
        self._client.indices.put_mapping(index=self.name, **LOG_INDEX_MAPPING)

    def _with_suspended_index(self, fn: Callable[[], None]) -> None:
        """Run *fn* while the index is closed; always tries to re-open it."""
        try:
            retry(self._config.suspend_attempts, self._config.suspend_delay,
                  lambda: self._client.indices.close(index=self.name),
                  TRANSIENT_ERRORS, self._stop, f"Close index '{self.name}'")
        except TRANSIENT_ERRORS as e:
            raise IndexSetupError(f"Failed to close index '{self.name}': {e}") from e

        try:
            fn()
        except TRANSIENT_ERRORS as e:
            raise IndexSetupError(f"Failed to update index '{self.name}': {e}") from e
        finally:
            self._open_index()

    def _open_index(self) -> None:
        try:
            retry(self._config.suspend_attempts, self._config.suspend_delay,
                  lambda: self._client.indices.open(index=self.name),
                  TRANSIENT_ERRORS, self._stop, f"Open index '{self.name}'")
        except TRANSIENT_ERRORS as e:
            raise IndexSetupError(f"Failed to open index '{self.name}': {e}") from e


def open_log_index(config: IndexConfig, stop_event: threading.Event | None = None) -> LogIndex:
    """Connect and provision; the startup path of the service."""
    log_index = LogIndex.connect(config, stop_event)
    log_index.provision()
    return log_index
