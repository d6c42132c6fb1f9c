"""Shared fixtures: an in-memory stand-in for the Elasticsearch client."""

import pytest
from elasticsearch import ConnectionError as ESConnectionError

from logbeat.config import HandlerConfig, IndexConfig
from logbeat.index import LogIndex
from logbeat.offset_store import OffsetStore


class FakeIndices:
    def __init__(self, es: "FakeElasticsearch"):
        self._es = es

    def exists(self, index):
        self._es.record("exists", index)
        return index in self._es.indices_created

    def create(self, index):
        self._es.record("create", index)
        self._es.indices_created.add(index)
        self._es.documents.setdefault(index, {})

    def close(self, index):
        self._es.record("close", index)
        if self._es.close_failures > 0:
            self._es.close_failures -= 1
            raise ESConnectionError("index busy")
        self._es.closed.add(index)

    def open(self, index):
        self._es.record("open", index)
        if self._es.open_failures > 0:
            self._es.open_failures -= 1
            raise ESConnectionError("index busy")
        self._es.closed.discard(index)

    def put_settings(self, index, settings):
        self._es.record("put_settings", index)
        if self._es.fail_settings:
            raise ESConnectionError("settings rejected")
        self._es.settings[index] = settings

    def put_mapping(self, index, properties):
        self._es.record("put_mapping", index)
        self._es.mappings[index] = properties


class FakeElasticsearch:
    """Records calls and keeps documents per index, keyed by id."""

    def __init__(self):
        self.calls: list[tuple[str, str]] = []
        self.indices_created: set[str] = set()
        self.closed: set[str] = set()
        self.documents: dict[str, dict[str, dict]] = {}
        self.settings: dict[str, dict] = {}
        self.mappings: dict[str, dict] = {}
        self.close_failures = 0
        self.open_failures = 0
        self.index_failures = 0
        self.info_failures = 0
        self.fail_settings = False
        self.indices = FakeIndices(self)
        self.is_closed = False

    def record(self, op: str, index: str) -> None:
        self.calls.append((op, index))

    def ops(self) -> list[str]:
        return [op for op, _ in self.calls]

    def info(self):
        if self.info_failures > 0:
            self.info_failures -= 1
            raise ESConnectionError("connection refused")
        return {"version": {"number": "8.0.0"}}

    def index(self, index, id, document):
        self.record("index", index)
        if self.index_failures > 0:
            self.index_failures -= 1
            raise ESConnectionError("connection reset")
        self.documents.setdefault(index, {})[id] = document

    def close(self):
        self.is_closed = True


@pytest.fixture
def fake_es():
    return FakeElasticsearch()


@pytest.fixture
def index_config():
    return IndexConfig(
        index="logging",
        connect_attempts=3,
        connect_delay=0,
        suspend_attempts=3,
        suspend_delay=0,
        upsert_attempts=2,
        upsert_delay=0,
    )


@pytest.fixture
def log_index(fake_es, index_config):
    return LogIndex(fake_es, index_config)


@pytest.fixture
def store(tmp_path):
    s = OffsetStore(str(tmp_path / "metadata" / "metadata.db"))
    yield s
    s.close()


@pytest.fixture
def logs_dir(tmp_path):
    d = tmp_path / "logs"
    d.mkdir()
    return d


@pytest.fixture
def handler_config(logs_dir):
    return HandlerConfig(file_pattern=r"\.log\.INFO\.", directory=str(logs_dir), poll_interval=0.01)


def write_log(path, lines: list[str], mode: str = "w") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, mode, encoding="utf-8") as f:
        for line in lines:
            f.write(line + "\n")
