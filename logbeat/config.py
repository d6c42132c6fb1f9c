"""Service configuration loaded from a YAML (or JSON) document.

Example::

    indexConfig:
      index: logging
      urls: ["http://elasticsearch:9200"]
      sniff: false
    handlerConfig:
      filePattern: '\\.log\\.INFO\\.'
      directory: /logs
    metadataConfig:
      path: /metadata/metadata.db

Every field is optional; omitted fields take the defaults below.
"""

import logging
import os
import re
from dataclasses import dataclass, field

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/config/logging.json"


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class IndexConfig:
    index: str = "logging"
    urls: tuple[str, ...] = ("http://elasticsearch:9200",)
    sniff: bool = False
    connect_attempts: int = 10
    connect_delay: float = 10.0
    suspend_attempts: int = 10
    suspend_delay: float = 1.0
    upsert_attempts: int = 3
    upsert_delay: float = 1.0
    request_timeout: float = 30.0

    @classmethod
    def from_dict(cls, d: dict) -> "IndexConfig":
        urls = d.get("urls") or cls.urls
        if isinstance(urls, str):
            urls = [urls]
        return cls(
            index=d.get("index") or cls.index,
            urls=tuple(urls),
            sniff=bool(d.get("sniff", cls.sniff)),
            connect_attempts=int(d.get("connectAttempts", cls.connect_attempts)),
            connect_delay=float(d.get("connectDelay", cls.connect_delay)),
            suspend_attempts=int(d.get("suspendAttempts", cls.suspend_attempts)),
            suspend_delay=float(d.get("suspendDelay", cls.suspend_delay)),
            upsert_attempts=int(d.get("upsertAttempts", cls.upsert_attempts)),
            upsert_delay=float(d.get("upsertDelay", cls.upsert_delay)),
            request_timeout=float(d.get("requestTimeout", cls.request_timeout)),
        )


@dataclass(frozen=True)
class HandlerConfig:
    file_pattern: str = r"\.log\.INFO\."
    directory: str = "/logs"
    poll_interval: float = 10.0
    max_line_bytes: int = 4096

    @classmethod
    def from_dict(cls, d: dict) -> "HandlerConfig":
        cfg = cls(
            file_pattern=d.get("filePattern") or cls.file_pattern,
            directory=d.get("directory") or cls.directory,
            poll_interval=float(d.get("pollInterval", cls.poll_interval)),
            max_line_bytes=int(d.get("maxLineBytes", cls.max_line_bytes)),
        )
        try:
            re.compile(cfg.file_pattern)
        except re.error as e:
            raise ConfigError(f"Invalid filePattern {cfg.file_pattern!r}: {e}") from e
        if cfg.max_line_bytes < 2:
            raise ConfigError("maxLineBytes must be at least 2")
        return cfg


@dataclass(frozen=True)
class MetadataConfig:
    path: str = "/metadata/metadata.db"
    lock_timeout: float = 1.0

    @classmethod
    def from_dict(cls, d: dict) -> "MetadataConfig":
        return cls(
            path=d.get("path") or cls.path,
            lock_timeout=float(d.get("lockTimeout", cls.lock_timeout)),
        )


@dataclass(frozen=True)
class Config:
    index: IndexConfig = field(default_factory=IndexConfig)
    handler: HandlerConfig = field(default_factory=HandlerConfig)
    metadata: MetadataConfig = field(default_factory=MetadataConfig)

    @classmethod
    def from_dict(cls, d: dict) -> "Config":
        try:
            return cls(
                index=IndexConfig.from_dict(d.get("indexConfig") or {}),
                handler=HandlerConfig.from_dict(d.get("handlerConfig") or {}),
                metadata=MetadataConfig.from_dict(d.get("metadataConfig") or {}),
            )
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigError(f"Invalid configuration: {e}") from e


def load_config(path: str | None = None) -> Config:
    """Read the config document at *path*.

    ``CONFIG_PATH`` in the environment takes precedence over the default path,
    but not over an explicit argument.
    """
    path = path or os.environ.get("CONFIG_PATH", DEFAULT_CONFIG_PATH)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot load config {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse config {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a mapping, got {type(data).__name__}")
    logger.info("Loaded config from %s", path)
    return Config.from_dict(data)
