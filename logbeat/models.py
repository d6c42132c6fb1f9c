"""Value types passed between the scanner, parser, offset store and index."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"


@dataclass(frozen=True)
class LogFile:
    path: str
    name: str
    origin: str                  # e.g. container name taken from the path
    reference_date: datetime     # seeds the year of entries lacking one


@dataclass(frozen=True)
class ParsedEntry:
    severity: Severity
    timestamp: datetime
    thread_id: str
    entry_point: str
    log_file: LogFile
    message_lines: tuple[str, ...] = ()
    bytes_read: int = 0

    @property
    def message(self) -> str:
        return "\n".join(self.message_lines)

    @property
    def is_empty(self) -> bool:
        return not self.message_lines


@dataclass(frozen=True)
class FileProgress:
    """Persisted read position of one file.

    ``last_modified`` is the file's ``st_mtime_ns`` at the time of the pass;
    ``discard`` is the number of leading bytes already shipped.
    """

    path: str
    last_modified: int = 0
    discard: int = 0

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "lastModified": self.last_modified,
            "discard": self.discard,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "FileProgress":
        return cls(
            path=d["path"],
            last_modified=int(d.get("lastModified", 0)),
            discard=int(d.get("discard", 0)),
        )


@dataclass(frozen=True)
class IndexedEntry:
    key: str
    severity: str
    timestamp: datetime
    entry_point: str
    file_name: str
    container_name: str
    message: str = field(repr=False)

    @classmethod
    def from_parsed(cls, entry: ParsedEntry) -> "IndexedEntry":
        message = entry.message
        return cls(
            key=dedup_key(entry.timestamp, message),
            severity=entry.severity.value,
            timestamp=entry.timestamp,
            entry_point=entry.entry_point,
            file_name=display_name(entry.log_file.name),
            container_name=entry.log_file.origin,
            message=message,
        )

    def to_document(self) -> dict:
        return {
            "key": self.key,
            "severity": self.severity,
            "timestamp": self.timestamp.astimezone(timezone.utc).isoformat(),
            "entryPoint": self.entry_point,
            "fileName": self.file_name,
            "containerName": self.container_name,
            "message": self.message,
        }


FNV32_OFFSET = 0x811C9DC5
FNV32_PRIME = 0x01000193


def fnv1a_32(data: bytes) -> int:
    h = FNV32_OFFSET
    for b in data:
        h ^= b
        h = (h * FNV32_PRIME) & 0xFFFFFFFF
    return h


def format_utc_nanos(ts: datetime) -> str:
    """Format as ``2019-01-24T16:53:43.847231000Z``; naive values are taken as UTC."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    ts = ts.astimezone(timezone.utc)
    return ts.strftime("%Y-%m-%dT%H:%M:%S") + f".{ts.microsecond * 1000:09d}Z"


def dedup_key(timestamp: datetime, message: str) -> str:
    """Stable identity of an entry: same timestamp and text give the same key."""
    return f"{format_utc_nanos(timestamp)}/{fnv1a_32(message.encode('utf-8'))}"


def display_name(name: str) -> str:
    """Make a file name from ``os.walk`` safe to serialize; undecodable bytes become U+FFFD."""
    return name.encode("utf-8", "surrogateescape").decode("utf-8", "replace")
