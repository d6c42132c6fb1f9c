"""Durable per-file progress records.

Records live in a single SQLite table used as a key-value bucket: the key is
the absolute file path as raw filesystem bytes, the value the JSON form of a
FileProgress. The database is locked exclusively for the lifetime of the
store so a second instance pointed at the same file fails after
``lock_timeout`` seconds instead of interleaving writes.
"""

import json
import logging
import os
import sqlite3

from logbeat.models import FileProgress

logger = logging.getLogger(__name__)

METADATA_BUCKET = "metadata"


class FileProgressNotFound(KeyError):
    """No record for the path yet; the file has never been processed."""


class OffsetStoreError(Exception):
    pass


def _key(path: str) -> bytes:
    # os.walk hands back undecodable names as surrogates; fsencode restores the bytes
    return os.fsencode(path)


class OffsetStore:
    def __init__(self, path: str, lock_timeout: float = 1.0):
        self._path = path
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        try:
            # check_same_thread is off: opened by main, used by the single worker
            self._conn = sqlite3.connect(path, timeout=lock_timeout,
                                         isolation_level=None, check_same_thread=False)
        except sqlite3.Error as e:
            raise OffsetStoreError(f"Cannot open metadata storage {path}: {e}") from e
        try:
            self._conn.execute("PRAGMA locking_mode=EXCLUSIVE")
            self._conn.execute("PRAGMA synchronous=FULL")
            self._conn.execute("BEGIN EXCLUSIVE")
            self._conn.execute(
                f"CREATE TABLE IF NOT EXISTS {METADATA_BUCKET} "
                "(path BLOB PRIMARY KEY, value TEXT NOT NULL)"
            )
            self._conn.execute("COMMIT")
        except sqlite3.Error as e:
            self._conn.close()
            raise OffsetStoreError(f"Cannot lock metadata storage {path}: {e}") from e
        logger.info("Opened metadata storage %s", path)

    @property
    def path(self) -> str:
        return self._path

    def get(self, path: str) -> FileProgress:
        """Return the record for *path*; raises FileProgressNotFound if there is none."""
        row = self._conn.execute(
            f"SELECT value FROM {METADATA_BUCKET} WHERE path = ?", (_key(path),)
        ).fetchone()
        if row is None:
            raise FileProgressNotFound(path)
        try:
            return FileProgress.from_dict(json.loads(row[0]))
        except (ValueError, KeyError, TypeError) as e:
            raise OffsetStoreError(f"Corrupt progress record for {path!r}: {e}") from e

    def set(self, progress: FileProgress) -> None:
        """Overwrite the record for ``progress.path``; durable on return."""
        value = json.dumps(progress.to_dict())
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            self._conn.execute(
                f"INSERT OR REPLACE INTO {METADATA_BUCKET} (path, value) VALUES (?, ?)",
                (_key(progress.path), value),
            )
        except sqlite3.Error:
            self._conn.execute("ROLLBACK")
            raise
        self._conn.execute("COMMIT")

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("Closed metadata storage %s", self._path)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
