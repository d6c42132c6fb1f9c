"""Ingestion loop: scan, parse changed files, index entries, record progress."""

import logging
import os
import sqlite3
import threading
from dataclasses import dataclass

from logbeat.config import HandlerConfig
from logbeat.index import TRANSIENT_ERRORS, LogIndex
from logbeat.models import FileProgress, IndexedEntry
from logbeat.offset_store import FileProgressNotFound, OffsetStore, OffsetStoreError
from logbeat.parser import EntryParser, log_file_for
from logbeat.scanner import FileScanner, ScanError, ScannedFile, has_changed

logger = logging.getLogger(__name__)

FILE_ERRORS = (OSError, sqlite3.Error, OffsetStoreError) + TRANSIENT_ERRORS


@dataclass
class PassResult:
    files_seen: int = 0
    files_handled: int = 0
    entries_delivered: int = 0
    file_errors: int = 0
    aborted: bool = False

    @property
    def clean(self) -> bool:
        return not self.aborted and self.file_errors == 0


class LogHandler:
    """Single worker that tails every matching file under a directory.

    Per entry the order is: index it, then advance the stored offset. A crash
    between the two re-delivers the entry on restart, which the content-derived
    key turns into an overwrite.
    """

    def __init__(self, config: HandlerConfig, store: OffsetStore, log_index: LogIndex,
                 stop_event: threading.Event | None = None):
        self._config = config
        self._store = store
        self._index = log_index
        self._stop = stop_event or threading.Event()
        self._scanner = FileScanner(config.directory, config.file_pattern)

    @property
    def stop_event(self) -> threading.Event:
        return self._stop

    def start(self) -> None:
        """Run passes until stopped, waiting ``poll_interval`` between them."""
        logger.info("Watching directory (%s) for log file pattern (%s)",
                    self._config.directory, self._scanner.pattern.pattern)
        while not self._stop.is_set():
            self.run_pass()
            self._stop.wait(self._config.poll_interval)
        logger.info("Handler stopped")

    def stop(self) -> None:
        self._stop.set()

    def run_pass(self) -> PassResult:
        result = PassResult()
        try:
            for scanned in self._scanner.scan():
                if self._stop.is_set():
                    break
                result.files_seen += 1
                try:
                    delivered = self.handle_file(scanned)
                except FILE_ERRORS as e:
                    result.file_errors += 1
                    logger.warning("Failed to handle %s: %s", scanned.path, e)
                    continue
                except Exception:
                    result.file_errors += 1
                    logger.exception("Unexpected error handling %s", scanned.path)
                    continue
                if delivered is not None:
                    result.files_handled += 1
                    result.entries_delivered += delivered
        except ScanError as e:
            result.aborted = True
            logger.error("Directory pass aborted: %s", e)

        if result.files_handled or not result.clean:
            logger.info("Pass done: %d files seen, %d handled, %d entries, %d errors",
                        result.files_seen, result.files_handled,
                        result.entries_delivered, result.file_errors)
        return result

    def handle_file(self, scanned: ScannedFile) -> int | None:
        """Ship the unprocessed tail of one file.

        Returns the number of entries delivered, or None if the file had not
        changed since its last pass.
        """
        path = scanned.path
        try:
            progress = self._store.get(path)
        except FileProgressNotFound:
            progress = None

        with open(path, "rb") as f:
            st = os.fstat(f.fileno())
            current = ScannedFile(path=path, modified=st.st_mtime_ns, size=st.st_size)
            if not has_changed(progress, current):
                return None

            previous_modified = progress.last_modified if progress else 0
            discard = progress.discard if progress else 0
            if current.size < discard:
                logger.warning("File %s shrank below its offset (%d < %d), reading from start",
                               path, current.size, discard)
                discard = 0

            logger.info("Handling: %s (offset %d)", path, discard)
            f.seek(discard)
            parser = EntryParser(log_file_for(path), self._stop, self._config.max_line_bytes)

            delivered = 0
            for entry in parser.parse(f):
                if entry.is_empty:
                    continue
                self._index.add_entry(IndexedEntry.from_parsed(entry))
                delivered += 1
                # Old mtime until the file is finished, so a crash here cannot
                # make the rest of the file look already processed
                self._store.set(FileProgress(path, previous_modified, discard + parser.bytes_read))

        modified = previous_modified if parser.stopped else current.modified
        self._store.set(FileProgress(path, modified, discard + parser.bytes_read))
        if parser.stopped:
            logger.info("Stopped in %s at offset %d", path, discard + parser.bytes_read)
        return delivered
