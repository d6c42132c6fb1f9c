"""Multi-line log entry parser.

Turns glog-style text into ParsedEntry values. A header line looks like::

    E0124 16:53:43.847231 1 server.go:147] Log message

and every following line that is not itself a header belongs to the message
of the entry above it. Header lines carry no year, so the year is carried over
from the previous entry (or the file's reference date) and bumped when the
month goes backwards.
"""

import logging
import os
import re
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import BinaryIO, Iterator

from logbeat.models import LogFile, ParsedEntry, Severity
from logbeat.reader import DEFAULT_MAX_LINE_BYTES, Line, iter_lines

logger = logging.getLogger(__name__)

# /logs/webui/fffa108f2364.log.WARNING.20190124-164334.1
FILE_PATH_RE = re.compile(r".*/([\w-]+)/[\w.-]+\.log\.\w+\.([0-9]{8}-[0-9]{6}).*")

# E0124 16:53:43.847231 1 server.go:147] Log message
ENTRY_LINE_RE = re.compile(
    r"^([A-Z])([0-9]{4}\s[0-9:.]+)\s+(\w+)\s([\w.-]+:[0-9]+)\]\s(.*)$"
)

FILE_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
ENTRY_TIMESTAMP_FORMATS = ("%Y%m%d %H:%M:%S.%f", "%Y%m%d %H:%M:%S")

SEVERITIES = {
    "I": Severity.INFO,
    "W": Severity.WARNING,
    "E": Severity.ERROR,
    "F": Severity.FATAL,
}


def severity_for(letter: str) -> Severity:
    return SEVERITIES.get(letter, Severity.INFO)


def log_file_for(path: str, now: datetime | None = None) -> LogFile:
    """Describe *path*, taking origin and reference date from its name when present.

    Without a rotation timestamp the reference date is the start of the current
    UTC day, so headerless lines keep the same timestamp when read again.
    """
    reference_date = (now or datetime.now(timezone.utc)).replace(
        hour=0, minute=0, second=0, microsecond=0)
    origin = ""
    match = FILE_PATH_RE.match(path)
    if match:
        origin = match.group(1)
        try:
            reference_date = datetime.strptime(
                match.group(2), FILE_TIMESTAMP_FORMAT
            ).replace(tzinfo=timezone.utc)
        except ValueError:
            logger.debug("Unparsable rotation timestamp in %s", path)
    return LogFile(
        path=path,
        name=os.path.basename(path),
        origin=origin,
        reference_date=reference_date,
    )


def entry_timestamp(previous: datetime, text: str) -> datetime:
    """Build the timestamp for header text ``MMDD HH:MM:SS.ffffff``.

    Falls back to *previous* when the text cannot be parsed.
    """
    try:
        month = int(text[:2])
    except ValueError:
        return previous
    # Month going backwards means the log crossed new year
    year = previous.year + 1 if month < previous.month else previous.year

    for fmt in ENTRY_TIMESTAMP_FORMATS:
        try:
            parsed = datetime.strptime(f"{year:04d}{text}", fmt)
        except ValueError:
            continue
        return parsed.replace(tzinfo=previous.tzinfo or timezone.utc)
    return previous


@dataclass(frozen=True)
class ParserState:
    entry: ParsedEntry        # open accumulator, not yet handed out
    continued: bool = False   # previous chunk was cut at the line-length limit


def initial_state(log_file: LogFile) -> ParserState:
    return ParserState(
        entry=ParsedEntry(
            severity=Severity.INFO,
            timestamp=log_file.reference_date,
            thread_id="",
            entry_point="",
            log_file=log_file,
        )
    )


def step(state: ParserState, line: Line) -> tuple[ParserState, ParsedEntry | None]:
    """Feed one physical line; returns the next state and the entry it finished, if any."""
    current = state.entry

    if state.continued:
        # Rest of an over-long line: glue it on, never treat it as a header
        lines = current.message_lines
        if lines:
            lines = lines[:-1] + (lines[-1] + line.text,)
        else:
            lines = (line.text,)
        entry = replace(current, message_lines=lines,
                        bytes_read=current.bytes_read + len(line.raw))
        return ParserState(entry, line.truncated), None

    match = ENTRY_LINE_RE.match(line.text)
    if match is None:
        entry = replace(current, message_lines=current.message_lines + (line.text,),
                        bytes_read=current.bytes_read + len(line.raw))
        return ParserState(entry, line.truncated), None

    entry = ParsedEntry(
        severity=severity_for(match.group(1)),
        timestamp=entry_timestamp(current.timestamp, match.group(2)),
        thread_id=match.group(3),
        entry_point=match.group(4),
        log_file=current.log_file,
        message_lines=(match.group(5),),
        bytes_read=len(line.raw),
    )
    return ParserState(entry, line.truncated), current


class EntryParser:
    """Pulls entries out of one stream, lazily and in file order.

    ``bytes_read`` counts the bytes of every entry handed out so far, so it is
    always a safe offset to resume from, including after an I/O error. Set
    *stop_event* to end parsing before the next line is read; the unfinished
    accumulator is then dropped and ``stopped`` is True.
    """

    def __init__(self, log_file: LogFile, stop_event: threading.Event | None = None,
                 max_line_bytes: int = DEFAULT_MAX_LINE_BYTES):
        self._log_file = log_file
        self._stop = stop_event
        self._max_line_bytes = max_line_bytes
        self.bytes_read = 0
        self.stopped = False

    def parse(self, stream: BinaryIO) -> Iterator[ParsedEntry]:
        state = initial_state(self._log_file)
        lines = iter_lines(stream, self._max_line_bytes)

        while True:
            if self._stop is not None and self._stop.is_set():
                self.stopped = True
                return
            line = next(lines, None)
            if line is None:
                break
            state, finished = step(state, line)
            if finished is not None:
                self.bytes_read += finished.bytes_read
                yield finished

        self.bytes_read += state.entry.bytes_read
        yield state.entry


def parse_stream(stream: BinaryIO, log_file: LogFile,
                 max_line_bytes: int = DEFAULT_MAX_LINE_BYTES) -> tuple[list[ParsedEntry], int]:
    """Parse a whole stream eagerly. Returns the entries and the bytes consumed."""
    parser = EntryParser(log_file, max_line_bytes=max_line_bytes)
    entries = list(parser.parse(stream))
    return entries, parser.bytes_read
