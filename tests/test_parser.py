"""Tests for the multi-line entry parser."""

import io
import threading
from datetime import datetime, timezone

import pytest

from logbeat.models import Severity
from logbeat.parser import (
    EntryParser,
    entry_timestamp,
    log_file_for,
    parse_stream,
    severity_for,
)

LOG_PATH = "/logs/webui/fffa108f2364.log.INFO.20240101-000000.1"

SCENARIO_A = (
    b"I0101 10:00:00.000000 1 a.go:1] hello\n"
    b"  world\n"
    b"I0101 10:00:01.000000 1 a.go:2] bye\n"
)


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def _messages(entries):
    return [e.message_lines for e in entries if not e.is_empty]


def _parse(data: bytes, path: str = LOG_PATH, **kwargs):
    entries, consumed = parse_stream(io.BytesIO(data), log_file_for(path), **kwargs)
    return [e for e in entries if not e.is_empty], consumed


class TestLogFileFor:
    def test_origin_and_date_from_rotated_name(self):
        lf = log_file_for("/logs/webui/fffa108f2364.log.WARNING.20190124-164334.1")
        assert lf.origin == "webui"
        assert lf.name == "fffa108f2364.log.WARNING.20190124-164334.1"
        assert lf.reference_date == _utc(2019, 1, 24, 16, 43, 34)

    def test_unmatched_path_falls_back_to_now(self):
        now = _utc(2030, 5, 5)
        lf = log_file_for("/tmp/random.txt", now=now)
        assert lf.origin == ""
        assert lf.reference_date == now
        assert lf.path == "/tmp/random.txt"

    def test_fallback_date_truncated_to_day(self):
        first = log_file_for("/tmp/random.txt", now=_utc(2030, 5, 5, 9, 15, 30, 123))
        later = log_file_for("/tmp/random.txt", now=_utc(2030, 5, 5, 17, 2, 1, 999))
        assert first.reference_date == later.reference_date == _utc(2030, 5, 5)


class TestSeverity:
    def test_known_letters(self):
        assert severity_for("I") is Severity.INFO
        assert severity_for("W") is Severity.WARNING
        assert severity_for("E") is Severity.ERROR
        assert severity_for("F") is Severity.FATAL

    def test_unknown_letter_defaults_to_info(self):
        assert severity_for("D") is Severity.INFO


class TestEntryTimestamp:
    def test_uses_previous_year(self):
        assert entry_timestamp(_utc(2023, 3, 1), "0405 12:30:45.123456") == \
            _utc(2023, 4, 5, 12, 30, 45, 123456)

    def test_month_going_back_bumps_year(self):
        assert entry_timestamp(_utc(2023, 12, 31, 23, 59), "0101 00:00:01.000000") == \
            _utc(2024, 1, 1, 0, 0, 1)

    def test_unparsable_keeps_previous(self):
        prev = _utc(2023, 3, 1, 8)
        assert entry_timestamp(prev, "1399 10:00:00.000000") == prev
        assert entry_timestamp(prev, "0230 10:00:00.000000") == prev
        assert entry_timestamp(prev, "ab01 10:00:00") == prev

    def test_seconds_without_fraction(self):
        assert entry_timestamp(_utc(2023, 3, 1), "0301 10:00:00") == _utc(2023, 3, 1, 10)


class TestParseScenarios:
    def test_scenario_a_two_entries(self):
        entries, consumed = _parse(SCENARIO_A)
        assert len(entries) == 2
        first, second = entries
        assert first.severity is Severity.INFO
        assert first.timestamp == _utc(2024, 1, 1, 10, 0, 0)
        assert first.message_lines == ("hello", "  world")
        assert first.entry_point == "a.go:1"
        assert first.thread_id == "1"
        assert second.timestamp == _utc(2024, 1, 1, 10, 0, 1)
        assert second.message_lines == ("bye",)
        assert consumed == len(SCENARIO_A)

    def test_entry_bytes_add_up(self):
        entries, consumed = _parse(SCENARIO_A)
        assert sum(e.bytes_read for e in entries) == consumed
        assert entries[0].bytes_read == len(b"I0101 10:00:00.000000 1 a.go:1] hello\n  world\n")

    def test_scenario_c_year_rollover_and_bad_timestamp(self):
        data = (
            b"E1231 23:59:59.000000 7 a.go:1] old year\n"
            b"W0101 00:00:01.000000 7 a.go:2] new year\n"
            b"I1399 99:99:99.000000 7 a.go:3] broken clock\n"
        )
        entries, _ = _parse(data, path="/logs/api/x.log.INFO.20231231-230000.1")
        assert [e.severity for e in entries] == [Severity.ERROR, Severity.WARNING, Severity.INFO]
        assert entries[0].timestamp == _utc(2023, 12, 31, 23, 59, 59)
        assert entries[1].timestamp == _utc(2024, 1, 1, 0, 0, 1)
        assert entries[2].timestamp == entries[1].timestamp

    def test_unknown_severity_still_starts_entry(self):
        data = b"I0101 10:00:00.000000 1 a.go:1] one\nD0101 10:00:02.000000 1 a.go:9] two\n"
        entries, _ = _parse(data)
        assert len(entries) == 2
        assert entries[1].severity is Severity.INFO

    def test_malformed_header_is_continuation(self):
        data = (
            b"I0101 10:00:00.000000 1 a.go:1] one\n"
            b"I0101 10:00:00 no entry point here\n"
        )
        entries, _ = _parse(data)
        assert len(entries) == 1
        assert entries[0].message_lines == ("one", "I0101 10:00:00 no entry point here")

    def test_leading_lines_without_header(self):
        data = b"orphan line\nI0101 10:00:00.000000 1 a.go:1] one\n"
        entries, consumed = _parse(data)
        assert len(entries) == 2
        assert entries[0].message_lines == ("orphan line",)
        assert entries[0].timestamp == _utc(2024, 1, 1)
        assert consumed == len(data)

    def test_entry_count_matches_headers(self):
        lines = []
        for i in range(5):
            lines.append(f"W0101 10:00:0{i}.000000 1 a.go:{i}] msg {i}")
            lines.append(f"    detail {i}")
        data = ("\n".join(lines) + "\n").encode()
        entries, _ = _parse(data)
        assert len(entries) == 5
        assert all(len(e.message_lines) == 2 for e in entries)

    def test_empty_stream_yields_only_empty_entry(self):
        entries, consumed = parse_stream(io.BytesIO(b""), log_file_for(LOG_PATH))
        assert len(entries) == 1
        assert entries[0].is_empty
        assert consumed == 0


class TestLongLines:
    def test_truncated_chunk_is_never_a_header(self):
        header = b"I0101 10:00:00.000000 1 a.go:1] "
        assert len(header) == 32
        data = header + b"x" * 8 + b"I0101 10:00:05.000000 1 b.go:2] fake\n"
        entries, consumed = _parse(data, max_line_bytes=40)
        assert len(entries) == 1
        assert entries[0].message_lines == ("xxxxxxxxI0101 10:00:05.000000 1 b.go:2] fake",)
        assert consumed == len(data)

    def test_long_continuation_line(self):
        data = b"I0101 10:00:00.000000 1 a.go:1] start\n" + b"y" * 100 + b"\n"
        entries, consumed = _parse(data, max_line_bytes=40)
        assert entries[0].message_lines == ("start", "y" * 100)
        assert consumed == len(data)


class TestResume:
    def test_resume_at_entry_boundary_matches_full_parse(self):
        data = SCENARIO_A + b"E0101 10:00:02.000000 1 a.go:3] tail\n  more\n"
        full, _ = _parse(data)

        first_entry = b"I0101 10:00:00.000000 1 a.go:1] hello\n  world\n"
        part1, consumed1 = _parse(data[:len(first_entry)])
        assert consumed1 == len(first_entry)

        stream = io.BytesIO(data)
        stream.seek(consumed1)
        part2, consumed2 = parse_stream(stream, log_file_for(LOG_PATH))
        part2 = [e for e in part2 if not e.is_empty]

        def key(e):
            return (e.severity, e.timestamp, e.message_lines)

        assert [key(e) for e in part1 + part2] == [key(e) for e in full]
        assert consumed1 + consumed2 == len(data)

    def test_every_offset_is_consumed_exactly(self):
        for split in range(len(SCENARIO_A) + 1):
            _, consumed1 = _parse(SCENARIO_A[:split])
            _, consumed2 = _parse(SCENARIO_A[split:])
            assert consumed1 == split
            assert consumed1 + consumed2 == len(SCENARIO_A)


class TestStop:
    def test_stop_before_start(self):
        stop = threading.Event()
        stop.set()
        parser = EntryParser(log_file_for(LOG_PATH), stop)
        assert list(parser.parse(io.BytesIO(SCENARIO_A))) == []
        assert parser.stopped
        assert parser.bytes_read == 0

    def test_stop_keeps_finished_entries_only(self):
        stop = threading.Event()
        parser = EntryParser(log_file_for(LOG_PATH), stop)
        got = []
        for entry in parser.parse(io.BytesIO(SCENARIO_A)):
            if entry.is_empty:
                continue
            got.append(entry)
            stop.set()
        assert [e.message_lines for e in got] == [("hello", "  world")]
        assert parser.stopped
        assert parser.bytes_read == len(b"I0101 10:00:00.000000 1 a.go:1] hello\n  world\n")


class _FailingStream(io.BytesIO):
    def __init__(self, data: bytes, fail_after: int):
        super().__init__(data)
        self._reads = 0
        self._fail_after = fail_after

    def readline(self, size=-1):
        self._reads += 1
        if self._reads > self._fail_after:
            raise OSError("disk went away")
        return super().readline(size)


class TestIOErrors:
    def test_partial_count_survives_error(self):
        parser = EntryParser(log_file_for(LOG_PATH))
        got = []
        with pytest.raises(OSError):
            for entry in parser.parse(_FailingStream(SCENARIO_A, fail_after=3)):
                got.append(entry)
        assert _messages(got) == [("hello", "  world")]
        assert parser.bytes_read == len(b"I0101 10:00:00.000000 1 a.go:1] hello\n  world\n")
