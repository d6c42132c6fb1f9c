"""Bounded line reader for binary log streams."""

import codecs
from dataclasses import dataclass
from typing import BinaryIO, Iterator

DEFAULT_MAX_LINE_BYTES = 4096


@dataclass(frozen=True)
class Line:
    raw: bytes        # bytes consumed from the stream, terminator included
    text: str         # decoded content without the line terminator
    truncated: bool   # True when the physical line continues in the next chunk


def iter_lines(stream: BinaryIO, max_line_bytes: int = DEFAULT_MAX_LINE_BYTES) -> Iterator[Line]:
    """Yield lines of at most *max_line_bytes*; longer lines arrive as several
    chunks, all but the last flagged ``truncated``.

    I/O errors from the stream propagate to the caller.
    """
    if max_line_bytes < 2:
        raise ValueError("max_line_bytes must be at least 2")
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    while True:
        raw = stream.readline(max_line_bytes)
        if not raw:
            tail = decoder.decode(b"", final=True)
            if tail:
                # Dangling bytes of an incomplete multi-byte sequence at EOF
                yield Line(raw=b"", text=tail, truncated=False)
            return

        if raw.endswith(b"\n"):
            body = raw[:-2] if raw.endswith(b"\r\n") else raw[:-1]
            yield Line(raw=raw, text=decoder.decode(body, final=True), truncated=False)
        elif len(raw) >= max_line_bytes:
            yield Line(raw=raw, text=decoder.decode(raw), truncated=True)
        else:
            # Last line of the stream without a terminator
            yield Line(raw=raw, text=decoder.decode(raw, final=True), truncated=False)
