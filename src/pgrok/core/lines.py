"""Incremental line splitting for process output streams."""

from __future__ import annotations

import codecs
import re

_TERMINATOR = re.compile(r"\r\n|\n|\r")


class LineSplitter:
    """Accumulates decoded chunks and yields complete lines.

    Lines end at ``\\n``, ``\\r\\n`` or a bare ``\\r``. The unterminated tail is held
    back until more data arrives or :meth:`flush` is called at end of stream.
    Lines are stripped of surrounding whitespace and empty lines are dropped.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        """Text received since the last terminator."""
        return self._buffer

    def feed(self, chunk: bytes) -> list[str]:
        """Add a chunk of raw output and return the lines it completed."""
        self._buffer += self._decoder.decode(chunk)
        parts = _TERMINATOR.split(self._buffer)
        # A trailing "\r" may be the first half of "\r\n"; splitting on it now
        # only yields an empty line later, which is dropped.
        self._buffer = parts.pop()
        return [line for line in (part.strip() for part in parts) if line]

    def flush(self) -> list[str]:
        """Return the buffered remainder at end of stream."""
        self._buffer += self._decoder.decode(b"", final=True)
        tail = self._buffer.strip()
        self._buffer = ""
        return [tail] if tail else []
