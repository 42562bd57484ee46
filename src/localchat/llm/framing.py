"""Byte-to-record framing for newline-delimited JSON streams.

The server sends one JSON object per line, but network reads split that
text anywhere: inside a record, inside a multi-byte UTF-8 character, or
both.  ``Utf8StreamDecoder`` turns raw reads into text without ever
emitting a replacement character for a split codepoint, and ``LineFramer``
turns that text into complete records.
"""

from __future__ import annotations

import codecs


class Utf8StreamDecoder:
    """Incremental UTF-8 decoder that holds back incomplete sequences."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def decode(self, chunk: bytes) -> str:
        return self._decoder.decode(chunk, final=False)

    def flush(self) -> str:
        """Drain whatever is still buffered at end of input."""
        return self._decoder.decode(b"", final=True)


class LineFramer:
    """Split incremental text into newline-terminated records.

    ``feed()`` returns every record completed by the new fragment and keeps
    the trailing partial record for the next call.  Records are trimmed and
    blank ones are dropped.
    """

    def __init__(self) -> None:
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, text: str) -> list[str]:
        if not text:
            return []
        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")
        records = []
        for line in lines:
            stripped = line.strip()
            if stripped:
                records.append(stripped)
        return records

    def flush(self) -> str | None:
        """Return the withheld partial record at end of input, if any."""
        tail, self._buffer = self._buffer.strip(), ""
        return tail or None
