"""
Record framing for event-stream bodies.

Turns an arbitrarily chunked byte stream into blank-line delimited text
records. Decoder state survives across chunks, so multi-byte characters and
delimiters split between two reads are reassembled before scanning.
"""

from __future__ import annotations

import codecs

RECORD_DELIMITER = "\n\n"


class RecordFramer:
    """Incremental splitter of an event-stream body into records."""

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self._pending_cr = False

    def feed(self, chunk: bytes) -> list[str]:
        """Consume one chunk and return every record it completes."""
        self._buffer += self._normalize(self._decoder.decode(chunk))

        records: list[str] = []
        while (split_index := self._buffer.find(RECORD_DELIMITER)) != -1:
            record = self._buffer[:split_index].strip()
            self._buffer = self._buffer[split_index + len(RECORD_DELIMITER):]
            if record:
                records.append(record)
        return records

    def flush(self) -> str | None:
        """Return the trailing partial record at end of stream, if any."""
        self._buffer += self._normalize(
            self._decoder.decode(b"", final=True), final=True
        )
        record = self._buffer.strip()
        self._buffer = ""
        return record or None

    def _normalize(self, text: str, final: bool = False) -> str:
        if self._pending_cr:
            text = "\r" + text
            self._pending_cr = False
        # Hold a trailing CR back: it may be the first half of a CRLF
        if not final and text.endswith("\r"):
            text = text[:-1]
            self._pending_cr = True
        return text.replace("\r\n", "\n").replace("\r", "\n")
