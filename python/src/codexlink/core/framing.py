"""
Line framing for the child's stdout and stderr byte streams.
"""

import asyncio
import codecs
import re
from typing import Callable

_LINE_BREAK = re.compile(r"\r\n|\n|\r")

READ_CHUNK_SIZE = 64 * 1024

LineHandler = Callable[[str], None]


class LineFramer:
    """
    Split a byte stream into text lines.

    Partial lines are buffered across reads. ``\\r\\n``, ``\\n`` and a lone
    ``\\r`` all terminate a line; the terminator is stripped before the line
    is handed to ``on_line``.

    Usage:
        framer = LineFramer(lambda line: print(line))
        framer.feed(b'{"id": 1, "res')
        framer.feed(b'ult": true}\\r\\n')   # prints the joined line
        framer.close()
    """

    def __init__(self, on_line: LineHandler, encoding: str = "utf-8"):
        self.on_line = on_line
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self._closed = False

    @property
    def buffered(self) -> str:
        """Text received after the last line terminator."""
        return self._buffer

    def feed(self, data: bytes) -> None:
        """Feed a chunk of bytes, delivering every line it completes."""
        if self._closed:
            raise RuntimeError("LineFramer is closed")
        self._buffer += self._decoder.decode(data)
        self._drain(final=False)

    def close(self) -> None:
        """Flush the decoder and deliver a trailing unterminated line."""
        if self._closed:
            return
        self._closed = True
        self._buffer += self._decoder.decode(b"", final=True)
        self._drain(final=True)
        if self._buffer:
            line, self._buffer = self._buffer, ""
            self.on_line(line)

    def _drain(self, final: bool) -> None:
        buffer = self._buffer
        start = 0
        lines = []
        while True:
            match = _LINE_BREAK.search(buffer, start)
            if match is None:
                break
            # A trailing \r may be the first half of a \r\n split across reads
            if not final and match.group() == "\r" and match.end() == len(buffer):
                break
            lines.append(buffer[start : match.start()])
            start = match.end()
        self._buffer = buffer[start:]

        for line in lines:
            self.on_line(line)


async def pump_lines(
    stream: asyncio.StreamReader,
    framer: LineFramer,
    chunk_size: int = READ_CHUNK_SIZE,
) -> None:
    """Read a stream until EOF, feeding every chunk through ``framer``."""
    try:
        while True:
            chunk = await stream.read(chunk_size)
            if not chunk:
                break
            framer.feed(chunk)
    finally:
        framer.close()
