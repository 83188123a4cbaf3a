"""
Tests for LineFramer and pump_lines.
"""

import asyncio
import sys
import os

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from codexlink.core.framing import LineFramer, pump_lines


def make_framer():
    lines = []
    return LineFramer(lines.append), lines


class TestLineFramer:
    """Test splitting byte chunks into lines."""

    def test_single_line(self):
        """A complete line is delivered without its terminator."""
        framer, lines = make_framer()
        framer.feed(b'{"id":1,"result":null}\n')
        assert lines == ['{"id":1,"result":null}']
        assert framer.buffered == ""

    def test_multiple_lines_in_one_chunk(self):
        """Several lines in one chunk are delivered in order."""
        framer, lines = make_framer()
        framer.feed(b"a\nb\nc\n")
        assert lines == ["a", "b", "c"]

    def test_partial_line_is_buffered(self):
        """A line split over chunks is delivered once complete."""
        framer, lines = make_framer()
        framer.feed(b'{"id": 1, "res')
        assert lines == []
        assert framer.buffered == '{"id": 1, "res'
        framer.feed(b'ult": true}\n')
        assert lines == ['{"id": 1, "result": true}']

    def test_crlf_terminator(self):
        """\\r\\n terminates a line."""
        framer, lines = make_framer()
        framer.feed(b"one\r\ntwo\r\n")
        assert lines == ["one", "two"]

    def test_lone_cr_terminator(self):
        """A lone \\r followed by more text terminates a line."""
        framer, lines = make_framer()
        framer.feed(b"one\rtwo\n")
        assert lines == ["one", "two"]

    def test_crlf_split_across_chunks(self):
        """\\r at the end of a chunk and \\n at the start of the next is one break."""
        framer, lines = make_framer()
        framer.feed(b"one\r")
        assert lines == []
        framer.feed(b"\ntwo\n")
        assert lines == ["one", "two"]

    def test_trailing_cr_then_text(self):
        """A held \\r followed by text ends the previous line."""
        framer, lines = make_framer()
        framer.feed(b"one\r")
        framer.feed(b"two\n")
        assert lines == ["one", "two"]

    def test_empty_lines_are_delivered(self):
        """Consecutive terminators yield empty lines."""
        framer, lines = make_framer()
        framer.feed(b"a\n\nb\n")
        assert lines == ["a", "", "b"]

    def test_multibyte_character_split(self):
        """A UTF-8 character split across chunks is reassembled."""
        framer, lines = make_framer()
        encoded = "héllo 世界\n".encode("utf-8")
        for i in range(len(encoded)):
            framer.feed(encoded[i : i + 1])
        assert lines == ["héllo 世界"]

    def test_close_flushes_trailing_line(self):
        """An unterminated final line is delivered on close."""
        framer, lines = make_framer()
        framer.feed(b"a\nlast")
        framer.close()
        assert lines == ["a", "last"]

    def test_close_flushes_held_cr(self):
        """A held \\r is a terminator at end of stream."""
        framer, lines = make_framer()
        framer.feed(b"last\r")
        framer.close()
        assert lines == ["last"]

    def test_close_is_idempotent(self):
        """Closing twice delivers nothing more."""
        framer, lines = make_framer()
        framer.feed(b"x")
        framer.close()
        framer.close()
        assert lines == ["x"]

    def test_feed_after_close(self):
        """Feeding a closed framer raises."""
        framer, _ = make_framer()
        framer.close()
        with pytest.raises(RuntimeError):
            framer.feed(b"x\n")

    def test_invalid_utf8_replaced(self):
        """Undecodable bytes are replaced rather than raising."""
        framer, lines = make_framer()
        framer.feed(b"a\xffb\n")
        assert lines == ["a�b"]


class TestPumpLines:
    """Test reading a StreamReader to EOF."""

    @pytest.mark.asyncio
    async def test_pump_until_eof(self):
        """All lines are delivered, including a trailing partial one."""
        reader = asyncio.StreamReader()
        reader.feed_data(b"one\ntw")
        reader.feed_data(b"o\nthree")
        reader.feed_eof()

        framer, lines = make_framer()
        await pump_lines(reader, framer)

        assert lines == ["one", "two", "three"]

    @pytest.mark.asyncio
    async def test_pump_small_chunks(self):
        """Chunk size does not affect framing."""
        reader = asyncio.StreamReader()
        reader.feed_data(b'{"id":1,"result":"\xe4\xb8\x96"}\r\n{"method":"m"}\n')
        reader.feed_eof()

        framer, lines = make_framer()
        await pump_lines(reader, framer, chunk_size=3)

        assert lines == ['{"id":1,"result":"世"}', '{"method":"m"}']
