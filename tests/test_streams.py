"""Tests for concurrent stream draining."""

import asyncio

import pytest

from wordsail.streams import StreamMultiplexer, decode_line


def make_reader(data: bytes, limit: int = 2 ** 16) -> asyncio.StreamReader:
    reader = asyncio.StreamReader(limit=limit)
    reader.feed_data(data)
    reader.feed_eof()
    return reader


class TestDecodeLine:
    """Tests for decode_line."""

    def test_strips_newline(self):
        """Test trailing CRLF is removed."""
        assert decode_line(b"ok: [web01]\r\n") == "ok: [web01]"

    def test_invalid_utf8(self):
        """Test invalid bytes are replaced instead of raising."""
        assert decode_line(b"caf\xe9\n") == "caf�"


class TestStreamMultiplexer:
    """Tests for StreamMultiplexer."""

    @pytest.mark.asyncio
    async def test_reads_both_streams(self):
        """Test every line from both streams reaches the handler."""
        seen = []
        mux = StreamMultiplexer(lambda line, stream: seen.append((stream, line)))

        await mux.run(make_reader(b"one\ntwo\nthree"), make_reader(b"err1\nerr2\n"))

        assert [line for stream, line in seen if stream == "stdout"] == ["one", "two", "three"]
        assert [line for stream, line in seen if stream == "stderr"] == ["err1", "err2"]
        assert mux.read_errors == []

    @pytest.mark.asyncio
    async def test_stdout_closes_first(self):
        """Test stderr is drained fully after stdout reaches EOF."""
        seen = []
        mux = StreamMultiplexer(lambda line, stream: seen.append((stream, line)))
        stdout = make_reader(b"")
        stderr = asyncio.StreamReader()

        async def write_stderr_later():
            await asyncio.sleep(0.01)
            stderr.feed_data(b"late 1\nlate 2\n")
            stderr.feed_eof()

        await asyncio.gather(mux.run(stdout, stderr), write_stderr_later())

        assert seen == [("stderr", "late 1"), ("stderr", "late 2")]

    @pytest.mark.asyncio
    async def test_missing_stream(self):
        """Test a None reader is skipped."""
        seen = []
        mux = StreamMultiplexer(lambda line, stream: seen.append(line))
        await mux.run(make_reader(b"only\n"), None)
        assert seen == ["only"]

    @pytest.mark.asyncio
    async def test_overlong_line_stops_stream(self):
        """Test a line over the limit is recorded as a read error and drained."""
        seen = []
        mux = StreamMultiplexer(lambda line, stream: seen.append((stream, line)))

        await mux.run(make_reader(b"x" * 200 + b"\nafter\n", limit=64), make_reader(b"err\n"))

        assert mux.read_errors == ["stdout"]
        assert ("stderr", "err") in seen
        assert all(stream == "stderr" for stream, _ in seen)

    @pytest.mark.asyncio
    async def test_handler_calls_serialized(self):
        """Test the handler never runs concurrently with itself."""
        active = 0
        max_active = 0

        def handler(line, stream):
            nonlocal active, max_active
            active += 1
            max_active = max(max_active, active)
            active -= 1

        mux = StreamMultiplexer(handler)
        lines = b"".join(f"line {i}\n".encode() for i in range(100))
        await mux.run(make_reader(lines), make_reader(lines))
        assert max_active == 1

    @pytest.mark.asyncio
    async def test_handler_error_cancels_other_reader(self):
        """Test a raising handler stops the run even while stderr stays open."""

        def handler(line, stream):
            raise RuntimeError(f"cannot display {line}")

        mux = StreamMultiplexer(handler)
        stderr = asyncio.StreamReader()

        with pytest.raises(RuntimeError, match="cannot display boom"):
            await asyncio.wait_for(mux.run(make_reader(b"boom\n"), stderr), 1)
