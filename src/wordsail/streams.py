"""Concurrent draining of a subprocess's stdout and stderr.

Both pipes must be read at the same time: a child that fills the stderr
pipe while the parent is blocked on stdout would never exit.
"""

import asyncio
import logging
from typing import Callable

from .output import STDERR, STDOUT

logger = logging.getLogger(__name__)

# asyncio's default 64 KiB line limit is too small for -vv JSON dumps
STREAM_LIMIT = 1024 * 1024
_DISCARD_CHUNK = 64 * 1024

LineHandler = Callable[[str, str], None]


def decode_line(raw: bytes) -> str:
    """Decode one raw line, replacing invalid UTF-8 and dropping the newline."""
    return raw.decode("utf-8", errors="replace").rstrip("\r\n")


class StreamMultiplexer:
    """Reads two streams concurrently and hands every line to one handler.

    The handler is always called while holding ``lock``, so it may mutate
    shared state without further synchronization. Lines keep their order
    within a stream; lines from different streams interleave in arrival
    order.

    Attributes:
        handler: Called as ``handler(line, stream_name)``
        lock: Guards every handler call
        read_errors: Names of streams that stopped early on a read error

    Example:
        >>> state = PlaybookOutput()
        >>> mux = StreamMultiplexer(lambda line, stream: state.feed(line, stream))
        >>> await mux.run(proc.stdout, proc.stderr)
    """

    def __init__(self, handler: LineHandler, lock: asyncio.Lock | None = None) -> None:
        self.handler = handler
        self.lock = lock or asyncio.Lock()
        self.read_errors: list[str] = []

    async def run(
        self,
        stdout: asyncio.StreamReader | None,
        stderr: asyncio.StreamReader | None,
    ) -> None:
        """Consume both streams; returns once both have reached EOF.

        If the handler raises, the other reader is cancelled before the
        exception propagates.
        """
        tasks = [
            asyncio.ensure_future(self._consume(STDOUT, stdout)),
            asyncio.ensure_future(self._consume(STDERR, stderr)),
        ]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _consume(self, name: str, reader: asyncio.StreamReader | None) -> None:
        if reader is None:
            return

        while True:
            try:
                raw = await reader.readline()
            except (ValueError, OSError) as e:
                # ValueError: line longer than the stream limit
                logger.warning(f"Stopped reading {name} after read error: {e}")
                self.read_errors.append(name)
                await self._discard(name, reader)
                return

            if not raw:
                return

            async with self.lock:
                self.handler(decode_line(raw), name)

    async def _discard(self, name: str, reader: asyncio.StreamReader) -> None:
        """Drain the rest of a stream so the child never blocks on a full pipe."""
        try:
            while await reader.read(_DISCARD_CHUNK):
                pass
        except OSError as e:
            logger.debug(f"Gave up draining {name}: {e}")
