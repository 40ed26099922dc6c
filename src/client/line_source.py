"""
Async sources of user input lines for the send loop.

Both sources are plain async iterators rather than async generators, so a
cancelled read does not finalize the source and the next session can keep
reading from it.
"""

import asyncio
import sys
from typing import Optional


class QueueLineSource:
    """Lines pushed by a UI; close() ends the iteration."""

    _EOF = object()

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()

    def push(self, line: str):
        self._queue.put_nowait(line)

    def close(self):
        self._queue.put_nowait(self._EOF)

    async def readline(self) -> Optional[str]:
        """Next line, or None once the source is closed."""
        item = await self._queue.get()
        if item is self._EOF:
            self._queue.put_nowait(self._EOF)
            return None
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        line = await self.readline()
        if line is None:
            raise StopAsyncIteration
        return line


class StdinLineSource:
    """Lines read from standard input without blocking the event loop."""

    def __init__(self, stream=None):
        self._stream = stream or sys.stdin
        self._reader: Optional[asyncio.StreamReader] = None

    async def _ensure_reader(self) -> asyncio.StreamReader:
        if self._reader is None:
            loop = asyncio.get_running_loop()
            reader = asyncio.StreamReader()
            protocol = asyncio.StreamReaderProtocol(reader)
            await loop.connect_read_pipe(lambda: protocol, self._stream)
            self._reader = reader
        return self._reader

    async def readline(self) -> Optional[str]:
        """Next line without its newline, or None at end of input."""
        reader = await self._ensure_reader()
        raw = await reader.readline()
        if not raw:
            return None
        return raw.decode("utf-8", errors="replace").rstrip("\r\n")

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        line = await self.readline()
        if line is None:
            raise StopAsyncIteration
        return line
