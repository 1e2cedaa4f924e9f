"""
SSE Sinks
=========

Write targets for SSE frames. The transport writes synchronously from any
thread; ``StreamSink`` hands the frames over to the event loop that serves
the HTTP response.
"""

from typing import Optional, List, AsyncIterator
from abc import ABC, abstractmethod
import asyncio
import threading


class SinkWriteError(Exception):
    """Raised when a sink can no longer accept frames."""


class Sink(ABC):
    """Synchronous write target for SSE frames."""

    @abstractmethod
    def write(self, data: str) -> None:
        """Buffer ``data`` for the next flush."""

    @abstractmethod
    def flush(self) -> None:
        """Push buffered data to the client. Raises SinkWriteError on failure."""

    @abstractmethod
    def check_error(self) -> bool:
        """True once the sink has failed or been closed."""

    @abstractmethod
    def close(self) -> None:
        """Close the sink. Further writes fail."""


class StreamSink(Sink):
    """Sink feeding an asyncio stream that backs a StreamingResponse.

    A stream that falls ``max_pending`` frames behind is treated as stalled
    and reports an error from then on.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, max_pending: int = 256):
        self._loop = loop
        self._queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._lock = threading.Lock()
        self._buffer: List[str] = []
        self._pending = 0
        self._closed = False
        self._failed = False
        self.max_pending = max_pending

    @property
    def pending(self) -> int:
        with self._lock:
            return self._pending

    def write(self, data: str) -> None:
        with self._lock:
            if self._closed or self._failed:
                raise SinkWriteError("SSE stream is not writable")
            self._buffer.append(data)

    def flush(self) -> None:
        with self._lock:
            if not self._buffer:
                return
            chunk = "".join(self._buffer)
            self._buffer.clear()
            if self._closed or self._failed:
                raise SinkWriteError("SSE stream is not writable")
            if self._pending >= self.max_pending:
                self._failed = True
                raise SinkWriteError("SSE stream stalled")
            self._pending += 1

        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, chunk)
        except RuntimeError as e:
            # Event loop already closed
            with self._lock:
                self._failed = True
            raise SinkWriteError(str(e)) from e

    def check_error(self) -> bool:
        with self._lock:
            return self._closed or self._failed or self._loop.is_closed()

    def mark_disconnected(self) -> None:
        """Flag the client as gone; the sink stops accepting frames."""
        with self._lock:
            self._failed = True

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._buffer.clear()
        if not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._queue.put_nowait, None)

    async def stream(self) -> AsyncIterator[str]:
        """Yield flushed chunks until the sink is closed."""
        while True:
            chunk = await self._queue.get()
            if chunk is None:
                break
            with self._lock:
                self._pending -= 1
            yield chunk
