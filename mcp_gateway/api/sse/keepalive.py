"""
SSE Keep-Alive
==============

Background task that pings live streams and closes sessions that have been
idle without a stream for too long.
"""

from typing import Optional, Any
import asyncio

from ...config.logging import get_logger
from .transport import SSETransport

logger = get_logger(__name__)


class KeepAliveScheduler:
    """Periodic ping and idle-session cleanup for an SSE transport."""

    def __init__(
        self,
        transport: SSETransport,
        interval_seconds: float = 30,
        idle_timeout_seconds: float = 3600,
    ):
        self.transport = transport
        self.interval_seconds = interval_seconds
        self.idle_timeout_seconds = idle_timeout_seconds
        self.logger: Any = logger.bind(component="sse_keepalive")
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._keepalive_loop())
        self.logger.info(
            "Keep-alive task started",
            interval=self.interval_seconds,
            idle_timeout=self.idle_timeout_seconds,
        )

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self.logger.info("Keep-alive task stopped")

    def run_once(self) -> int:
        """Ping live sessions and close idle ones. Returns the number of pings sent."""
        pinged = self.transport.ping_all_sessions()
        closed = self.transport.close_idle_sessions(self.idle_timeout_seconds)
        self.logger.debug("Keep-alive pass", pinged=pinged, closed=len(closed))
        return pinged

    async def _keepalive_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.interval_seconds)
                self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error("Error in keep-alive loop", error=str(e))
