"""
Server-Sent Events (SSE) Infrastructure
======================================

SSE transport for delivering MCP messages and notifications to sessions.

Components:
- Transport: Live writes, per-session queuing, fan-out and keep-alive pings
- Sink: Synchronous frame targets bridged onto asyncio streams
- Event System: Defines event types and formatting for SSE protocol
- Notification Bridge: Forwards domain events as MCP notifications
- Models: Pydantic models for delivery reports and statistics
"""

from .transport import McpTransport, SSETransport, to_jsonrpc_notification
from .events import SSEEventType, format_sse_event
from .sink import Sink, SinkWriteError, StreamSink
from .models import DeliveryReport, TransportStatistics
from .notification_bridge import NotificationBridge
from .keepalive import KeepAliveScheduler

__all__ = [
    "McpTransport",
    "SSETransport",
    "to_jsonrpc_notification",
    "SSEEventType",
    "format_sse_event",
    "Sink",
    "SinkWriteError",
    "StreamSink",
    "DeliveryReport",
    "TransportStatistics",
    "NotificationBridge",
    "KeepAliveScheduler",
]
