"""
SSE Events
==========

Server-Sent Events type definitions and formatting functions.
Defines the frame types written to MCP sessions and the SSE wire format.
"""

from typing import Optional, Dict, Any, List, Union
from enum import Enum
import json
import time


class SSEEventType(str, Enum):
    """Server-Sent Events event types."""

    # JSON-RPC traffic
    MESSAGE = "message"

    # Connection lifecycle
    ENDPOINT = "endpoint"
    CONNECT = "connect"
    PING = "ping"
    CLOSE = "close"


def format_sse_event(
    event_type: Union[SSEEventType, str],
    data: Union[Dict[str, Any], str],
    event_id: Optional[int] = None,
) -> str:
    """
    Format data for Server-Sent Events protocol.

    Args:
        event_type: Event type identifier
        data: Event data; dictionaries are JSON encoded, strings are written as is
        event_id: Optional event ID for client-side event tracking

    Returns:
        Formatted SSE message string
    """
    lines: List[str] = []

    if event_id is not None:
        lines.append(f"id: {event_id}")

    if isinstance(event_type, SSEEventType):
        event_type = event_type.value
    lines.append(f"event: {event_type}")

    if isinstance(data, str):
        payload = data
    else:
        payload = json.dumps(data, default=str, separators=(",", ":"))
    lines.append(f"data: {payload}")

    # SSE protocol requires double newline at end
    lines.append("")
    lines.append("")

    return "\n".join(lines)


def parse_sse_frames(raw: str) -> List[Dict[str, Any]]:
    """Split a raw SSE stream into ``{"id", "event", "data"}`` dictionaries.

    JSON data is decoded; anything else is returned as the raw string.
    """
    frames: List[Dict[str, Any]] = []
    for block in raw.split("\n\n"):
        if not block.strip():
            continue
        frame: Dict[str, Any] = {}
        for line in block.split("\n"):
            key, _, value = line.partition(": ")
            if key == "id":
                frame["id"] = int(value)
            elif key in ("event", "data"):
                frame[key] = value
        if "data" in frame:
            try:
                frame["data"] = json.loads(frame["data"])
            except json.JSONDecodeError:
                pass
        frames.append(frame)
    return frames


def create_ping_payload(session_id: str) -> Dict[str, Any]:
    """Create keep-alive ping data."""
    return {"type": "ping", "timestamp": int(time.time() * 1000), "sessionId": session_id}


def create_close_payload(session_id: str) -> Dict[str, Any]:
    """Create goodbye data written before a session is closed."""
    return {"type": "disconnected", "sessionId": session_id, "timestamp": int(time.time() * 1000)}


def create_connect_payload(session_id: str, server_name: str, version: str) -> Dict[str, Any]:
    """Create the first data frame of a stream."""
    return {
        "type": "connected",
        "sessionId": session_id,
        "timestamp": int(time.time() * 1000),
        "serverInfo": {"name": server_name, "version": version},
    }
