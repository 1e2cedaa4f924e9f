"""
Gateway Assembly
================

Builds the gateway's long-lived components and exposes them to routes.
One ``Gateway`` lives on ``app.state`` per application instance.
"""

from typing import Optional
from dataclasses import dataclass

from fastapi import Request

from ..config.logging import get_logger
from ..config.settings import Settings, get_settings
from ..core.events import InMemoryEventBus
from ..core.session import SessionRegistry
from ..mcp_server.backend import Backend, load_backend
from ..mcp_server.server import McpGatewayServer
from ..mcp_server.tool_adapter import OperationTable, ToolAdapter
from .sse.keepalive import KeepAliveScheduler
from .sse.notification_bridge import NotificationBridge
from .sse.transport import SSETransport

logger = get_logger(__name__)


@dataclass
class Gateway:
    """Container for the components shared by all requests."""

    settings: Settings
    registry: SessionRegistry
    transport: SSETransport
    bridge: NotificationBridge
    event_bus: InMemoryEventBus
    backend: Backend
    adapter: ToolAdapter
    server: McpGatewayServer
    keepalive: KeepAliveScheduler

    async def startup(self) -> None:
        if self.settings.sse_enabled:
            self.keepalive.start()

    async def shutdown(self) -> None:
        await self.keepalive.stop()
        closed = self.transport.close_all_sessions()
        self.bridge.destroy()
        logger.info("Gateway shut down", closed_sessions=closed)


def build_gateway(
    settings: Optional[Settings] = None,
    backend: Optional[Backend] = None,
    event_bus: Optional[InMemoryEventBus] = None,
) -> Gateway:
    """Wire registry, transport, bridge, adapter and dispatcher together."""
    settings = settings or get_settings()
    backend = backend if backend is not None else load_backend(settings.backend_factory, settings)
    event_bus = event_bus if event_bus is not None else InMemoryEventBus()

    registry = SessionRegistry()
    transport = SSETransport(registry, settings.sse_max_queued_notifications)

    bridge = NotificationBridge(
        topic_prefix=settings.notification_topic_prefix,
        forward_all_notifications=settings.forward_all_notifications,
    )
    bridge.init(event_bus)
    bridge.set_transport(transport)

    adapter = ToolAdapter(backend, OperationTable.from_settings(settings))
    server = McpGatewayServer(transport, adapter, settings)
    keepalive = KeepAliveScheduler(
        transport,
        interval_seconds=settings.sse_keepalive_interval_seconds,
        idle_timeout_seconds=settings.sse_session_idle_timeout_seconds,
    )

    logger.info(
        "Gateway assembled",
        tools=len(adapter.get_tool_names()),
        methods=len(adapter.get_method_names()),
    )
    return Gateway(
        settings=settings,
        registry=registry,
        transport=transport,
        bridge=bridge,
        event_bus=event_bus,
        backend=backend,
        adapter=adapter,
        server=server,
        keepalive=keepalive,
    )


def get_gateway(request: Request) -> Gateway:
    """FastAPI dependency returning the application's gateway."""
    return request.app.state.gateway
