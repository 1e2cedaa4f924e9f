"""
Test Configuration
==================

Pytest configuration with fixtures for all test types.
Provides isolated registries, transports, fake backends and a test client.
"""

import os

os.environ.setdefault("MCP_GATEWAY_ENVIRONMENT", "testing")

from typing import Dict, Generator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic_settings import SettingsConfigDict

# Import application modules
from mcp_gateway.config.settings import Settings
from mcp_gateway.core.events import InMemoryEventBus
from mcp_gateway.core.session import SessionRegistry
from mcp_gateway.api.main import create_app
from mcp_gateway.api.sse.notification_bridge import NotificationBridge
from mcp_gateway.api.sse.transport import SSETransport
from mcp_gateway.mcp_server.operations import Screen, ScreenCatalog, create_default_backend
from mcp_gateway.mcp_server.tool_adapter import ToolAdapter

from tests.utils.mocks import FakeBackend, RecordingSink


# Test settings override
class GatewayTestSettings(Settings):
    """Test-specific settings."""

    environment: str = "testing"
    debug: bool = True
    log_level: str = "DEBUG"
    skip_api_key_validation: bool = False
    api_keys: Dict[str, str] = {"alice-key": "alice", "bob-key": "bob"}
    sse_keepalive_interval_seconds: int = 3600
    sse_max_queued_notifications: int = 50

    model_config = SettingsConfigDict(env_file=".env.test", env_prefix="MCP_GATEWAY_")


@pytest.fixture
def test_settings() -> GatewayTestSettings:
    """Test settings fixture."""
    return GatewayTestSettings()


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def transport(registry: SessionRegistry) -> SSETransport:
    return SSETransport(registry, max_queued_notifications=50)


@pytest.fixture
def event_bus() -> InMemoryEventBus:
    return InMemoryEventBus()


@pytest.fixture
def bridge(event_bus: InMemoryEventBus, transport: SSETransport) -> NotificationBridge:
    bridge = NotificationBridge()
    bridge.init(event_bus)
    bridge.set_transport(transport)
    yield bridge
    bridge.destroy()


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def adapter(fake_backend: FakeBackend) -> ToolAdapter:
    return ToolAdapter(fake_backend)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def screen_catalog() -> ScreenCatalog:
    return ScreenCatalog(
        [
            Screen(path="orders", title="Orders"),
            Screen(path="orders/find", title="Find Order", description="Search orders"),
            Screen(
                path="orders/detail",
                title="Order Detail",
                fields=[{"name": "orderId", "type": "text"}],
            ),
            Screen(path="catalog", title="Catalog"),
        ]
    )


@pytest.fixture
def app(test_settings: GatewayTestSettings, screen_catalog: ScreenCatalog) -> FastAPI:
    return create_app(
        settings=test_settings,
        backend=create_default_backend(screen_catalog, settings=test_settings),
        event_bus=InMemoryEventBus(),
    )


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    """Test client with the application lifespan running."""
    with TestClient(app) as test_client:
        yield test_client
