"""
Backend Unit Tests
==================

Tests for the in-process backend, its authorization switch and the default
screen discovery operations.
"""

import json

import pytest

from mcp_gateway.api.gateway import build_gateway
from mcp_gateway.core.events import InMemoryEventBus
from mcp_gateway.mcp_server.backend import (
    ArtifactAuthorization,
    LocalBackend,
    OperationNotFoundError,
    load_backend,
)
from mcp_gateway.mcp_server.operations import ScreenCatalog, create_default_backend
from mcp_gateway.mcp_server.tool_adapter import DEFAULT_METHOD_OPERATIONS


@pytest.mark.unit
class TestLocalBackend:
    """Test operation registration and invocation."""

    def test_decorated_operation_is_invoked(self):
        backend = LocalBackend()

        @backend.operation("orders.count")
        def count(params):
            return {"count": params.get("n", 0)}

        assert backend.has_operation("orders.count")
        assert backend.invoke("orders.count", {"n": 3}) == {"count": 3}
        assert backend.get_operation_names() == ["orders.count"]

    def test_unknown_operation(self):
        with pytest.raises(OperationNotFoundError, match="Operation not found: missing"):
            LocalBackend().invoke("missing", {})

    def test_empty_name_rejected(self):
        with pytest.raises(ValueError):
            LocalBackend().register("", lambda params: None)

    def test_load_backend(self):
        backend = load_backend("mcp_gateway.mcp_server.operations:create_default_backend")
        assert backend.has_operation("mcp.initialize")


@pytest.mark.unit
class TestArtifactAuthorization:
    """Test the authorization switch."""

    def test_disable_reports_previous_state(self):
        authz = ArtifactAuthorization()
        assert authz.disable_authz() is False
        assert authz.disable_authz() is True
        authz.enable_authz()
        assert not authz.is_disabled


@pytest.mark.unit
class TestDefaultOperations:
    """Test the screen discovery operations."""

    def test_initialize_negotiates_version(self):
        backend = create_default_backend()

        result = backend.invoke("mcp.initialize", {"protocolVersion": "2025-03-26"})

        assert result["protocolVersion"] == "2025-03-26"
        assert result["capabilities"]["tools"] == {"listChanged": True}
        assert result["serverInfo"]["name"]

    def test_browse_root(self, screen_catalog: ScreenCatalog):
        backend = create_default_backend(screen_catalog)

        result = backend.invoke("screens.browse", {})

        assert [s["path"] for s in result["subscreens"]] == ["catalog", "orders"]

    def test_browse_children(self, screen_catalog: ScreenCatalog):
        backend = create_default_backend(screen_catalog)
        result = backend.invoke("screens.browse", {"path": "orders"})
        assert [s["path"] for s in result["subscreens"]] == ["orders/detail", "orders/find"]

    def test_browse_unknown_path(self, screen_catalog: ScreenCatalog):
        backend = create_default_backend(screen_catalog)
        with pytest.raises(ValueError, match="Screen not found"):
            backend.invoke("screens.browse", {"path": "nowhere"})

    def test_search(self, screen_catalog: ScreenCatalog):
        backend = create_default_backend(screen_catalog)
        result = backend.invoke("screens.search", {"query": "find"})
        assert result["matches"] == [{"path": "orders/find", "title": "Find Order"}]

    def test_search_requires_query(self, screen_catalog: ScreenCatalog):
        with pytest.raises(ValueError):
            create_default_backend(screen_catalog).invoke("screens.search", {})

    def test_help(self):
        backend = create_default_backend()
        assert "browse_screens" in backend.invoke("mcp.get_help", {})["topics"]
        with pytest.raises(ValueError):
            backend.invoke("mcp.get_help", {"name": "unknown"})

    def test_initialize_uses_given_settings(self, test_settings):
        settings = test_settings.model_copy(update={"server_name": "orders-gateway"})
        backend = create_default_backend(settings=settings)

        result = backend.invoke("mcp.initialize", {})

        assert result["serverInfo"]["name"] == "orders-gateway"

    def test_resources_list_exposes_screens(self, screen_catalog: ScreenCatalog):
        backend = create_default_backend(screen_catalog)

        resources = backend.invoke("mcp.resources_list", {})["resources"]

        assert [r["uri"] for r in resources] == [
            "screen://catalog",
            "screen://orders",
            "screen://orders/detail",
            "screen://orders/find",
        ]
        assert resources[3]["name"] == "Find Order"
        assert resources[3]["description"] == "Search orders"

    def test_resources_read(self, screen_catalog: ScreenCatalog):
        backend = create_default_backend(screen_catalog)

        contents = backend.invoke("mcp.resources_read", {"uri": "screen://orders/find"})["contents"]

        assert len(contents) == 1
        assert contents[0]["mimeType"] == "application/json"
        assert json.loads(contents[0]["text"]) == {
            "path": "orders/find",
            "title": "Find Order",
            "description": "Search orders",
            "fields": [],
        }

    @pytest.mark.parametrize("params", [{}, {"uri": "screen://nowhere"}, {"uri": "file:///orders"}])
    def test_resources_read_rejects_bad_uri(self, screen_catalog: ScreenCatalog, params):
        backend = create_default_backend(screen_catalog)
        with pytest.raises(ValueError):
            backend.invoke("mcp.resources_read", params)

    def test_resources_subscribe_validates_uri(self, screen_catalog: ScreenCatalog):
        backend = create_default_backend(screen_catalog)

        assert backend.invoke("mcp.resources_subscribe", {"uri": "screen://orders"}) == {}
        assert backend.invoke("mcp.resources_unsubscribe", {"uri": "screen://orders"}) == {}
        with pytest.raises(ValueError, match="Resource not found"):
            backend.invoke("mcp.resources_subscribe", {"uri": "screen://nowhere"})

    def test_prompts_get_unknown(self):
        with pytest.raises(ValueError, match="Prompt not found: summary"):
            create_default_backend().invoke("mcp.prompts_get", {"name": "summary"})

    def test_every_default_method_is_served(self):
        backend = create_default_backend()
        served_locally = {"ping", "tools/list", "tools/call"}

        missing = [
            method
            for method, operation in DEFAULT_METHOD_OPERATIONS.items()
            if method not in served_locally and not backend.has_operation(operation)
        ]

        assert missing == []


@pytest.mark.unit
class TestBackendLoading:
    """Test building backends from settings."""

    def test_load_backend_passes_settings(self, test_settings):
        settings = test_settings.model_copy(update={"server_name": "loaded-gateway"})

        backend = load_backend("mcp_gateway.mcp_server.operations:create_default_backend", settings)

        assert backend.invoke("mcp.initialize", {})["serverInfo"]["name"] == "loaded-gateway"

    def test_gateway_backend_reports_gateway_settings(self, test_settings):
        settings = test_settings.model_copy(update={"server_name": "injected-name"})
        gateway = build_gateway(settings, event_bus=InMemoryEventBus())

        outcome = gateway.server.handle_request(
            {"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}}, None, "alice"
        )

        assert outcome.body["result"]["serverInfo"]["name"] == "injected-name"
        gateway.bridge.destroy()
