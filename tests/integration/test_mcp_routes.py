"""
MCP HTTP Integration Tests
==========================

End-to-end tests of the HTTP surface through the FastAPI test client:
- Authentication and health
- The initialize handshake and session header
- JSON-RPC error mapping to HTTP statuses
- Legacy message endpoint, session close and administrative pushes

Long-lived SSE streams are covered by the transport and sink unit tests;
here only the stream endpoints' rejection paths are exercised.
"""

from typing import Dict

import pytest
from fastapi.testclient import TestClient

ALICE = {"X-API-Key": "alice-key", "Accept": "application/json, text/event-stream"}
BOB = {"X-API-Key": "bob-key", "Accept": "application/json, text/event-stream"}


def rpc(method, params=None, request_id=1):
    payload = {"jsonrpc": "2.0", "method": method}
    if request_id is not None:
        payload["id"] = request_id
    if params is not None:
        payload["params"] = params
    return payload


def with_session(headers: Dict[str, str], session_id: str) -> Dict[str, str]:
    return {**headers, "Mcp-Session-Id": session_id}


def open_session(client: TestClient, headers: Dict[str, str] = ALICE) -> str:
    response = client.post("/mcp", json=rpc("initialize", {"protocolVersion": "2025-06-18"}), headers=headers)
    assert response.status_code == 200
    session_id = response.headers["Mcp-Session-Id"]
    ack = client.post(
        "/mcp", json=rpc("notifications/initialized", request_id=None), headers=with_session(headers, session_id)
    )
    assert ack.status_code == 202
    return session_id


@pytest.mark.integration
class TestHealthAndAuth:
    """Test health and authentication."""

    def test_health(self, client: TestClient):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["total_sessions"] == 0
        assert "X-Request-ID" in response.headers

    def test_missing_api_key(self, client: TestClient):
        response = client.post("/mcp", json=rpc("initialize"))

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "ApiKey"
        body = response.json()
        assert body["jsonrpc"] == "2.0"
        assert body["error"]["code"] == -32003

    def test_invalid_api_key(self, client: TestClient):
        response = client.post("/mcp", json=rpc("initialize"), headers={"X-API-Key": "wrong"})
        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Invalid API key"


@pytest.mark.integration
class TestJsonRpcEndpoint:
    """Test POST /mcp."""

    def test_initialize_returns_session_header(self, client: TestClient):
        response = client.post("/mcp", json=rpc("initialize", {"protocolVersion": "2025-06-18"}), headers=ALICE)

        assert response.status_code == 200
        session_id = response.headers["Mcp-Session-Id"]
        body = response.json()
        assert body["id"] == 1
        assert body["result"]["sessionId"] == session_id
        assert body["result"]["protocolVersion"] == "2025-06-18"

    def test_tools_list_and_call(self, client: TestClient):
        session_id = open_session(client)
        headers = with_session(ALICE, session_id)

        listed = client.post("/mcp", json=rpc("tools/list"), headers=headers).json()
        assert {"browse_screens", "search_screens"} <= {t["name"] for t in listed["result"]["tools"]}

        called = client.post(
            "/mcp",
            json=rpc("tools/call", {"name": "search_screens", "arguments": {"query": "order"}}, 2),
            headers=headers,
        ).json()
        assert called["id"] == 2
        assert [m["path"] for m in called["result"]["matches"]] == [
            "orders",
            "orders/detail",
            "orders/find",
        ]

    def test_unknown_tool_is_jsonrpc_error(self, client: TestClient):
        session_id = open_session(client)

        response = client.post(
            "/mcp",
            json=rpc("tools/call", {"name": "nonexistent", "arguments": {}}),
            headers=with_session(ALICE, session_id),
        )

        assert response.status_code == 200
        assert response.json()["error"]["code"] == -32601

    def test_other_notification_is_204(self, client: TestClient):
        session_id = open_session(client)
        response = client.post(
            "/mcp",
            json=rpc("notifications/cancelled", {"requestId": 1}, request_id=None),
            headers=with_session(ALICE, session_id),
        )
        assert response.status_code == 204
        assert response.content == b""

    def test_missing_session_header(self, client: TestClient):
        response = client.post("/mcp", json=rpc("tools/list"), headers=ALICE)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32600

    def test_unknown_session(self, client: TestClient):
        response = client.post("/mcp", json=rpc("tools/list"), headers=with_session(ALICE, "missing"))
        assert response.status_code == 404

    def test_foreign_session(self, client: TestClient):
        session_id = open_session(client, ALICE)
        response = client.post("/mcp", json=rpc("tools/list"), headers=with_session(BOB, session_id))
        assert response.status_code == 403
        assert response.json()["error"]["code"] == -32600

    def test_parse_error(self, client: TestClient):
        response = client.post(
            "/mcp", content=b"{broken", headers={**ALICE, "Content-Type": "application/json"}
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32700

    def test_invalid_envelope(self, client: TestClient):
        response = client.post("/mcp", json={"jsonrpc": "1.0", "id": 1, "method": "ping"}, headers=ALICE)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32600

    def test_unsupported_protocol_version(self, client: TestClient):
        response = client.post(
            "/mcp",
            json=rpc("initialize"),
            headers={**ALICE, "MCP-Protocol-Version": "1999-01-01"},
        )
        assert response.status_code == 400

    def test_unacceptable_accept_header(self, client: TestClient):
        response = client.post(
            "/mcp", json=rpc("initialize"), headers={**ALICE, "Accept": "text/html"}
        )
        assert response.status_code == 400

    def test_method_before_initialized(self, client: TestClient):
        gateway = client.app.state.gateway
        gateway.transport.open_session("pending", "alice")

        response = client.post("/mcp", json=rpc("resources/list"), headers=with_session(ALICE, "pending"))

        assert response.status_code == 200
        assert "Session not initialized" in response.json()["error"]["message"]


@pytest.mark.integration
@pytest.mark.sse
class TestSessionEndpoints:
    """Test the legacy message endpoint, stream rejections and session close."""

    def test_message_endpoint_queues_response(self, client: TestClient):
        session_id = open_session(client)

        response = client.post(
            f"/mcp/message?sessionId={session_id}", json=rpc("tools/list", request_id=7), headers=ALICE
        )

        assert response.status_code == 202
        assert response.json() == {"accepted": True, "delivered": False}
        session = client.app.state.gateway.registry.get_session(session_id)
        assert session.notification_queue[0]["id"] == 7

    def test_message_endpoint_parse_error(self, client: TestClient):
        session_id = open_session(client)
        response = client.post(
            f"/mcp/message?sessionId={session_id}",
            content=b"nope",
            headers={**ALICE, "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32700

    def test_message_endpoint_requires_session_id(self, client: TestClient):
        response = client.post("/mcp/message", json=rpc("ping"), headers=ALICE)
        assert response.status_code == 422

    def test_stream_unknown_session(self, client: TestClient):
        response = client.get("/mcp", headers=with_session(ALICE, "missing"))
        assert response.status_code == 404
        assert response.json()["error_code"] == "404"

    def test_stream_foreign_session(self, client: TestClient):
        session_id = open_session(client, ALICE)
        response = client.get("/sse", headers=with_session(BOB, session_id))
        assert response.status_code == 403

    def test_delete_session(self, client: TestClient):
        session_id = open_session(client)
        headers = with_session(ALICE, session_id)

        assert client.delete("/mcp", headers=with_session(BOB, session_id)).status_code == 403
        assert client.delete("/mcp", headers=headers).status_code == 204
        assert client.delete("/mcp", headers=headers).status_code == 404
        assert client.post("/mcp", json=rpc("tools/list"), headers=headers).status_code == 404

    def test_delete_without_header(self, client: TestClient):
        assert client.delete("/mcp", headers=ALICE).status_code == 400

    def test_stats(self, client: TestClient):
        open_session(client, ALICE)
        open_session(client, BOB)

        stats = client.get("/mcp/stats", headers=ALICE).json()

        assert stats["transportType"] == "SSE"
        assert stats["totalSessions"] == 2
        assert stats["sessionsPerUser"] == {"alice": 1, "bob": 1}
        assert stats["activeSessions"] == 0


@pytest.mark.integration
class TestAdministrativePushes:
    """Test broadcast, per-user and event publishing endpoints."""

    def test_broadcast(self, client: TestClient):
        open_session(client, ALICE)
        open_session(client, BOB)

        response = client.post(
            "/mcp/notifications/broadcast",
            json={"topic": "maintenance", "title": "Restart at noon"},
            headers=ALICE,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["delivered"] == 0
        assert data["queued"] == 2

    def test_notify_users(self, client: TestClient):
        alice_session = open_session(client, ALICE)
        bob_session = open_session(client, BOB)

        response = client.post(
            "/mcp/notifications/users",
            json={"topic": "orders", "message": {"id": 1}, "user_ids": ["bob"]},
            headers=ALICE,
        )

        assert response.status_code == 200
        assert response.json()["users"] == 1
        registry = client.app.state.gateway.registry
        assert len(registry.get_session(bob_session).notification_queue) == 1
        assert len(registry.get_session(alice_session).notification_queue) == 0

    def test_notify_users_requires_targets(self, client: TestClient):
        response = client.post(
            "/mcp/notifications/users", json={"topic": "orders", "user_ids": []}, headers=ALICE
        )
        assert response.status_code == 422

    def test_publish_event(self, client: TestClient):
        session_id = open_session(client, ALICE)

        response = client.post(
            "/mcp/events",
            json={"topic": "orders", "title": "Shipped", "notify_user_ids": ["alice"]},
            headers=ALICE,
        )

        assert response.status_code == 202
        assert response.json() == {"success": True, "topic": "orders", "listeners": 1}
        queued = client.app.state.gateway.registry.get_session(session_id).notification_queue
        assert queued[0]["method"] == "notifications/message"
        assert queued[0]["params"]["title"] == "Shipped"

    def test_admin_endpoints_require_auth(self, client: TestClient):
        response = client.post("/mcp/notifications/broadcast", json={"topic": "t"})
        assert response.status_code == 401
