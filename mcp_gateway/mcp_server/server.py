"""
MCP Server Implementation
========================

JSON-RPC 2.0 dispatcher for the MCP method vocabulary. Validates envelopes,
enforces session ownership and the initialize handshake, answers the
session-level methods itself and hands everything else to the tool adapter.

The dispatcher is synchronous and framework independent; the HTTP layer
turns an ``RpcOutcome`` into a response.
"""

from typing import Any, Dict, Optional, Tuple
from dataclasses import dataclass
from http import HTTPStatus
import json
import time
import uuid

from pydantic import ValidationError

from ..api.sse.transport import SSETransport
from ..config.logging import get_logger
from ..config.settings import Settings, get_settings
from ..core.session import SessionState
from ..models.schemas import (
    JSONRPC_VERSION,
    JSONRPCRequest,
    JSONRPCResponse,
    RequestId,
    RpcErrorCode,
    error_result,
    is_error_result,
)
from .tool_adapter import ToolAdapter

logger = get_logger(__name__)

ACTIVITY_UPDATE_INTERVAL_SECONDS = 30

SESSIONLESS_METHODS = frozenset({"initialize", "notifications/initialized"})
PRE_INITIALIZE_METHODS = frozenset({"initialize", "ping"})
UNTRACKED_ACTIVITY_METHODS = frozenset({"ping", "tools/list"})

# Notifications a client may also send as requests; acknowledged with an empty result
CLIENT_NOTIFICATIONS = frozenset(
    {
        "notifications/tools/list_changed",
        "notifications/resources/list_changed",
        "notifications/prompts/list_changed",
        "notifications/roots/list_changed",
        "notifications/resources/updated",
        "notifications/progress",
        "notifications/message",
        "logging/setLevel",
    }
)


@dataclass
class RpcOutcome:
    """Result of handling one HTTP-borne JSON-RPC payload."""

    status_code: int
    body: Optional[Dict[str, Any]] = None
    session_id: Optional[str] = None


def rpc_error(
    status_code: int,
    code: int,
    message: str,
    request_id: Optional[RequestId] = None,
    session_id: Optional[str] = None,
) -> RpcOutcome:
    body = JSONRPCResponse.failure(code, message, request_id).to_dict()
    return RpcOutcome(status_code=status_code, body=body, session_id=session_id)


class McpGatewayServer:
    """JSON-RPC dispatcher bound to a transport and a tool adapter."""

    def __init__(
        self,
        transport: SSETransport,
        adapter: ToolAdapter,
        settings: Optional[Settings] = None,
    ):
        self.transport = transport
        self.registry = transport.registry
        self.adapter = adapter
        self.settings = settings or get_settings()
        self.logger: Any = logger.bind(component="mcp_server")

    # Entry points

    def handle_body(
        self,
        body: bytes,
        session_id: Optional[str],
        user_id: Optional[str],
        protocol_version: Optional[str] = None,
    ) -> RpcOutcome:
        """Parse a raw request body and dispatch it."""
        if not body or not body.strip():
            return rpc_error(HTTPStatus.BAD_REQUEST, RpcErrorCode.INVALID_PARAMS, "Empty request body")
        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            return rpc_error(HTTPStatus.BAD_REQUEST, RpcErrorCode.PARSE_ERROR, f"Invalid JSON: {e}")
        return self.handle_request(payload, session_id, user_id, protocol_version)

    def handle_request(
        self,
        payload: Any,
        session_id: Optional[str],
        user_id: Optional[str],
        protocol_version: Optional[str] = None,
    ) -> RpcOutcome:
        """
        Dispatch one JSON-RPC payload received on the streamable HTTP endpoint.

        Args:
            payload: Decoded JSON body
            session_id: Value of the ``Mcp-Session-Id`` header
            user_id: Authenticated user
            protocol_version: Value of the ``MCP-Protocol-Version`` header

        Returns:
            RpcOutcome with the HTTP status, optional body and session id
        """
        supported = self.settings.supported_protocol_versions
        if protocol_version and protocol_version not in supported:
            return rpc_error(
                HTTPStatus.BAD_REQUEST,
                RpcErrorCode.INVALID_REQUEST,
                f"Unsupported MCP protocol version: {protocol_version}. "
                f"Supported: {', '.join(supported)}",
            )

        request, failure = self._parse_envelope(payload)
        if request is None:
            return failure  # type: ignore[return-value]

        method = request.method
        if not session_id and method not in SESSIONLESS_METHODS:
            return rpc_error(
                HTTPStatus.BAD_REQUEST,
                RpcErrorCode.INVALID_REQUEST,
                "Mcp-Session-Id header required for non-initialize requests",
                request.id,
            )

        if session_id:
            denied = self._check_ownership(session_id, user_id, request, must_exist=method != "initialize")
            if denied is not None:
                return denied

        if request.is_notification:
            return self._handle_notification(method, session_id)

        try:
            result, session_id = self.process_method(method, request.params or {}, session_id, user_id)
        except Exception as e:
            self.logger.exception("Error processing MCP method", method=method, session_id=session_id)
            return rpc_error(
                HTTPStatus.INTERNAL_SERVER_ERROR,
                RpcErrorCode.INTERNAL_ERROR,
                f"Internal error: {e}",
                request.id,
                session_id,
            )

        if session_id and method not in UNTRACKED_ACTIVITY_METHODS:
            self.update_activity_throttled(session_id)

        return RpcOutcome(
            status_code=HTTPStatus.OK,
            body=self._build_response(request.id, result),
            session_id=session_id,
        )

    def handle_message(self, payload: Any, session_id: str, user_id: Optional[str]) -> RpcOutcome:
        """
        Handle a request posted to the legacy SSE message endpoint.

        The JSON-RPC response is delivered over the session's stream (or
        queued for it); the HTTP reply only acknowledges receipt.
        """
        request, failure = self._parse_envelope(payload)
        if request is None:
            return failure  # type: ignore[return-value]

        denied = self._check_ownership(session_id, user_id, request, must_exist=True)
        if denied is not None:
            return denied

        if request.is_notification:
            return self._handle_notification(request.method, session_id)

        try:
            result, _ = self.process_method(request.method, request.params or {}, session_id, user_id)
        except Exception as e:
            self.logger.exception("Error processing MCP message", method=request.method)
            result = error_result(RpcErrorCode.INTERNAL_ERROR, f"Internal error: {e}")

        written = self.transport.send_message(session_id, self._build_response(request.id, result))
        self.update_activity_throttled(session_id)
        return RpcOutcome(
            status_code=HTTPStatus.ACCEPTED,
            body={"accepted": True, "delivered": written},
            session_id=session_id,
        )

    # Method processing

    def process_method(
        self,
        method: str,
        params: Dict[str, Any],
        session_id: Optional[str],
        user_id: Optional[str],
    ) -> Tuple[Any, Optional[str]]:
        """Run one method and return its result and the effective session id."""
        if method == "initialize":
            return self._initialize(params, session_id, user_id)

        if method == "ping":
            return {"pong": int(time.time() * 1000), "sessionId": session_id, "user": user_id}, session_id

        session = self.registry.get_session(session_id) if session_id else None
        if session is None or session.state != SessionState.INITIALIZED:
            self.logger.warning("Method called before initialization", method=method, session_id=session_id)
            return (
                error_result(
                    RpcErrorCode.INVALID_REQUEST,
                    "Session not initialized. Call initialize first, then send notifications/initialized.",
                ),
                session_id,
            )

        if method == "notifications/send":
            notification_method = params.get("method")
            if not notification_method:
                return error_result(RpcErrorCode.INVALID_PARAMS, "method is required"), session_id
            self.transport.send_notification(
                session.session_id,
                {
                    "jsonrpc": JSONRPC_VERSION,
                    "method": notification_method,
                    "params": params.get("params") or {},
                },
            )
            return {"sent": True, "sessionId": session_id, "method": notification_method}, session_id

        if method in ("notifications/subscribe", "notifications/unsubscribe"):
            topic = params.get("method")
            if not topic:
                return error_result(RpcErrorCode.INVALID_PARAMS, "method is required"), session_id
            with self.registry.get_session_lock(session.session_id):
                if method == "notifications/subscribe":
                    session.subscriptions.add(topic)
                    return {"subscribed": True, "sessionId": session_id, "method": topic}, session_id
                session.subscriptions.discard(topic)
            return {"unsubscribed": True, "sessionId": session_id, "method": topic}, session_id

        if method in CLIENT_NOTIFICATIONS:
            self.logger.debug("Client notification acknowledged", method=method, session_id=session_id)
            return {}, session_id

        return self.adapter.call_method(method, params), session_id

    def update_activity_throttled(self, session_id: str) -> None:
        """Touch the session at most once per activity interval."""
        session = self.registry.get_session(session_id)
        if session is None:
            return
        if session.idle_seconds() >= ACTIVITY_UPDATE_INTERVAL_SECONDS:
            with self.registry.get_session_lock(session_id):
                if session.idle_seconds() >= ACTIVITY_UPDATE_INTERVAL_SECONDS:
                    session.touch()
                    self.logger.debug("Session activity updated", session_id=session_id)

    # Internals

    def _initialize(
        self, params: Dict[str, Any], session_id: Optional[str], user_id: Optional[str]
    ) -> Tuple[Any, str]:
        session_id = session_id or uuid.uuid4().hex
        self.transport.open_session(session_id, user_id)
        self.registry.set_session_state(session_id, SessionState.INITIALIZING)

        result = self.adapter.call_method("initialize", params)
        if is_error_result(result):
            return result, session_id

        result = dict(result) if isinstance(result, dict) else {"result": result}
        result["sessionId"] = session_id
        self.registry.set_session_state(session_id, SessionState.INITIALIZED)
        self.logger.info("Session initialized", session_id=session_id, user_id=user_id)
        return result, session_id

    def _handle_notification(self, method: str, session_id: Optional[str]) -> RpcOutcome:
        if method == "notifications/initialized":
            if session_id:
                self.registry.set_session_state(session_id, SessionState.INITIALIZED)
            return RpcOutcome(status_code=HTTPStatus.ACCEPTED, session_id=session_id)
        self.logger.debug("Notification received", method=method, session_id=session_id)
        return RpcOutcome(status_code=HTTPStatus.NO_CONTENT, session_id=session_id)

    def _parse_envelope(self, payload: Any) -> Tuple[Optional[JSONRPCRequest], Optional[RpcOutcome]]:
        if not isinstance(payload, dict):
            return None, rpc_error(
                HTTPStatus.BAD_REQUEST, RpcErrorCode.INVALID_REQUEST, "Invalid JSON-RPC 2.0 request"
            )
        try:
            return JSONRPCRequest.model_validate(payload), None
        except ValidationError as e:
            self.logger.debug("Invalid JSON-RPC envelope", errors=e.error_count())
            request_id = payload.get("id") if isinstance(payload.get("id"), (int, str)) else None
            return None, rpc_error(
                HTTPStatus.BAD_REQUEST,
                RpcErrorCode.INVALID_REQUEST,
                "Invalid JSON-RPC 2.0 request",
                request_id,
            )

    def _check_ownership(
        self,
        session_id: str,
        user_id: Optional[str],
        request: JSONRPCRequest,
        must_exist: bool,
    ) -> Optional[RpcOutcome]:
        session = self.registry.get_session(session_id)
        if session is None:
            if not must_exist:
                return None
            return rpc_error(
                HTTPStatus.NOT_FOUND,
                RpcErrorCode.INVALID_REQUEST,
                f"Session not found: {session_id}",
                request.id,
            )
        if session.user_id != user_id:
            self.logger.warning(
                "Session access denied", session_id=session_id, owner=session.user_id, user_id=user_id
            )
            return rpc_error(
                HTTPStatus.FORBIDDEN,
                RpcErrorCode.INVALID_REQUEST,
                f"Access denied for session: {session_id}",
                request.id,
            )
        return None

    @staticmethod
    def _build_response(request_id: Optional[RequestId], result: Any) -> Dict[str, Any]:
        if is_error_result(result):
            error = result["error"]
            return JSONRPCResponse.failure(error["code"], error["message"], request_id).to_dict()
        return JSONRPCResponse(id=request_id, result=result).to_dict()
