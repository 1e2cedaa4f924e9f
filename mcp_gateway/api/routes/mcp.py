"""
MCP Routes
==========

FastAPI routes for the MCP HTTP surface: the streamable JSON-RPC endpoint,
SSE streams, the legacy message endpoint and administrative pushes.
"""

from typing import Optional, Dict, Any, Annotated, AsyncGenerator
import asyncio
import json
import uuid

from fastapi import APIRouter, Request, Depends, HTTPException, Header, Query, status
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.concurrency import run_in_threadpool

from ...config.logging import get_logger
from ...core.events import NotificationMessage
from ...mcp_server.server import RpcOutcome, rpc_error
from ...models.schemas import (
    BroadcastRequest,
    DeliveryResponse,
    RpcErrorCode,
    UserNotificationRequest,
)
from ..auth import get_current_user
from ..gateway import Gateway, get_gateway
from ..sse.events import SSEEventType, create_connect_payload
from ..sse.sink import StreamSink

logger = get_logger(__name__)

SESSION_HEADER = "Mcp-Session-Id"
ACCEPTED_MEDIA_TYPES = ("application/json", "text/event-stream", "*/*")

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable Nginx buffering
}

# Create router
router = APIRouter(
    tags=["MCP"],
    responses={404: {"description": "Not found"}},
)

CurrentUser = Annotated[str, Depends(get_current_user)]
CurrentGateway = Annotated[Gateway, Depends(get_gateway)]


def outcome_to_response(outcome: RpcOutcome) -> Response:
    """Convert a dispatcher outcome into an HTTP response."""
    headers = {SESSION_HEADER: outcome.session_id} if outcome.session_id else None
    if outcome.body is None:
        return Response(status_code=outcome.status_code, headers=headers)
    return JSONResponse(status_code=outcome.status_code, content=outcome.body, headers=headers)


@router.post("/mcp")
async def handle_jsonrpc(
    request: Request,
    user_id: CurrentUser,
    gateway: CurrentGateway,
    accept: Optional[str] = Header(None),
    mcp_session_id: Optional[str] = Header(None),
    mcp_protocol_version: Optional[str] = Header(None),
) -> Response:
    """
    Streamable HTTP JSON-RPC endpoint.

    Returns:
        JSON-RPC response, or an empty 202/204 for notifications
    """
    if accept and not any(media in accept for media in ACCEPTED_MEDIA_TYPES):
        return outcome_to_response(
            rpc_error(
                status.HTTP_400_BAD_REQUEST,
                RpcErrorCode.INVALID_REQUEST,
                "Accept header must include application/json or text/event-stream",
            )
        )

    body = await request.body()
    outcome = await run_in_threadpool(
        gateway.server.handle_body, body, mcp_session_id, user_id, mcp_protocol_version
    )
    return outcome_to_response(outcome)


@router.get("/mcp")
async def open_mcp_stream(
    user_id: CurrentUser,
    gateway: CurrentGateway,
    mcp_session_id: Optional[str] = Header(None),
) -> StreamingResponse:
    """Open the SSE stream of a new or resumed session."""
    return await _open_stream(gateway, user_id, mcp_session_id)


@router.get("/sse")
async def open_sse_stream(
    user_id: CurrentUser,
    gateway: CurrentGateway,
    mcp_session_id: Optional[str] = Header(None),
) -> StreamingResponse:
    """Legacy SSE endpoint; same behaviour as ``GET /mcp``."""
    return await _open_stream(gateway, user_id, mcp_session_id)


async def _open_stream(
    gateway: Gateway, user_id: str, mcp_session_id: Optional[str]
) -> StreamingResponse:
    settings = gateway.settings
    transport = gateway.transport

    if not settings.sse_enabled:
        raise HTTPException(status_code=404, detail="SSE is disabled")

    if transport.get_statistics()["activeWriters"] >= settings.sse_max_connections:
        raise HTTPException(status_code=503, detail="Too many SSE connections")

    resumed = bool(mcp_session_id)
    if mcp_session_id:
        session = gateway.registry.get_session(mcp_session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Session not found: {mcp_session_id}")
        if session.user_id != user_id:
            logger.warning(
                "SSE access denied", session_id=mcp_session_id, owner=session.user_id, user_id=user_id
            )
            raise HTTPException(
                status_code=403, detail=f"Access denied for session: {mcp_session_id}"
            )
        session_id = mcp_session_id
    else:
        session_id = uuid.uuid4().hex
        transport.open_session(session_id, user_id)

    sink = StreamSink(asyncio.get_running_loop(), settings.sse_max_pending_frames)
    if not resumed:
        transport.send_sse_event_with_id(
            sink, SSEEventType.ENDPOINT, f"/mcp/message?sessionId={session_id}"
        )
    transport.send_sse_event_with_id(
        sink,
        SSEEventType.CONNECT,
        create_connect_payload(session_id, settings.server_name, settings.app_version),
    )
    delivered = await run_in_threadpool(transport.register_sse_writer, session_id, sink)

    logger.info(
        "SSE stream opened",
        session_id=session_id,
        user_id=user_id,
        resumed=resumed,
        delivered=delivered,
    )

    async def event_generator() -> AsyncGenerator[str, None]:
        """Generate SSE events."""
        try:
            async for chunk in sink.stream():
                yield chunk
        finally:
            sink.mark_disconnected()
            transport.unregister_sse_writer(session_id, sink)
            logger.info("SSE stream ended", session_id=session_id)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={**SSE_HEADERS, SESSION_HEADER: session_id},
    )


@router.post("/mcp/message")
async def handle_message(
    request: Request,
    user_id: CurrentUser,
    gateway: CurrentGateway,
    session_id: str = Query(..., alias="sessionId", min_length=1),
) -> Response:
    """Legacy SSE message endpoint; the JSON-RPC response travels over the stream."""
    body = await request.body()
    try:
        payload = json.loads(body) if body.strip() else None
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        return outcome_to_response(
            rpc_error(status.HTTP_400_BAD_REQUEST, RpcErrorCode.PARSE_ERROR, f"Invalid JSON: {e}")
        )
    if payload is None:
        return outcome_to_response(
            rpc_error(status.HTTP_400_BAD_REQUEST, RpcErrorCode.INVALID_PARAMS, "Empty request body")
        )

    outcome = await run_in_threadpool(gateway.server.handle_message, payload, session_id, user_id)
    return outcome_to_response(outcome)


@router.delete("/mcp")
async def close_session(
    user_id: CurrentUser,
    gateway: CurrentGateway,
    mcp_session_id: Optional[str] = Header(None),
) -> Response:
    """Close a session; a live stream receives a goodbye frame."""
    if not mcp_session_id:
        raise HTTPException(status_code=400, detail="Mcp-Session-Id header required")
    session = gateway.registry.get_session(mcp_session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session not found: {mcp_session_id}")
    if session.user_id != user_id:
        raise HTTPException(status_code=403, detail=f"Access denied for session: {mcp_session_id}")

    await run_in_threadpool(gateway.transport.close_session, mcp_session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/mcp/stats")
async def get_stats(user_id: CurrentUser, gateway: CurrentGateway) -> Dict[str, Any]:
    """Get transport and session statistics."""
    stats = gateway.transport.get_statistics()
    stats["activeSessions"] = gateway.transport.get_active_session_count()
    return stats


@router.post("/mcp/notifications/broadcast", response_model=DeliveryResponse)
async def broadcast_notification(
    notification: BroadcastRequest, user_id: CurrentUser, gateway: CurrentGateway
) -> DeliveryResponse:
    """Broadcast a custom notification to every session."""
    report = await run_in_threadpool(
        gateway.bridge.broadcast_mcp_notification,
        notification.topic,
        notification.title,
        notification.message,
    )
    logger.info("Broadcast requested", topic=notification.topic, requested_by=user_id)
    return DeliveryResponse(delivered=report.delivered, queued=report.queued)


@router.post("/mcp/notifications/users", response_model=DeliveryResponse)
async def notify_users(
    notification: UserNotificationRequest, user_id: CurrentUser, gateway: CurrentGateway
) -> DeliveryResponse:
    """Send a custom notification to the sessions of explicit users."""
    users = await run_in_threadpool(
        gateway.bridge.send_mcp_notification,
        notification.topic,
        notification.title,
        notification.message,
        notification.user_ids,
    )
    return DeliveryResponse(users=users)


@router.post("/mcp/events", status_code=status.HTTP_202_ACCEPTED)
async def publish_event(
    event: NotificationMessage, user_id: CurrentUser, gateway: CurrentGateway
) -> Dict[str, Any]:
    """Publish a domain event on the gateway's event bus."""
    listeners = await run_in_threadpool(gateway.event_bus.publish, event)
    return {"success": True, "topic": event.topic, "listeners": listeners}
