"""
Pydantic Models and Schemas
===========================

JSON-RPC envelopes, MCP notification payloads and API request/response models.
Error codes follow JSON-RPC 2.0 and are shared with the ``mcp`` package.
"""

from typing import Optional, Dict, Any, Union, Literal, Set
from datetime import datetime, timezone
from enum import IntEnum
import time

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from mcp.types import (
    ErrorData,
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
)

JSONRPC_VERSION = "2.0"

RequestId = Union[int, str]


class RpcErrorCode(IntEnum):
    """Error codes exposed on the RPC surface."""

    PARSE_ERROR = PARSE_ERROR
    INVALID_REQUEST = INVALID_REQUEST
    METHOD_NOT_FOUND = METHOD_NOT_FOUND
    INVALID_PARAMS = INVALID_PARAMS
    INTERNAL_ERROR = INTERNAL_ERROR
    TOOL_EXECUTION_ERROR = -32000
    AUTHENTICATION_REQUIRED = -32003


def error_result(code: int, message: str) -> Dict[str, Any]:
    """Build the ``{"error": {"code", "message"}}`` shape returned by adapters."""
    error = ErrorData(code=int(code), message=message)
    return {"error": error.model_dump(exclude_none=True)}


def is_error_result(result: Any) -> bool:
    """True when ``result`` is an adapter error shape rather than a payload."""
    if not isinstance(result, dict) or set(result.keys()) != {"error"}:
        return False
    error = result["error"]
    return isinstance(error, dict) and isinstance(error.get("code"), int)


# JSON-RPC Envelopes
class JSONRPCRequest(BaseModel):
    """Inbound JSON-RPC 2.0 request or notification."""

    jsonrpc: Literal["2.0"] = Field(..., description="Protocol version marker")
    id: Optional[RequestId] = Field(None, description="Request id, absent for notifications")
    method: str = Field(..., min_length=1, description="Method name")
    params: Optional[Dict[str, Any]] = Field(None, description="Method parameters")

    @property
    def is_notification(self) -> bool:
        """Notifications carry no ``id`` member at all."""
        return "id" not in self.model_fields_set


class JSONRPCResponse(BaseModel):
    """Outbound JSON-RPC 2.0 response."""

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: Optional[RequestId] = None
    result: Optional[Any] = None
    error: Optional[ErrorData] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            d["error"] = self.error.model_dump(exclude_none=True)
        else:
            d["result"] = self.result if self.result is not None else {}
        return d

    @classmethod
    def failure(cls, code: int, message: str, request_id: Optional[RequestId] = None) -> "JSONRPCResponse":
        return cls(id=request_id, error=ErrorData(code=int(code), message=message))


class JSONRPCNotification(BaseModel):
    """Outbound JSON-RPC 2.0 notification."""

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    method: str = Field(..., description="Notification method")
    params: Dict[str, Any] = Field(default_factory=dict, description="Notification parameters")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


# Notification Payloads
class NotificationMethod:
    """Well-known outbound notification methods."""

    MESSAGE = "notifications/message"
    PROGRESS = "notifications/progress"
    TOOLS_LIST_CHANGED = "notifications/tools/list_changed"
    RESOURCES_LIST_CHANGED = "notifications/resources/list_changed"
    PROMPTS_LIST_CHANGED = "notifications/prompts/list_changed"


def current_millis() -> int:
    return int(time.time() * 1000)


class MessageParams(BaseModel):
    """Params of a ``notifications/message`` notification built from a domain event."""

    topic: Optional[str] = None
    sub_topic: Optional[str] = None
    title: Optional[str] = None
    type: Optional[str] = None
    message: Dict[str, Any] = Field(default_factory=dict)
    link: Optional[str] = None
    show_alert: Optional[bool] = None
    notification_message_id: Optional[str] = None
    timestamp: int = Field(default_factory=current_millis, description="Delivery time in ms")

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProgressParams(BaseModel):
    """Params of a ``notifications/progress`` notification."""

    progress_token: Union[str, int]
    progress: float
    total: Optional[float] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# API Request Models
class BroadcastRequest(BaseModel):
    """Broadcast a custom notification to every session."""

    topic: str = Field(..., min_length=1, description="Notification topic")
    title: Optional[str] = Field(None, description="Notification title")
    message: Dict[str, Any] = Field(default_factory=dict, description="Message content")


class UserNotificationRequest(BroadcastRequest):
    """Send a custom notification to the sessions of explicit users."""

    user_ids: Set[str] = Field(..., min_length=1, description="Target user ids")


class DeliveryResponse(BaseModel):
    """Summary of an administrative push."""

    success: bool = True
    users: int = Field(0, ge=0, description="Users the notification was handed to")
    delivered: int = Field(0, ge=0, description="Frames written to live streams")
    queued: int = Field(0, ge=0, description="Notifications queued for offline sessions")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# Health Models
class HealthStatus(BaseModel):
    """Health check status."""

    status: Literal["healthy", "unhealthy", "degraded"] = Field(..., description="Overall status")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), description="Check timestamp"
    )
    version: str = Field(..., description="Application version")
    total_sessions: int = Field(0, ge=0, description="Registered sessions")
    active_writers: int = Field(0, ge=0, description="Sessions with a live stream")
    queued_notifications: int = Field(0, ge=0, description="Notifications awaiting delivery")


# Error Models
class ErrorResponse(BaseModel):
    """Standard HTTP error response model."""

    error: str = Field(..., description="Error message")
    error_code: Optional[str] = Field(None, description="Error code")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), description="Error timestamp"
    )
    request_id: Optional[str] = Field(None, description="Request identifier for tracking")


__all__ = [
    "JSONRPC_VERSION",
    "RequestId",
    "RpcErrorCode",
    "error_result",
    "is_error_result",
    "JSONRPCRequest",
    "JSONRPCResponse",
    "JSONRPCNotification",
    "NotificationMethod",
    "MessageParams",
    "ProgressParams",
    "BroadcastRequest",
    "UserNotificationRequest",
    "DeliveryResponse",
    "HealthStatus",
    "ErrorResponse",
    "current_millis",
]
