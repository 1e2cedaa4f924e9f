"""
MCP Tool Adapter
================

Resolves MCP tool and method names to backend operations, invokes them with
authorization suspended and normalizes results and failures into the shapes
carried by JSON-RPC responses.

Tools and methods are two disjoint namespaces. Unknown names in either are
rejected with -32601 before the backend is touched. Backend failures become
-32000 on the tool path and -32603 on the method path.
"""

from typing import Any, Dict, List, Mapping, Optional
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType

from mcp.types import Tool

from ..config.logging import get_logger
from ..config.settings import Settings
from ..models.schemas import RpcErrorCode, error_result, is_error_result
from .backend import Backend, authorization_suspended

logger = get_logger(__name__)


class Namespace(str, Enum):
    """RPC namespaces resolved by the adapter."""

    TOOL = "tool"
    METHOD = "method"


DEFAULT_TOOL_OPERATIONS: Dict[str, str] = {
    "browse_screens": "screens.browse",
    "search_screens": "screens.search",
    "get_screen_details": "screens.details",
    "get_help": "mcp.get_help",
}

DEFAULT_TOOL_DESCRIPTIONS: Dict[str, str] = {
    "browse_screens": "Browse the screen hierarchy below a path",
    "search_screens": "Search for screens by name to find their paths",
    "get_screen_details": "Get screen field details including dropdown options",
    "get_help": "Fetch extended documentation for a tool",
}

DEFAULT_METHOD_OPERATIONS: Dict[str, str] = {
    "initialize": "mcp.initialize",
    "ping": "mcp.ping",
    "tools/list": "mcp.tools_list",
    "tools/call": "mcp.tools_call",
    "resources/list": "mcp.resources_list",
    "resources/read": "mcp.resources_read",
    "resources/templates/list": "mcp.resources_templates_list",
    "resources/subscribe": "mcp.resources_subscribe",
    "resources/unsubscribe": "mcp.resources_unsubscribe",
    "prompts/list": "mcp.prompts_list",
    "prompts/get": "mcp.prompts_get",
    "roots/list": "mcp.roots_list",
}

TOOL_INPUT_SCHEMAS: Dict[str, Dict[str, Any]] = {
    "browse_screens": {
        "type": "object",
        "properties": {"path": {"type": "string", "description": "Screen path, empty for root"}},
    },
    "search_screens": {
        "type": "object",
        "properties": {"query": {"type": "string", "description": "Text to match"}},
        "required": ["query"],
    },
    "get_screen_details": {
        "type": "object",
        "properties": {"path": {"type": "string", "description": "Screen path"}},
        "required": ["path"],
    },
    "get_help": {
        "type": "object",
        "properties": {"name": {"type": "string", "description": "Tool name"}},
    },
}


@dataclass(frozen=True)
class OperationTable:
    """Immutable name to operation tables for both namespaces."""

    tools: Mapping[str, str]
    methods: Mapping[str, str]
    descriptions: Mapping[str, str]

    @classmethod
    def build(
        cls,
        tools: Mapping[str, str],
        methods: Mapping[str, str],
        descriptions: Mapping[str, str],
    ) -> "OperationTable":
        """
        Validate and freeze the tables.

        Raises:
            ValueError: If the namespaces overlap or a tool has no description
        """
        overlap = set(tools) & set(methods)
        if overlap:
            raise ValueError(f"Tool and method names must be disjoint: {sorted(overlap)}")
        undocumented = [name for name in tools if not str(descriptions.get(name, "")).strip()]
        if undocumented:
            raise ValueError(f"Tools without description: {sorted(undocumented)}")
        return cls(
            tools=MappingProxyType(dict(tools)),
            methods=MappingProxyType(dict(methods)),
            descriptions=MappingProxyType({name: descriptions[name] for name in tools}),
        )

    @classmethod
    def default(cls) -> "OperationTable":
        return cls.build(DEFAULT_TOOL_OPERATIONS, DEFAULT_METHOD_OPERATIONS, DEFAULT_TOOL_DESCRIPTIONS)

    @classmethod
    def from_settings(cls, settings: Settings) -> "OperationTable":
        """Default tables with the configured overrides applied."""
        return cls.build(
            {**DEFAULT_TOOL_OPERATIONS, **settings.tool_operations},
            {**DEFAULT_METHOD_OPERATIONS, **settings.method_operations},
            {**DEFAULT_TOOL_DESCRIPTIONS, **settings.tool_descriptions},
        )

    def resolve(self, namespace: Namespace, name: str) -> Optional[str]:
        table = self.tools if namespace == Namespace.TOOL else self.methods
        return table.get(name)


class ToolAdapter:
    """Translation layer between MCP names and backend operations."""

    def __init__(self, backend: Backend, table: Optional[OperationTable] = None):
        self.backend = backend
        self.table = table or OperationTable.default()
        self.logger: Any = logger.bind(component="tool_adapter")

    def call_tool(self, tool_name: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        """
        Call an MCP tool through its backend operation.

        Returns:
            The unwrapped backend result, or an ``{"error": ...}`` dictionary
        """
        operation = self.table.resolve(Namespace.TOOL, tool_name)
        if operation is None:
            self.logger.warning("Unknown tool", tool_name=tool_name)
            return error_result(RpcErrorCode.METHOD_NOT_FOUND, f"Unknown tool: {tool_name}")

        self.logger.debug("Calling tool", tool_name=tool_name, operation=operation)
        try:
            return self._invoke(operation, arguments)
        except Exception as e:
            self.logger.error("Tool execution failed", tool_name=tool_name, error=str(e))
            return error_result(RpcErrorCode.TOOL_EXECUTION_ERROR, str(e))

    def call_method(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Call an MCP method through its backend operation.

        ``tools/list`` is answered from the tool table and ``tools/call`` is
        routed to ``call_tool``.
        """
        operation = self.table.resolve(Namespace.METHOD, method)
        if operation is None:
            self.logger.warning("Unknown method", method=method)
            return error_result(RpcErrorCode.METHOD_NOT_FOUND, f"Method not found: {method}")

        params = params or {}
        if method == "tools/list":
            return {"tools": self.list_tools()}
        if method == "tools/call":
            name = params.get("name")
            if not isinstance(name, str) or not name:
                return error_result(RpcErrorCode.INVALID_PARAMS, "Missing required parameter: name")
            arguments = params.get("arguments") or {}
            if not isinstance(arguments, dict):
                return error_result(RpcErrorCode.INVALID_PARAMS, "Tool arguments must be an object")
            return self.call_tool(name, arguments)

        self.logger.debug("Calling method", method=method, operation=operation)
        try:
            return self._invoke(operation, params)
        except Exception as e:
            self.logger.error("Method execution failed", method=method, error=str(e))
            return error_result(RpcErrorCode.INTERNAL_ERROR, f"Internal error: {e}")

    def _invoke(self, operation: str, arguments: Optional[Dict[str, Any]]) -> Any:
        with authorization_suspended(self.backend):
            result = self.backend.invoke(operation, dict(arguments or {}))
        if isinstance(result, dict) and "result" in result:
            return result["result"]
        return result if result is not None else {}

    # Lookups

    def is_valid_tool(self, tool_name: str) -> bool:
        return tool_name in self.table.tools

    def is_valid_method(self, method: str) -> bool:
        return method in self.table.methods

    def get_service_for_tool(self, tool_name: str) -> Optional[str]:
        return self.table.resolve(Namespace.TOOL, tool_name)

    def get_service_for_method(self, method: str) -> Optional[str]:
        return self.table.resolve(Namespace.METHOD, method)

    def get_tool_description(self, tool_name: str) -> Optional[str]:
        return self.table.descriptions.get(tool_name)

    def get_tool_names(self) -> List[str]:
        return list(self.table.tools)

    def get_method_names(self) -> List[str]:
        return list(self.table.methods)

    def list_tools(self) -> List[Dict[str, Any]]:
        """Tool definitions for discovery responses."""
        tools = [
            Tool(
                name=name,
                description=self.table.descriptions[name],
                inputSchema=TOOL_INPUT_SCHEMAS.get(name, {"type": "object"}),
            )
            for name in self.table.tools
        ]
        return [tool.model_dump(by_alias=True, exclude_none=True) for tool in tools]

    @staticmethod
    def is_error_result(result: Any) -> bool:
        return is_error_result(result)
