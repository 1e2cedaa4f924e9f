"""
Default Operations
==================

Protocol operations and screen discovery tools for the in-process backend.
Host applications populate the ``ScreenCatalog`` or replace the backend via
the ``backend_factory`` setting.

Screens double as MCP resources addressed by ``screen://<path>``.
"""

from typing import Any, Dict, Iterable, List, Optional
from dataclasses import dataclass, field
import json

from mcp.types import LATEST_PROTOCOL_VERSION

from ..config.settings import Settings, get_settings
from ..config.logging import get_logger
from .backend import LocalBackend

logger = get_logger(__name__)

SCREEN_URI_SCHEME = "screen://"
RESOURCE_MIME_TYPE = "application/json"


@dataclass
class Screen:
    """A navigable screen exposed to agents."""

    path: str
    title: str
    description: str = ""
    fields: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def parent_path(self) -> str:
        return self.path.rpartition("/")[0]

    @property
    def uri(self) -> str:
        return f"{SCREEN_URI_SCHEME}{self.path}"

    def summary(self) -> Dict[str, Any]:
        return {"path": self.path, "title": self.title}

    def details(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "title": self.title,
            "description": self.description,
            "fields": list(self.fields),
        }


class ScreenCatalog:
    """In-memory screen tree keyed by slash separated path."""

    def __init__(self, screens: Iterable[Screen] = ()):
        self._screens: Dict[str, Screen] = {}
        for screen in screens:
            self.add(screen)

    def add(self, screen: Screen) -> None:
        self._screens[screen.path.strip("/")] = screen

    def get(self, path: str) -> Optional[Screen]:
        return self._screens.get(path.strip("/"))

    def all(self) -> List[Screen]:
        return sorted(self._screens.values(), key=lambda s: s.path)

    def children(self, path: str) -> List[Screen]:
        parent = path.strip("/")
        return sorted(
            (s for key, s in self._screens.items() if key.rpartition("/")[0] == parent),
            key=lambda s: s.path,
        )

    def search(self, query: str) -> List[Screen]:
        needle = query.lower()
        return sorted(
            (s for s in self._screens.values() if needle in s.path.lower() or needle in s.title.lower()),
            key=lambda s: s.path,
        )


HELP_TOPICS = {
    "browse_screens": "Call with an optional 'path' to list the screens below it.",
    "search_screens": "Call with 'query' to find screens whose path or title matches.",
    "get_screen_details": "Call with 'path' to get a screen's description and fields.",
    "get_help": "Call with an optional 'name' to get help for one tool.",
}


def create_default_backend(
    catalog: Optional[ScreenCatalog] = None, settings: Optional[Settings] = None
) -> LocalBackend:
    """Build a LocalBackend with protocol operations and screen tools registered.

    ``settings`` supplies the server name, version and supported protocol
    versions reported by ``initialize``. The global settings are used when
    it is omitted.
    """
    backend = LocalBackend()
    screens = catalog if catalog is not None else ScreenCatalog()
    settings = settings or get_settings()

    def screen_for_uri(params: Dict[str, Any]) -> Screen:
        uri = params.get("uri")
        if not uri:
            raise ValueError("uri is required")
        uri = str(uri)
        screen = None
        if uri.startswith(SCREEN_URI_SCHEME):
            screen = screens.get(uri[len(SCREEN_URI_SCHEME):])
        if screen is None:
            raise ValueError(f"Resource not found: {uri}")
        return screen

    @backend.operation("mcp.initialize")
    def initialize(params: Dict[str, Any]) -> Dict[str, Any]:
        requested = params.get("protocolVersion")
        version = (
            requested if requested in settings.supported_protocol_versions else LATEST_PROTOCOL_VERSION
        )
        return {
            "protocolVersion": version,
            "capabilities": {
                "tools": {"listChanged": True},
                "resources": {"subscribe": True, "listChanged": True},
                "prompts": {"listChanged": True},
                "logging": {},
            },
            "serverInfo": {"name": settings.server_name, "version": settings.app_version},
        }

    @backend.operation("mcp.resources_list")
    def resources_list(params: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "resources": [
                {
                    "uri": screen.uri,
                    "name": screen.title,
                    "description": screen.description,
                    "mimeType": RESOURCE_MIME_TYPE,
                }
                for screen in screens.all()
            ]
        }

    @backend.operation("mcp.resources_read")
    def resources_read(params: Dict[str, Any]) -> Dict[str, Any]:
        screen = screen_for_uri(params)
        return {
            "contents": [
                {
                    "uri": screen.uri,
                    "mimeType": RESOURCE_MIME_TYPE,
                    "text": json.dumps(screen.details()),
                }
            ]
        }

    # The server tracks subscriptions per session; here the uri is only checked.
    @backend.operation("mcp.resources_subscribe")
    def resources_subscribe(params: Dict[str, Any]) -> Dict[str, Any]:
        screen_for_uri(params)
        return {}

    @backend.operation("mcp.resources_unsubscribe")
    def resources_unsubscribe(params: Dict[str, Any]) -> Dict[str, Any]:
        screen_for_uri(params)
        return {}

    @backend.operation("mcp.resources_templates_list")
    def resources_templates_list(params: Dict[str, Any]) -> Dict[str, Any]:
        return {"resourceTemplates": []}

    @backend.operation("mcp.prompts_list")
    def prompts_list(params: Dict[str, Any]) -> Dict[str, Any]:
        return {"prompts": []}

    @backend.operation("mcp.prompts_get")
    def prompts_get(params: Dict[str, Any]) -> Dict[str, Any]:
        raise ValueError(f"Prompt not found: {params.get('name')}")

    @backend.operation("mcp.roots_list")
    def roots_list(params: Dict[str, Any]) -> Dict[str, Any]:
        return {"roots": []}

    @backend.operation("mcp.get_help")
    def get_help(params: Dict[str, Any]) -> Dict[str, Any]:
        name = params.get("name")
        if name:
            if name not in HELP_TOPICS:
                raise ValueError(f"No help available for '{name}'")
            return {"name": name, "help": HELP_TOPICS[name]}
        return {"topics": dict(HELP_TOPICS)}

    @backend.operation("screens.browse")
    def browse_screens(params: Dict[str, Any]) -> Dict[str, Any]:
        path = str(params.get("path") or "")
        if path.strip("/") and screens.get(path) is None:
            raise ValueError(f"Screen not found: {path}")
        return {
            "path": path,
            "subscreens": [s.summary() for s in screens.children(path)],
        }

    @backend.operation("screens.search")
    def search_screens(params: Dict[str, Any]) -> Dict[str, Any]:
        query = params.get("query")
        if not query:
            raise ValueError("query is required")
        return {"query": query, "matches": [s.summary() for s in screens.search(str(query))]}

    @backend.operation("screens.details")
    def get_screen_details(params: Dict[str, Any]) -> Dict[str, Any]:
        path = params.get("path")
        if not path:
            raise ValueError("path is required")
        screen = screens.get(str(path))
        if screen is None:
            raise ValueError(f"Screen not found: {path}")
        return screen.details()

    logger.debug("Default backend created", operations=backend.get_operation_names())
    return backend
