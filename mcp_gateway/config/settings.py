"""
Application Settings
===================

Main gateway settings and environment configuration using Pydantic Settings.
Supports development, testing, and production environments.
"""

from typing import Optional, List, Dict, Union
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import json
from pathlib import Path


class Settings(BaseSettings):
    """Main gateway settings with environment variable support."""

    # Application Configuration
    app_name: str = Field(default="MCP Notification Gateway", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(
        default="development", description="Environment: development, testing, production"
    )
    debug: bool = Field(default=True, description="Debug mode")

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    workers: int = Field(default=1, description="Number of worker processes")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_dir: Optional[Path] = Field(
        default=None, description="Directory for rotating log files (console only when unset)"
    )

    # Security Configuration
    allowed_hosts: List[str] = Field(default=["*"], description="Allowed hosts for CORS")
    api_keys: Dict[str, str] = Field(
        default={"development-key": "dev-user"}, description="Valid API keys mapped to user ids"
    )
    api_key_hashes: Dict[str, str] = Field(
        default={}, description="SHA-256 hashes of valid API keys mapped to user ids"
    )
    skip_api_key_validation: bool = Field(
        default=True, description="Skip API key validation in development"
    )
    default_user_id: str = Field(
        default="dev-user", description="User id assigned when API key validation is skipped"
    )

    # SSE Configuration
    sse_enabled: bool = Field(default=True, description="Enable Server-Sent Events")
    sse_max_connections: int = Field(default=100, description="Maximum live SSE streams")
    sse_keepalive_interval_seconds: int = Field(
        default=30, description="Interval between keep-alive pings in seconds"
    )
    sse_session_idle_timeout_seconds: int = Field(
        default=3600, description="Idle time after which a session without a stream is closed"
    )
    sse_max_queued_notifications: int = Field(
        default=1000, description="Pending notification queue bound per session"
    )
    sse_max_pending_frames: int = Field(
        default=256, description="Frames buffered per stream before the stream counts as stalled"
    )

    # Notification Bridge Configuration
    notification_topic_prefix: str = Field(
        default="mcp.", description="Topic prefix accepted when not forwarding all notifications"
    )
    forward_all_notifications: bool = Field(
        default=True, description="Forward every domain notification, not only prefixed topics"
    )

    # Protocol Configuration
    server_name: str = Field(default="mcp-notification-gateway", description="MCP server name")
    supported_protocol_versions: List[str] = Field(
        default=["2025-11-25", "2025-06-18", "2025-03-26", "2024-11-05"],
        description="Accepted MCP-Protocol-Version header values",
    )

    # Adapter Configuration
    tool_operations: Dict[str, str] = Field(
        default={}, description="Extra or replacement tool name to backend operation mappings"
    )
    tool_descriptions: Dict[str, str] = Field(
        default={}, description="Descriptions for configured tools"
    )
    method_operations: Dict[str, str] = Field(
        default={}, description="Extra or replacement method name to backend operation mappings"
    )
    backend_factory: str = Field(
        default="mcp_gateway.mcp_server.operations:create_default_backend",
        description="Dotted 'module:callable' path that builds the backend; called with settings=",
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        allowed = {"development", "testing", "production"}
        if v not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @field_validator("allowed_hosts", mode="before")
    @classmethod
    def parse_allowed_hosts(cls, v: Union[str, List[str]]) -> List[str]:
        """Parse allowed hosts from string or list."""
        if isinstance(v, str):
            # Handle JSON-like string: ["*"] or ["host1", "host2"]
            v = v.strip()
            if v.startswith("[") and v.endswith("]"):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            # Handle comma-separated string: "*" or "host1,host2"
            return [host.strip() for host in v.split(",") if host.strip()]
        return v

    @field_validator("sse_keepalive_interval_seconds", "sse_max_queued_notifications")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Reject zero or negative intervals and bounds."""
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @field_validator("backend_factory")
    @classmethod
    def validate_backend_factory(cls, v: str) -> str:
        """Require the 'module:callable' form."""
        module_name, _, attr = v.partition(":")
        if not module_name or not attr:
            raise ValueError("backend_factory must look like 'package.module:callable'")
        return v

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, env_prefix="MCP_GATEWAY_"
    )


# Global settings instance - will be initialized when needed
settings = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global settings
    if settings is None:
        settings = Settings()
    return settings


def reload_settings() -> Settings:
    """Reload settings from environment."""
    global settings
    settings = Settings()
    return settings
