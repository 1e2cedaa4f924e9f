"""
Authentication Utilities
=======================

Authentication utilities for API endpoints.
Maps the ``X-API-Key`` header to the user id that owns MCP sessions.
"""

import hashlib
from typing import Optional
from fastapi import Depends, Request
from fastapi.security import APIKeyHeader

from ..config.settings import Settings

# API key header
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


class AuthenticationRequiredError(Exception):
    """Raised when a request carries no valid credentials."""

    def __init__(self, message: str = "Authentication required. Provide a valid X-API-Key header."):
        super().__init__(message)
        self.message = message


def get_api_key_hash(api_key: str) -> str:
    """
    Hash API key for storage and comparison.

    Args:
        api_key: API key to hash

    Returns:
        Hashed API key
    """
    return hashlib.sha256(api_key.encode()).hexdigest()


def resolve_user_id(api_key: Optional[str], settings: Settings) -> Optional[str]:
    """Return the user id configured for ``api_key``, or None."""
    if not api_key:
        return None
    user_id = settings.api_keys.get(api_key)
    if user_id is None:
        user_id = settings.api_key_hashes.get(get_api_key_hash(api_key))
    return user_id


async def get_current_user(
    request: Request, api_key: Optional[str] = Depends(api_key_header)
) -> str:
    """
    Resolve the calling user from the API key.

    Raises:
        AuthenticationRequiredError: If the key is missing or unknown
    """
    settings: Settings = request.app.state.gateway.settings

    user_id = resolve_user_id(api_key, settings)
    if user_id is not None:
        return user_id

    # Skip validation in development mode if configured
    if settings.debug and settings.skip_api_key_validation:
        return settings.default_user_id

    if not api_key:
        raise AuthenticationRequiredError()
    raise AuthenticationRequiredError("Invalid API key")
