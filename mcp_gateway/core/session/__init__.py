"""
Session Registry
================

Authoritative in-memory directory of MCP sessions.
"""

from .registry import Session, SessionRegistry, SessionState

__all__ = ["Session", "SessionRegistry", "SessionState"]
