"""
MCP Notification Gateway
========================

A Model Context Protocol (MCP) gateway that lets remote agents issue JSON-RPC
calls against a business backend and receive best-effort notifications over
Server-Sent Events, even while briefly disconnected.

This package provides:
- Session registry for connected and recently-connected clients
- SSE transport with per-session queuing, broadcast and keep-alive
- Notification bridge from the backend event bus to MCP notifications
- Tool/method adapter mapping MCP names onto backend operations
- FastAPI endpoints for the MCP HTTP surface
"""

__version__ = "1.0.0"
__author__ = "MCP Notification Gateway Team"
