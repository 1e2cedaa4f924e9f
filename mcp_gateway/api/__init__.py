"""
FastAPI HTTP Surface
====================

HTTP endpoints exposing the MCP gateway.

Endpoints:
- POST /mcp: JSON-RPC requests and notifications
- GET /mcp, GET /sse: Server-Sent Events stream for a session
- POST /mcp/message: Legacy SSE message endpoint
- DELETE /mcp: Close a session
- GET /health: Health check endpoint
"""
