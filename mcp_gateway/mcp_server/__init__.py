"""
MCP Server Components
=====================

JSON-RPC dispatch for the MCP method vocabulary.

Components:
- server: Request validation, session handshake and method routing
- tool_adapter: Tool and method name resolution onto backend operations
- backend: Backend capability interface and the in-process backend
- operations: Default protocol operations for the in-process backend
"""
