"""
Test Suite
==========

Test suite matching the mcp_gateway/ package structure.

Test Categories:
- unit: Unit tests for individual components
- integration: HTTP endpoint tests through the FastAPI application
- sse: Tests touching SSE framing and delivery
"""
