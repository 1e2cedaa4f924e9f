"""
Data Models
===========

Pydantic data models for request/response validation and wire payloads.

Models:
- schemas: JSON-RPC envelopes, notification params, API request and response schemas
"""
