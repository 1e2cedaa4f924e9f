"""
Core Gateway Logic
==================

Transport-independent building blocks of the gateway.

Modules:
- session: In-memory session registry with a user index
- events: Domain notification messages and the in-process event bus
"""
