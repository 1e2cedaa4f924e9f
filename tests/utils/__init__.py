"""
Test Utilities
==============

Common helpers and fakes for testing.
"""

from .mocks import *
