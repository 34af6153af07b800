"""
==============================================================================
API v1 Endpoints
==============================================================================

Version 1 of the REST API.

Routers:
--------
- health: Health check endpoints
- inventory: Lookup, item creation and idempotent stock transactions

==============================================================================
"""

from . import health, inventory

__all__ = ["health", "inventory"]
