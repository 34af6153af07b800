"""
==============================================================================
Inventory Package
==============================================================================

Inventory lookup/mutation contract and its implementations.

Modules:
--------
- base: InventoryService interface
- sql_service: Local SQLAlchemy inventory
- http_service: Remote inventory over REST (httpx)

==============================================================================
"""

from .base import InventoryService
from .http_service import HttpInventoryService
from .sql_service import SqlInventoryService, to_resolved_item

__all__ = [
    "InventoryService",
    "HttpInventoryService",
    "SqlInventoryService",
    "to_resolved_item",
]
