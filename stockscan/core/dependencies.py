"""
==============================================================================
FastAPI Dependencies Module
==============================================================================

Dependency injection for inventory access.

Dependency Hierarchy:
--------------------
                 ┌────────────────┐
                 │ get_settings() │
                 └───────┬────────┘
                         │
             ┌───────────▼────────────┐
             │ get_inventory_service  │
             └───────────┬────────────┘
                         │
        ┌────────────────┴────────────────┐
        │                                 │
┌───────▼────────────┐         ┌──────────▼───────────┐
│ SqlInventoryService│         │ HttpInventoryService │
│ (backend = "sql")  │         │ (backend = "http")   │
└────────────────────┘         └──────────────────────┘

The REST inventory routes always use the local SQL inventory; scanner
sessions use whichever backend is configured.

Usage:
------
    @router.get("/by-code/{code}")
    def lookup(code: str, inventory: SqlInventoryService = Depends(get_local_inventory)):
        ...

==============================================================================
"""

from __future__ import annotations

import logging
from typing import Generator

from fastapi import Depends

from stockscan.config import Settings, get_settings
from stockscan.db.database import get_database_manager, get_db
from stockscan.inventory.base import InventoryService
from stockscan.inventory.http_service import HttpInventoryService
from stockscan.inventory.sql_service import SqlInventoryService


# Module logger
logger = logging.getLogger(__name__)

__all__ = [
    "build_inventory_service",
    "get_db",
    "get_inventory_service",
    "get_local_inventory",
]


def build_inventory_service(settings: Settings) -> InventoryService:
    """Inventory backend selected by settings.inventory_backend."""
    if settings.inventory_backend == "http":
        logger.debug(f"Using REST inventory at {settings.inventory_api_url}")
        return HttpInventoryService(
            settings.inventory_api_url,
            timeout_seconds=settings.inventory_timeout_seconds,
        )
    return SqlInventoryService(get_database_manager())


def get_local_inventory() -> SqlInventoryService:
    """Local SQL inventory served by the REST routes."""
    return SqlInventoryService(get_database_manager())


def get_inventory_service(
    settings: Settings = Depends(get_settings)
) -> Generator[InventoryService, None, None]:
    """Configured inventory backend, closed when the request or socket ends."""
    service = build_inventory_service(settings)
    try:
        yield service
    finally:
        service.close()
