"""
==============================================================================
Database Package
==============================================================================

SQLAlchemy infrastructure for the local inventory.

Architecture:
------------
├── database.py   - DatabaseManager, session factory
├── models.py     - InventoryItem, AlternateCode, StockMovement
└── init_db.py    - DatabaseInitializer (tables + seed catalog)

==============================================================================
"""

from .database import Base, DatabaseManager, get_database_manager, get_db
from .models import AlternateCode, InventoryItem, StockMovement
from .init_db import DatabaseInitializer, init_db

__all__ = [
    "Base",
    "DatabaseManager",
    "get_database_manager",
    "get_db",
    "AlternateCode",
    "InventoryItem",
    "StockMovement",
    "DatabaseInitializer",
    "init_db",
]
