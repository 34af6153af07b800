"""
==============================================================================
Database Initialization Module
==============================================================================

Creates the inventory tables and seeds an empty inventory from the
catalog file.

Seed File Format (data/products.json):
--------------------------------------
    {
        "Beverages": [
            {"code": "7790001234567", "name": "Coca Cola 2L",
             "unit_price": 2500.0, "unit_cost": 1800.0, "stock": 20}
        ]
    }

Entries missing a code or name, or with invalid numbers, are skipped with
a warning.

Usage:
------
    from stockscan.db import init_db
    init_db()

==============================================================================
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError

from stockscan.config import get_settings
from stockscan.db.database import DatabaseManager, get_database_manager
from stockscan.db.models import AlternateCode, InventoryItem


# Module logger
logger = logging.getLogger(__name__)


class SeedProduct(BaseModel):
    """One catalog entry in the seed file."""

    code: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    unit_price: float = Field(default=0, ge=0)
    unit_cost: Optional[float] = Field(default=None, ge=0)
    stock: float = Field(default=0, ge=0)
    is_bulk: bool = False
    unit_of_measure: str = "unit"
    location: Optional[str] = None
    alternate_codes: List[str] = Field(default_factory=list)


class DatabaseInitializer:
    """
    Table creation and catalog seeding.

    Example:
        >>> initializer = DatabaseInitializer()
        >>> initializer.initialize(seed=True)
    """

    def __init__(self, db_manager: Optional[DatabaseManager] = None) -> None:
        self._db_manager = db_manager or get_database_manager()
        self._settings = get_settings()

    def create_tables(self) -> None:
        logger.info("Creating database tables...")
        self._db_manager.create_tables()
        logger.info("✅ Database tables created successfully")

    # =========================================================================
    # SEEDING
    # =========================================================================

    @staticmethod
    def load_seed_file(products_file: Path) -> List[tuple]:
        """
        Parse the seed catalog.

        Args:
            products_file: Path to products.json

        Returns:
            List of (category, SeedProduct)

        Raises:
            FileNotFoundError: File missing
            json.JSONDecodeError: File is not JSON
        """
        try:
            with products_file.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.error(f"Products file not found: {products_file}")
            raise
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON: {e}")
            raise

        entries = []
        for category, products in data.items():
            if not isinstance(products, list):
                logger.warning(f"Skipping invalid category: {category}")
                continue

            for raw in products:
                try:
                    entries.append((category, SeedProduct.model_validate(raw)))
                except ValidationError as e:
                    logger.warning(f"Skipping invalid product in {category}: {e.error_count()} errors")

        return entries

    def seed_catalog(self, products_file: Optional[Path] = None) -> int:
        """
        Insert the seed catalog if the inventory is empty.

        Returns:
            Number of items inserted (0 when the inventory already has data)
        """
        path = products_file or self._settings.products_path

        with self._db_manager.session_scope() as session:
            if session.query(InventoryItem).count() > 0:
                logger.info("Inventory already populated, skipping seed")
                return 0

            seen = set()
            inserted = 0
            for category, product in self.load_seed_file(path):
                code = product.code.strip().upper()
                if code in seen:
                    logger.warning(f"Duplicate seed code skipped: {code}")
                    continue
                seen.add(code)

                item = InventoryItem(
                    code=code,
                    name=product.name.strip(),
                    category=category,
                    location=product.location,
                    unit_price=product.unit_price,
                    unit_cost=product.unit_cost,
                    stock_on_hand=product.stock,
                    is_bulk=product.is_bulk,
                    unit_of_measure=product.unit_of_measure,
                )
                for alternate in product.alternate_codes:
                    alternate = alternate.strip().upper()
                    if alternate and alternate not in seen:
                        seen.add(alternate)
                        item.alternate_codes.append(AlternateCode(code=alternate))

                session.add(item)
                inserted += 1

        logger.info(f"✅ Seeded {inserted} inventory items from {path}")
        return inserted

    def initialize(self, seed: bool = True) -> None:
        """Create tables, then seed when requested and the file exists."""
        logger.info("=" * 60)
        logger.info("Initializing database...")

        self.create_tables()

        if seed:
            if self._settings.products_path.exists():
                self.seed_catalog()
            else:
                logger.warning(f"⚠️ Seed file missing: {self._settings.products_path}")

        if self._db_manager.verify_connection():
            logger.info("✅ Database connection verified")
        else:
            logger.warning("⚠️ Database connection check failed")

        logger.info("Database initialization complete")
        logger.info("=" * 60)


def init_db(seed: Optional[bool] = None) -> None:
    """Initialize the process-wide database."""
    settings = get_settings()
    DatabaseInitializer().initialize(
        seed=settings.seed_on_startup if seed is None else seed
    )
