"""
==============================================================================
SQLAlchemy ORM Models Module
==============================================================================

Tables backing the local inventory service.

Database Schema:
---------------

    ┌─────────────────────────────────────────────────────────────────┐
    │                       inventory_items                            │
    ├─────────────────────────────────────────────────────────────────┤
    │ id (INTEGER, PK, AUTO INCREMENT)                                │
    │ code (VARCHAR, UNIQUE, NOT NULL)                                │
    │ name, category, location (VARCHAR)                              │
    │ unit_price, unit_cost (NUMERIC)                                 │
    │ stock_on_hand (FLOAT, NOT NULL)                                 │
    │ is_bulk (BOOLEAN), unit_of_measure (VARCHAR)                    │
    │ is_active (BOOLEAN), created_at, updated_at                     │
    └─────────────────────────────────────────────────────────────────┘
            │ 1:N                                  │ 1:N
            ▼                                      ▼
    ┌──────────────────────────┐    ┌──────────────────────────────────┐
    │     alternate_codes      │    │         stock_movements          │
    ├──────────────────────────┤    ├──────────────────────────────────┤
    │ id (PK)                  │    │ id (PK)                          │
    │ item_id (FK)             │    │ idempotency_key (UNIQUE)         │
    │ code (UNIQUE)            │    │ item_id (FK)                     │
    │ is_active                │    │ operation, quantity, unit_price  │
    └──────────────────────────┘    │ stock_before, stock_after        │
                                    │ reason, created_at               │
                                    └──────────────────────────────────┘

Idempotency:
------------
A stock movement is written in the same database transaction as the stock
change. The unique idempotency_key makes a replayed commit find the
existing movement instead of applying a second change.

=============================================================================
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import relationship

from stockscan.db.database import Base
from stockscan.scanner.models import TransactionOperation


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Internal item codes printed on shelf labels: STK000123 → item 123
INTERNAL_CODE_PREFIX = "STK"


class InventoryItem(Base):
    """
    Stocked product.

    stock_on_hand is a float so bulk items (sold by weight or length) can
    hold fractional quantities.
    """

    __tablename__ = "inventory_items"

    id: int = Column(Integer, primary_key=True, autoincrement=True)

    code: str = Column(
        String(64),
        unique=True,
        nullable=False,
        index=True,
        doc="Primary barcode (upper-cased)"
    )

    name: str = Column(String(200), nullable=False)
    category: str = Column(String(100), nullable=False, default="General")
    location: str = Column(String(100), nullable=True, doc="Shelf or bin")

    unit_price = Column(Numeric(12, 2), nullable=False, default=0)
    unit_cost = Column(Numeric(12, 2), nullable=True)

    stock_on_hand: float = Column(Float, nullable=False, default=0)
    is_bulk: bool = Column(Boolean, nullable=False, default=False)
    unit_of_measure: str = Column(String(20), nullable=False, default="unit")

    is_active: bool = Column(Boolean, nullable=False, default=True)
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: datetime = Column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False
    )

    alternate_codes = relationship(
        "AlternateCode",
        back_populates="item",
        cascade="all, delete-orphan",
    )
    movements = relationship(
        "StockMovement",
        back_populates="item",
        cascade="all, delete-orphan",
        order_by="StockMovement.id",
    )

    @property
    def internal_code(self) -> str:
        return f"{INTERNAL_CODE_PREFIX}{self.id:06d}"

    def __repr__(self) -> str:
        return f"<InventoryItem(id={self.id}, code={self.code!r}, stock={self.stock_on_hand})>"


class AlternateCode(Base):
    """Additional barcode mapped to an item (supplier or repack labels)."""

    __tablename__ = "alternate_codes"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    item_id: int = Column(
        Integer,
        ForeignKey("inventory_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    code: str = Column(String(64), unique=True, nullable=False, index=True)
    is_active: bool = Column(Boolean, nullable=False, default=True)

    item = relationship("InventoryItem", back_populates="alternate_codes")

    def __repr__(self) -> str:
        return f"<AlternateCode(code={self.code!r}, item_id={self.item_id})>"


class StockMovement(Base):
    """One applied stock mutation, keyed by its idempotency key."""

    __tablename__ = "stock_movements"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    idempotency_key: str = Column(String(64), unique=True, nullable=False, index=True)
    item_id: int = Column(
        Integer,
        ForeignKey("inventory_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    operation: TransactionOperation = Column(Enum(TransactionOperation), nullable=False)
    quantity: float = Column(Float, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    stock_before: float = Column(Float, nullable=False)
    stock_after: float = Column(Float, nullable=False)
    reason: str = Column(String(255), nullable=True)
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    item = relationship("InventoryItem", back_populates="movements")

    def __repr__(self) -> str:
        return (
            f"<StockMovement(key={self.idempotency_key!r}, op={self.operation}, "
            f"qty={self.quantity})>"
        )
