"""
==============================================================================
SQL Inventory Service Module
==============================================================================

InventoryService backed by the local SQLAlchemy database.

Code Lookup Order:
------------------
1. Primary code (trimmed, upper-cased)
2. Internal shelf code STK000123 → item id 123
3. Active alternate codes

Idempotent Transactions:
------------------------
The stock change and its StockMovement row are written in one database
transaction. The movement's idempotency_key is unique:

- Key not seen:           apply, store movement, return receipt
- Key seen, same request: return stored receipt (replayed=True), no change
- Key seen, other request: InventoryConflict
- Concurrent insert race:  the loser re-reads and replays

The item row is read under a write lock (BEGIN IMMEDIATE on SQLite, FOR
UPDATE elsewhere) and the stock is changed by one conditional UPDATE that
refuses to go below zero, so concurrent commits with different keys all
land.

==============================================================================
"""

from __future__ import annotations

import logging
import re
import time
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockscan.core import exceptions
from stockscan.db.database import DatabaseManager
from stockscan.db.models import INTERNAL_CODE_PREFIX, AlternateCode, InventoryItem, StockMovement
from stockscan.inventory.base import InventoryService
from stockscan.scanner.models import ResolvedItem, TransactionOperation, TransactionReceipt
from stockscan.schemas.inventory import ItemCreateForm
from stockscan.utils.validators import CodeValidator, QuantityValidator


# Module logger
logger = logging.getLogger(__name__)

INTERNAL_CODE_PATTERN = re.compile(rf"^{INTERNAL_CODE_PREFIX}0*(\d+)$")


def to_resolved_item(item: InventoryItem) -> ResolvedItem:
    """Convert an ORM row to the pipeline's item model."""
    return ResolvedItem(
        id=str(item.id),
        code=item.code,
        name=item.name,
        unit_price=float(item.unit_price or 0),
        unit_cost=float(item.unit_cost) if item.unit_cost is not None else None,
        stock_on_hand=float(item.stock_on_hand),
        is_bulk=bool(item.is_bulk),
        unit_of_measure=item.unit_of_measure,
        category=item.category,
    )


class SqlInventoryService(InventoryService):
    """
    Local inventory.

    Example:
        >>> service = SqlInventoryService(DatabaseManager())
        >>> item = service.find_by_code("7790001234567")
        >>> service.apply_transaction(item.id, TransactionOperation.SELL, 3, key)
    """

    def __init__(self, db_manager: DatabaseManager) -> None:
        self._db = db_manager
        self._codes = CodeValidator()
        self._quantities = QuantityValidator()

    # =========================================================================
    # LOOKUP
    # =========================================================================

    def find_by_code(self, code: str) -> Optional[ResolvedItem]:
        normalized = CodeValidator.normalize(code)
        if not normalized:
            return None

        with self._db.session_scope() as session:
            item = self._find_item(session, normalized)
            if item is None:
                logger.debug(f"Code not found: {normalized}")
                return None
            return to_resolved_item(item)

    def _find_item(self, session: Session, normalized: str) -> Optional[InventoryItem]:
        item = session.query(InventoryItem).filter(
            InventoryItem.code == normalized,
            InventoryItem.is_active.is_(True)
        ).first()
        if item is not None:
            return item

        match = INTERNAL_CODE_PATTERN.match(normalized)
        if match:
            item = session.get(InventoryItem, int(match.group(1)))
            if item is not None and item.is_active:
                return item

        alternate = session.query(AlternateCode).join(InventoryItem).filter(
            AlternateCode.code == normalized,
            AlternateCode.is_active.is_(True),
            InventoryItem.is_active.is_(True)
        ).first()
        if alternate is not None:
            logger.debug(f"Alternate code {normalized} → item {alternate.item_id}")
            return alternate.item

        return None

    def get_item(self, item_id: str) -> ResolvedItem:
        with self._db.session_scope() as session:
            return to_resolved_item(self._load_item(session, item_id))

    @staticmethod
    def _load_item(session: Session, item_id: str, for_update: bool = False) -> InventoryItem:
        try:
            key = int(item_id)
        except (TypeError, ValueError):
            raise exceptions.item_not_found(str(item_id)) from None

        item = session.get(InventoryItem, key, with_for_update=for_update, populate_existing=for_update)
        if item is None or not item.is_active:
            raise exceptions.item_not_found(str(item_id))
        return item

    def _code_taken(self, session: Session, code: str) -> bool:
        if session.query(InventoryItem.id).filter(InventoryItem.code == code).first():
            return True
        return session.query(AlternateCode.id).filter(AlternateCode.code == code).first() is not None

    # =========================================================================
    # CREATE
    # =========================================================================

    def create_item(self, code: Optional[str], form: ItemCreateForm) -> ResolvedItem:
        if code and code.strip():
            is_valid, normalized, error = self._codes.validate(code)
            if not is_valid:
                raise exceptions.validation_failed(error, {"code": error})
        else:
            normalized = f"PROD-{int(time.time() * 1000)}"

        try:
            with self._db.session_scope() as session:
                if self._code_taken(session, normalized):
                    raise exceptions.validation_failed(
                        f"Code {normalized} is already registered",
                        {"code": "Code is already registered"}
                    )

                item = InventoryItem(
                    code=normalized,
                    name=form.name,
                    category=form.category,
                    location=form.location,
                    unit_price=form.unit_price,
                    unit_cost=form.unit_cost,
                    stock_on_hand=form.initial_quantity,
                    is_bulk=form.is_bulk,
                    unit_of_measure=form.unit_of_measure,
                )
                session.add(item)
                session.flush()
                created = to_resolved_item(item)
        except IntegrityError as e:
            raise exceptions.validation_failed(
                f"Code {normalized} is already registered",
                {"code": "Code is already registered"}
            ) from e

        logger.info(f"✅ Item created: {created.code} {created.name!r} (stock {created.stock_on_hand:g})")
        return created

    def add_alternate_code(self, item_id: str, code: str) -> ResolvedItem:
        """Map an extra barcode to an existing item."""
        is_valid, normalized, error = self._codes.validate(code)
        if not is_valid:
            raise exceptions.validation_failed(error, {"code": error})

        with self._db.session_scope() as session:
            item = self._load_item(session, item_id)
            if self._code_taken(session, normalized):
                raise exceptions.validation_failed(
                    f"Code {normalized} is already registered",
                    {"code": "Code is already registered"}
                )
            item.alternate_codes.append(AlternateCode(code=normalized))
            session.flush()
            logger.info(f"🔗 Alternate code {normalized} added to {item.code}")
            return to_resolved_item(item)

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    def apply_transaction(
        self,
        item_id: str,
        operation: TransactionOperation,
        quantity: float,
        idempotency_key: str,
        unit_price: Optional[float] = None,
        reason: Optional[str] = None
    ) -> TransactionReceipt:
        operation = TransactionOperation(operation)

        try:
            with self._db.session_scope(for_write=True) as session:
                existing = self._find_movement(session, idempotency_key)
                if existing is not None:
                    return self._replay(existing, item_id, operation, quantity)
                return self._apply(
                    session, item_id, operation, quantity,
                    idempotency_key, unit_price, reason
                )
        except IntegrityError:
            # Same key committed concurrently by another request
            with self._db.session_scope() as session:
                existing = self._find_movement(session, idempotency_key)
                if existing is None:
                    raise
                return self._replay(existing, item_id, operation, quantity)

    @staticmethod
    def _find_movement(session: Session, key: str) -> Optional[StockMovement]:
        return session.query(StockMovement).filter(
            StockMovement.idempotency_key == key
        ).one_or_none()

    def _apply(
        self,
        session: Session,
        item_id: str,
        operation: TransactionOperation,
        quantity: float,
        idempotency_key: str,
        unit_price: Optional[float],
        reason: Optional[str]
    ) -> TransactionReceipt:
        item = self._load_item(session, item_id, for_update=True)

        is_valid, error = self._quantities.validate(quantity, item.is_bulk)
        if not is_valid:
            raise exceptions.validation_failed(error, {"quantity": error})

        stock_before = float(item.stock_on_hand)
        delta = operation.direction * quantity
        insufficient = exceptions.conflict(
            f"Insufficient stock. Available: {stock_before:g}",
            {"available": stock_before, "requested": quantity}
        )
        if stock_before + delta < 0:
            raise insufficient

        result = session.execute(
            update(InventoryItem)
            .where(
                InventoryItem.id == item.id,
                InventoryItem.stock_on_hand + delta >= 0
            )
            .values(stock_on_hand=InventoryItem.stock_on_hand + delta)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise insufficient

        session.refresh(item)
        stock_after = float(item.stock_on_hand)
        price = float(unit_price) if unit_price is not None else float(item.unit_price or 0)

        movement = StockMovement(
            idempotency_key=idempotency_key,
            item_id=item.id,
            operation=operation,
            quantity=quantity,
            unit_price=price,
            stock_before=stock_before,
            stock_after=stock_after,
            reason=reason or operation.default_reason,
        )
        session.add(movement)
        session.flush()

        logger.info(
            f"📦 {operation.value} {quantity:g} × {item.code}: "
            f"{stock_before:g} → {stock_after:g} (key {idempotency_key})"
        )
        return self._receipt(movement, item, replayed=False)

    def _replay(
        self,
        movement: StockMovement,
        item_id: str,
        operation: TransactionOperation,
        quantity: float
    ) -> TransactionReceipt:
        if (
            str(movement.item_id) != str(item_id)
            or movement.operation != operation
            or float(movement.quantity) != float(quantity)
        ):
            raise exceptions.conflict(
                "Idempotency key already used for a different transaction",
                {"idempotency_key": movement.idempotency_key}
            )

        logger.info(f"↩️ Replayed transaction {movement.idempotency_key}, stock unchanged")
        return self._receipt(movement, movement.item, replayed=True)

    @staticmethod
    def _receipt(movement: StockMovement, item: InventoryItem, replayed: bool) -> TransactionReceipt:
        return TransactionReceipt(
            item=to_resolved_item(item),
            idempotency_key=movement.idempotency_key,
            operation=movement.operation,
            quantity=float(movement.quantity),
            unit_price=float(movement.unit_price),
            stock_before=float(movement.stock_before),
            stock_after=float(movement.stock_after),
            reason=movement.reason,
            committed_at=movement.created_at,
            replayed=replayed,
        )
