"""
==============================================================================
Transaction Coordinator Service
==============================================================================

Drives a resolved item through confirmation to one idempotent stock
mutation.

State Machine:
-------------

    ┌──────────┐ select()  ┌──────────┐ propose() ┌─────────┐ commit() ┌────────────┐
    │ SCANNING │ ────────▶ │ RESOLVED │ ────────▶ │ PENDING │ ───────▶ │ COMMITTING │
    └──────────┘           └──────────┘           └─────────┘          └────────────┘
         ▲                      │                   │    ▲               │        │
         │      cancel()        │      cancel()     │    │ commit()      │ error  │ ok
         ├──────────────────────┘◀──────────────────┘    │               ▼        ▼
         │                                          ┌────────┐    ┌───────────┐
         │◀──────────────── cancel() ───────────────│ FAILED │◀───┘ COMMITTED │
         │                                          └────────┘    └───────────┘
         └──────────────────────── reset ─────────────────────────────────┘

Guarantees:
-----------
- One open transaction per session; select() refuses while busy
- Stock checked before commit, against a fresh read when the item is stale
- Commit is never retried automatically; FAILED keeps the transaction and
  its idempotency key so an explicit retry cannot double-apply
- Cancel never calls the inventory and is refused during COMMITTING
- Totals and history change only on COMMITTED

==============================================================================
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from pydantic import BaseModel

from stockscan.core import exceptions
from stockscan.core.exceptions import AppException
from stockscan.inventory.base import InventoryService
from stockscan.scanner.models import (
    PendingTransaction,
    ResolvedItem,
    TransactionOperation,
    TransactionReceipt,
    utc_now,
)
from stockscan.utils.validators import QuantityValidator


# Module logger
logger = logging.getLogger(__name__)

# Namespace for deterministic transaction keys
IDEMPOTENCY_NAMESPACE = uuid.UUID("5b0b8f44-3c1e-4b7a-9a44-2f1d6c0e7a51")

ReceiptListener = Callable[[TransactionReceipt, "SessionTotals"], None]


def derive_idempotency_key(
    item_id: str,
    operation: TransactionOperation,
    window_started_at: datetime
) -> str:
    """
    Deterministic key for one operation on one scan.

    The same item, operation and debounce window always yield the same key,
    so re-sending a commit for that scan is recognised by the inventory.
    """
    name = f"{item_id}|{TransactionOperation(operation).value}|{window_started_at.isoformat()}"
    return str(uuid.uuid5(IDEMPOTENCY_NAMESPACE, name))


class CoordinatorState(str, Enum):
    SCANNING = "SCANNING"
    RESOLVED = "RESOLVED"
    PENDING = "PENDING"
    COMMITTING = "COMMITTING"
    COMMITTED = "COMMITTED"
    FAILED = "FAILED"


class SessionTotals(BaseModel):
    """Running totals of committed movements for one scanner session."""

    sale_count: int = 0
    revenue: float = 0.0
    units_sold: float = 0.0
    stock_in_count: int = 0
    stock_out_count: int = 0

    def record(self, receipt: TransactionReceipt) -> None:
        if receipt.operation is TransactionOperation.SELL:
            self.sale_count += 1
            self.units_sold += receipt.quantity
            self.revenue = round(self.revenue + receipt.total, 2)
        elif receipt.operation is TransactionOperation.STOCK_IN:
            self.stock_in_count += 1
        else:
            self.stock_out_count += 1

    @property
    def movement_count(self) -> int:
        return self.sale_count + self.stock_in_count + self.stock_out_count


class TransactionCoordinator:
    """
    Per-session transaction state machine.

    Attributes:
        state: Current CoordinatorState
        item: Item selected by the last resolution
        pending: Transaction awaiting commit (kept while FAILED)
        last_error: Error of the last failed commit
        totals: Running SessionTotals
        history: Most recent committed receipts, oldest first
    """

    def __init__(
        self,
        inventory: InventoryService,
        staleness_seconds: float = 5.0,
        history_size: int = 20,
        now: Callable[[], datetime] = utc_now
    ) -> None:
        self._inventory = inventory
        self._staleness_seconds = staleness_seconds
        self._now = now
        self._quantities = QuantityValidator()
        self._listeners: List[ReceiptListener] = []
        self._lock = asyncio.Lock()

        self.totals = SessionTotals()
        self.history: Deque[TransactionReceipt] = deque(maxlen=history_size)

        self.state = CoordinatorState.SCANNING
        self.item: Optional[ResolvedItem] = None
        self.pending: Optional[PendingTransaction] = None
        self.last_error: Optional[AppException] = None
        self._window_started_at: Optional[datetime] = None

    # =========================================================================
    # QUERIES
    # =========================================================================

    @property
    def is_busy(self) -> bool:
        """True while a transaction is open and new scans must not start one."""
        return self.state is not CoordinatorState.SCANNING

    @property
    def can_cancel(self) -> bool:
        return self.state in (
            CoordinatorState.RESOLVED,
            CoordinatorState.PENDING,
            CoordinatorState.FAILED,
        )

    def add_listener(self, listener: ReceiptListener) -> None:
        self._listeners.append(listener)

    def snapshot(self) -> Dict[str, Any]:
        """Serializable view of the current state."""
        return {
            "state": self.state.value,
            "item": self.item.model_dump(mode="json") if self.item else None,
            "pending": self.pending.model_dump(mode="json") if self.pending else None,
            "error": self.last_error.to_dict()["error"] if self.last_error else None,
            "can_cancel": self.can_cancel,
            "totals": self.totals.model_dump(),
        }

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def select(self, item: ResolvedItem, window_started_at: Optional[datetime] = None) -> None:
        """
        SCANNING → RESOLVED.

        Args:
            item: Resolved item
            window_started_at: Start of the debounce window of the scan

        Raises:
            InvalidTransition: TRANSACTION_OPEN if a transaction is already open
        """
        if self.is_busy:
            raise exceptions.transaction_open()

        self.item = item
        self._window_started_at = window_started_at or self._now()
        self.state = CoordinatorState.RESOLVED
        logger.debug(f"Selected {item.code} ({item.name})")

    def _is_stale(self, item: ResolvedItem) -> bool:
        age = (self._now() - item.fetched_at).total_seconds()
        return age > self._staleness_seconds

    async def propose(
        self,
        operation: TransactionOperation,
        quantity: float,
        unit_price_override: Optional[float] = None,
        reason: Optional[str] = None
    ) -> PendingTransaction:
        """
        RESOLVED → PENDING.

        Raises:
            ItemValidationError: Bad quantity or price
            StockInsufficient: Outgoing quantity above stock on hand
            InvalidTransition: Not in RESOLVED
        """
        async with self._lock:
            if self.state is not CoordinatorState.RESOLVED:
                raise exceptions.invalid_transition(self.state.value, "propose a transaction")

            operation = TransactionOperation(operation)
            item = self.item

            is_valid, error = self._quantities.validate(quantity, item.is_bulk)
            if not is_valid:
                raise exceptions.validation_failed(error, {"quantity": error})

            if unit_price_override is not None and unit_price_override < 0:
                raise exceptions.validation_failed(
                    "Price cannot be negative",
                    {"unit_price": "Price cannot be negative"}
                )

            if operation.consumes_stock:
                if self._is_stale(item):
                    logger.debug(f"Stock for {item.code} is stale, re-reading")
                    fresh = await asyncio.to_thread(self._inventory.get_item, item.id)
                    if self.state is not CoordinatorState.RESOLVED or self.item is not item:
                        raise exceptions.invalid_transition(self.state.value, "propose a transaction")
                    self.item = item = fresh

                if quantity > item.stock_on_hand:
                    raise exceptions.stock_insufficient(item.stock_on_hand, quantity)

            self.pending = PendingTransaction(
                item=item,
                operation=operation,
                quantity=quantity,
                unit_price_override=unit_price_override,
                idempotency_key=derive_idempotency_key(item.id, operation, self._window_started_at),
                reason=reason or operation.default_reason,
            )
            self.state = CoordinatorState.PENDING

            logger.info(
                f"📝 Pending {operation.value} {quantity:g} × {item.code} "
                f"(key {self.pending.idempotency_key})"
            )
            return self.pending

    async def commit(self) -> TransactionReceipt:
        """
        PENDING|FAILED → COMMITTING → COMMITTED → SCANNING.

        On any failure the coordinator is left FAILED with the transaction
        kept, and the error is re-raised.

        Raises:
            InventoryNetworkError / InventoryConflict / ItemValidationError
            InvalidTransition: Nothing to commit
        """
        async with self._lock:
            if self.state not in (CoordinatorState.PENDING, CoordinatorState.FAILED):
                raise exceptions.invalid_transition(self.state.value, "commit")

            pending = self.pending
            retry = self.state is CoordinatorState.FAILED
            self.state = CoordinatorState.COMMITTING
            self.last_error = None
            logger.info(f"🚀 {'Retrying' if retry else 'Committing'} {pending.idempotency_key}")

            try:
                receipt = await asyncio.to_thread(
                    self._inventory.apply_transaction,
                    pending.item.id,
                    pending.operation,
                    pending.quantity,
                    pending.idempotency_key,
                    pending.unit_price_override,
                    pending.reason,
                )
            except asyncio.CancelledError:
                self._fail(exceptions.network_error(
                    "Commit interrupted, outcome unknown. Retry to confirm."
                ))
                raise
            except AppException as e:
                self._fail(e)
                raise
            except Exception as e:
                self._fail(exceptions.internal_error(f"Commit failed: {e}"))
                raise

            self.state = CoordinatorState.COMMITTED
            self._record(receipt)
            self._reset()
            return receipt

    def cancel(self) -> bool:
        """
        Back to SCANNING without touching the inventory.

        Returns:
            True if something was cancelled

        Raises:
            InvalidTransition: COMMIT_IN_FLIGHT during COMMITTING
        """
        if self.state is CoordinatorState.COMMITTING:
            raise exceptions.commit_in_flight()
        if self.state is CoordinatorState.SCANNING:
            return False

        logger.info(f"↩️ Transaction cancelled from {self.state.value}")
        self._reset()
        return True

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _fail(self, error: AppException) -> None:
        self.state = CoordinatorState.FAILED
        self.last_error = error
        logger.warning(f"❌ Commit failed ({error.code}): {error.message}")

    def _record(self, receipt: TransactionReceipt) -> None:
        self.totals.record(receipt)
        self.history.append(receipt)
        logger.info(
            f"✅ Committed {receipt.operation.value} {receipt.quantity:g} × {receipt.item.code}: "
            f"stock {receipt.stock_before:g} → {receipt.stock_after:g}"
        )

        for listener in list(self._listeners):
            try:
                listener(receipt, self.totals)
            except Exception as e:
                logger.warning(f"Receipt listener failed: {e}")

    def _reset(self) -> None:
        self.state = CoordinatorState.SCANNING
        self.item = None
        self.pending = None
        self.last_error = None
        self._window_started_at = None
