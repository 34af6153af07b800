"""
==============================================================================
Inventory Service Contract
==============================================================================

Narrow interface the scanning pipeline uses to read and mutate stock.

Methods are synchronous; the scanner session calls them from worker
threads so the event loop never waits on the database or the network.

Outcomes:
---------
- find_by_code: ResolvedItem, or None for an unknown code
- create_item: ResolvedItem, or ItemValidationError
- apply_transaction: TransactionReceipt, or InventoryConflict /
  InventoryNetworkError. Replaying an idempotency key returns the original
  receipt (replayed=True) and changes nothing.

==============================================================================
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from stockscan.scanner.models import ResolvedItem, TransactionOperation, TransactionReceipt
from stockscan.schemas.inventory import ItemCreateForm


class InventoryService(ABC):
    """Inventory lookup and mutation."""

    @abstractmethod
    def find_by_code(self, code: str) -> Optional[ResolvedItem]:
        """Look up an item by any of its codes."""

    @abstractmethod
    def get_item(self, item_id: str) -> ResolvedItem:
        """
        Fresh read of an item.

        Raises:
            AppException: ITEM_NOT_FOUND
        """

    @abstractmethod
    def create_item(self, code: Optional[str], form: ItemCreateForm) -> ResolvedItem:
        """
        Create an item from the create-flow form.

        Raises:
            ItemValidationError: Invalid fields or duplicate code
        """

    @abstractmethod
    def apply_transaction(
        self,
        item_id: str,
        operation: TransactionOperation,
        quantity: float,
        idempotency_key: str,
        unit_price: Optional[float] = None,
        reason: Optional[str] = None
    ) -> TransactionReceipt:
        """
        Apply a stock movement at most once per idempotency key.

        Raises:
            InventoryConflict: Key reused with other parameters, or stock too low
            InventoryNetworkError: Service unreachable, outcome unknown
        """

    def close(self) -> None:
        """Release connections."""
