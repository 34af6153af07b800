"""
==============================================================================
Inventory Endpoints
==============================================================================

REST form of the inventory contract, served from the local SQL inventory.
HttpInventoryService is the client side of these routes.

Endpoints:
----------
- GET  /inventory/by-code/{code}             lookup (404 when unknown)
- GET  /inventory/items/{item_id}            fresh read
- POST /inventory/items                      create (422 on invalid fields)
- POST /inventory/items/{item_id}/transactions
       Idempotency-Key header required; a repeated key returns the
       original receipt with "replayed": true and never re-applies
- POST /inventory/items/{item_id}/codes      add an alternate code

==============================================================================
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, Field

from stockscan.core import exceptions
from stockscan.core.dependencies import get_local_inventory
from stockscan.inventory.sql_service import SqlInventoryService
from stockscan.schemas.inventory import (
    ItemCreateForm,
    ItemCreateRequest,
    ItemResponse,
    ReceiptResponse,
    TransactionRequest,
)


router = APIRouter(prefix="/inventory", tags=["Inventory"])


class AlternateCodeRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)


class InventoryController:
    """Controller for inventory operations."""

    def __init__(self, inventory: SqlInventoryService):
        self._inventory = inventory

    def lookup(self, code: str) -> ItemResponse:
        item = self._inventory.find_by_code(code)
        if item is None:
            raise exceptions.item_not_found(code)
        return ItemResponse(item=item)

    def get_item(self, item_id: str) -> ItemResponse:
        return ItemResponse(item=self._inventory.get_item(item_id))

    def create_item(self, request: ItemCreateRequest) -> ItemResponse:
        form = ItemCreateForm.model_validate(request.model_dump(exclude={"code"}))
        return ItemResponse(item=self._inventory.create_item(request.code, form))

    def apply_transaction(
        self,
        item_id: str,
        request: TransactionRequest,
        idempotency_key: str
    ) -> ReceiptResponse:
        key = idempotency_key.strip()
        if not key:
            raise exceptions.validation_failed(
                "Idempotency-Key header is required",
                {"idempotency_key": "Required"}
            )

        receipt = self._inventory.apply_transaction(
            item_id,
            request.operation,
            request.quantity,
            key,
            request.unit_price,
            request.reason,
        )
        return ReceiptResponse(receipt=receipt)

    def add_code(self, item_id: str, request: AlternateCodeRequest) -> ItemResponse:
        return ItemResponse(item=self._inventory.add_alternate_code(item_id, request.code))


@router.get("/by-code/{code:path}", response_model=ItemResponse)
def lookup_by_code(
    code: str,
    inventory: SqlInventoryService = Depends(get_local_inventory)
):
    """Resolve a scanned code (primary, internal STK code, or alternate)."""
    return InventoryController(inventory).lookup(code)


@router.get("/items/{item_id}", response_model=ItemResponse)
def get_item(
    item_id: str,
    inventory: SqlInventoryService = Depends(get_local_inventory)
):
    """Fresh read of one item."""
    return InventoryController(inventory).get_item(item_id)


@router.post("/items", response_model=ItemResponse, status_code=201)
def create_item(
    request: ItemCreateRequest,
    inventory: SqlInventoryService = Depends(get_local_inventory)
):
    """Create an item; a code is generated when none is given."""
    return InventoryController(inventory).create_item(request)


@router.post("/items/{item_id}/transactions", response_model=ReceiptResponse)
def apply_transaction(
    item_id: str,
    request: TransactionRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    inventory: SqlInventoryService = Depends(get_local_inventory)
):
    """Apply SELL / STOCK_IN / STOCK_OUT exactly once per idempotency key."""
    return InventoryController(inventory).apply_transaction(
        item_id, request, idempotency_key or ""
    )


@router.post("/items/{item_id}/codes", response_model=ItemResponse)
def add_alternate_code(
    item_id: str,
    request: AlternateCodeRequest,
    inventory: SqlInventoryService = Depends(get_local_inventory)
):
    """Map an additional barcode to an item."""
    return InventoryController(inventory).add_code(item_id, request)
