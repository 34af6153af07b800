"""
==============================================================================
Inventory Schemas Module
==============================================================================

Request and response schemas for inventory lookup, item creation and
stock transactions.

==============================================================================
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from stockscan.scanner.models import ResolvedItem, TransactionOperation, TransactionReceipt
from stockscan.schemas.common import SuccessResponse


# =============================================================================
# CREATE SCHEMAS
# =============================================================================

class ItemCreateForm(BaseModel):
    """Fields collected by the create-new-item form."""
    name: str = Field(..., min_length=1, max_length=200)
    unit_price: float = Field(..., gt=0, allow_inf_nan=False)
    initial_quantity: float = Field(default=1, ge=0, allow_inf_nan=False)
    category: str = Field(default="General", max_length=100)
    unit_cost: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    location: Optional[str] = Field(default=None, max_length=100)
    is_bulk: bool = False
    unit_of_measure: str = Field(default="unit", min_length=1, max_length=20)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name is required")
        return v

    @field_validator("category")
    @classmethod
    def default_category(cls, v: str) -> str:
        return v.strip() or "General"

    @field_validator("location")
    @classmethod
    def strip_location(cls, v: Optional[str]) -> Optional[str]:
        if v:
            v = v.strip()
            return v if v else None
        return None

    @model_validator(mode="after")
    def whole_units_unless_bulk(self) -> "ItemCreateForm":
        if not self.is_bulk and self.initial_quantity != int(self.initial_quantity):
            raise ValueError("Initial quantity must be a whole number for non-bulk items")
        return self


class ItemCreateRequest(ItemCreateForm):
    """REST body for item creation; the code is generated when omitted."""
    code: Optional[str] = Field(default=None, max_length=64)


class TransactionRequest(BaseModel):
    """REST body for a stock transaction."""
    operation: TransactionOperation
    quantity: float = Field(..., gt=0, allow_inf_nan=False)
    unit_price: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    reason: Optional[str] = Field(default=None, max_length=255)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class ItemResponse(SuccessResponse):
    """Item envelope."""
    item: ResolvedItem


class ReceiptResponse(SuccessResponse):
    """Transaction receipt envelope."""
    receipt: TransactionReceipt


def validation_messages(error: ValidationError) -> Dict[str, str]:
    """
    Flatten pydantic errors to {field: message}.

    Model-level errors are reported under "__all__".
    """
    messages: Dict[str, str] = {}
    for item in error.errors():
        field = ".".join(str(part) for part in item.get("loc", ())) or "__all__"
        message = item.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        messages.setdefault(field, message)
    return messages
