"""
==============================================================================
Schemas Package - Pydantic Models
==============================================================================

Request and response schemas using Pydantic for validation.

==============================================================================
"""

from .common import SuccessResponse
from .inventory import (
    ItemCreateForm,
    ItemCreateRequest,
    ItemResponse,
    ReceiptResponse,
    TransactionRequest,
    validation_messages,
)

__all__ = [
    "SuccessResponse",
    "ItemCreateForm",
    "ItemCreateRequest",
    "ItemResponse",
    "ReceiptResponse",
    "TransactionRequest",
    "validation_messages",
]
