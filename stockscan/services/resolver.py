"""
==============================================================================
Code Resolver Service
==============================================================================

Maps decoded codes to inventory items.

An unknown code is an expected result, not an error: it opens the
create-new-item flow instead of a transaction.

==============================================================================
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Union

from pydantic import BaseModel, ValidationError

from stockscan.core import exceptions
from stockscan.inventory.base import InventoryService
from stockscan.scanner.models import ResolvedItem
from stockscan.schemas.inventory import ItemCreateForm, validation_messages


# Module logger
logger = logging.getLogger(__name__)


class Found(BaseModel):
    """Code matched an item."""
    item: ResolvedItem


class Unknown(BaseModel):
    """Code not registered."""
    code: str


Resolution = Union[Found, Unknown]


class CodeResolver:
    """
    Lookup and creation through an InventoryService.

    Both calls are blocking; ScannerSession runs them in worker threads.
    """

    def __init__(self, inventory: InventoryService) -> None:
        self._inventory = inventory

    def resolve(self, code: str) -> Resolution:
        item = self._inventory.find_by_code(code)
        if item is None:
            logger.info(f"❓ Unknown code: {code}")
            return Unknown(code=code)

        logger.info(f"✅ Resolved {code} → {item.name} (stock {item.stock_on_hand:g})")
        return Found(item=item)

    @staticmethod
    def parse_form(form: Union[ItemCreateForm, Mapping[str, Any]]) -> ItemCreateForm:
        """
        Validate raw create-flow fields.

        Raises:
            ItemValidationError: With per-field messages
        """
        if isinstance(form, ItemCreateForm):
            return form
        try:
            return ItemCreateForm.model_validate(dict(form))
        except ValidationError as e:
            fields = validation_messages(e)
            raise exceptions.validation_failed(
                "Please correct the highlighted fields",
                fields
            ) from e

    def create_item(
        self,
        code: str,
        form: Union[ItemCreateForm, Mapping[str, Any]]
    ) -> ResolvedItem:
        """
        Create an item for an unknown code.

        Args:
            code: The scanned code the form was pre-filled with
            form: Validated form or raw field mapping

        Returns:
            The created item

        Raises:
            ItemValidationError: Missing/invalid fields or duplicate code
        """
        parsed = self.parse_form(form)
        return self._inventory.create_item(code, parsed)

