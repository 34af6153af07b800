"""
==============================================================================
Confirmation Surface Contract
==============================================================================

The operator-facing collaborator a ScannerSession asks before any side
effect: confirm a pending transaction, or fill in the create-new-item form
for an unknown code.

==============================================================================
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional, Union

from stockscan.core.exceptions import AppException
from stockscan.scanner.models import PendingTransaction
from stockscan.schemas.inventory import ItemCreateForm

FormInput = Union[ItemCreateForm, Mapping[str, Any]]


class ConfirmationSurface(ABC):
    """User confirmation and create-item form."""

    @abstractmethod
    async def confirm_transaction(self, transaction: PendingTransaction) -> bool:
        """Show the pending transaction; True to commit, False to cancel."""

    @abstractmethod
    async def collect_new_item(
        self,
        code: str,
        error: Optional[AppException] = None
    ) -> Optional[FormInput]:
        """
        Show the create form pre-filled with the code.

        Args:
            code: Unknown code being registered
            error: Rejection of the previous submission, if any

        Returns:
            Submitted fields, or None if the user cancelled
        """


class AutoConfirmSurface(ConfirmationSurface):
    """Confirms every transaction and never creates items (headless use)."""

    async def confirm_transaction(self, transaction: PendingTransaction) -> bool:
        return True

    async def collect_new_item(self, code, error=None):
        return None
