"""
==============================================================================
Services Package
==============================================================================

Business logic between the scanner and the inventory.

Services:
---------
- resolver: CodeResolver (lookup and create-new-item)
- transaction_coordinator: TransactionCoordinator state machine
- confirmation: ConfirmationSurface contract
- scanner_session: ScannerSession orchestrating one open camera

==============================================================================
"""

from .confirmation import AutoConfirmSurface, ConfirmationSurface
from .resolver import CodeResolver, Found, Unknown
from .scanner_session import ScanMode, ScannerSession
from .transaction_coordinator import (
    CoordinatorState,
    SessionTotals,
    TransactionCoordinator,
    derive_idempotency_key,
)

__all__ = [
    "AutoConfirmSurface",
    "ConfirmationSurface",
    "CodeResolver",
    "Found",
    "Unknown",
    "ScanMode",
    "ScannerSession",
    "CoordinatorState",
    "SessionTotals",
    "TransactionCoordinator",
    "derive_idempotency_key",
]
