"""
==============================================================================
Validation Utilities Module
==============================================================================

Validators for typed-in codes and transaction quantities.

Validation Rules for Codes:
---------------------------
- Surrounding whitespace removed, stored upper-case
- Length: 1-64 characters
- Allowed: letters, digits, dot, underscore, hyphen, slash

Validation Rules for Quantities:
--------------------------------
- Finite and strictly positive
- Whole numbers unless the item is sold in bulk

==============================================================================
"""

from __future__ import annotations

import math
import re
from typing import Optional, Tuple


class CodeValidator:
    """
    Validator for manually entered item codes.

    Example:
        >>> validator = CodeValidator()
        >>> validator.validate("  stk000123 ")
        (True, 'STK000123', None)
    """

    PATTERN = re.compile(r"^[A-Z0-9._/-]{1,64}$")
    MAX_LENGTH = 64

    @staticmethod
    def normalize(code: Optional[str]) -> str:
        """Trim and upper-case a code as the inventory stores it."""
        return (code or "").strip().upper()

    def validate(self, code: Optional[str]) -> Tuple[bool, Optional[str], Optional[str]]:
        """
        Validate and normalize a code.

        Returns:
            Tuple of (is_valid, normalized_code, error_message)
        """
        normalized = self.normalize(code)

        if not normalized:
            return False, None, "Code is required"

        if len(normalized) > self.MAX_LENGTH:
            return False, None, f"Code must be at most {self.MAX_LENGTH} characters"

        if not self.PATTERN.match(normalized):
            return False, None, "Code can only contain letters, digits, '.', '_', '-' and '/'"

        return True, normalized, None


class QuantityValidator:
    """Validator for transaction quantities."""

    def validate(self, quantity: float, is_bulk: bool) -> Tuple[bool, Optional[str]]:
        """
        Returns:
            Tuple of (is_valid, error_message)
        """
        if quantity is None:
            return False, "Quantity is required"

        if not math.isfinite(quantity):
            return False, "Quantity must be a finite number"

        if quantity <= 0:
            return False, "Quantity must be greater than zero"

        if not is_bulk and quantity != int(quantity):
            return False, "Quantity must be a whole number for this item"

        return True, None
