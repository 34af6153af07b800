"""
==============================================================================
Utilities Package
==============================================================================

Modules:
--------
- validators: Code and quantity validation
- session_logger: Scan session summary log files

==============================================================================
"""

from .session_logger import ScanSessionLogger
from .validators import CodeValidator, QuantityValidator

__all__ = [
    "CodeValidator",
    "QuantityValidator",
    "ScanSessionLogger",
]
