"""
==============================================================================
Core Package
==============================================================================

Core utilities and infrastructure for the application.

This package provides:
- Exception hierarchy with consistent error responses
- Exception factory functions for common error scenarios
- FastAPI dependencies for inventory access

Modules:
--------
- exceptions: AppException class, typed subclasses and factories
- dependencies: FastAPI dependency injection functions

Usage:
------
    from stockscan.core import exceptions
    raise exceptions.stock_insufficient(available=2, requested=3)

==============================================================================
"""

from .exceptions import (
    AppException,
    CameraUnavailable,
    DeviceError,
    InsecureContext,
    InvalidTransition,
    InventoryConflict,
    InventoryNetworkError,
    ItemValidationError,
    OcrUnavailable,
    StockInsufficient,
    register_exception_handlers,
)

__all__ = [
    "AppException",
    "CameraUnavailable",
    "DeviceError",
    "InsecureContext",
    "InvalidTransition",
    "InventoryConflict",
    "InventoryNetworkError",
    "ItemValidationError",
    "OcrUnavailable",
    "StockInsufficient",
    "register_exception_handlers",
]
