"""
Application Exception Handling

AppException root for all scanner and inventory errors, typed subclasses for
the cases callers branch on, and FastAPI integration.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class AppException(Exception):
    """
    Unified application exception for all error scenarios.

    Provides consistent error response format across the API and the
    scanner WebSocket.

    Usage:
        raise AppException("Camera is busy", "CAMERA_UNAVAILABLE", 503)
        raise stock_insufficient(available=2, requested=3)

    Error Codes:
        Device (terminal for the session, manual entry offered):
            - CAMERA_UNAVAILABLE (503)
            - INSECURE_CONTEXT (403)
            - FRAMES_CONSUMED (409)

        Decode:
            - OCR_UNAVAILABLE (503)

        Inventory:
            - ITEM_NOT_FOUND (404)
            - VALIDATION_ERROR (422)
            - STOCK_INSUFFICIENT (409)
            - CONFLICT (409)
            - NETWORK_ERROR (503)

        Transaction state machine:
            - INVALID_TRANSITION (409)
            - TRANSACTION_OPEN (409)
            - COMMIT_IN_FLIGHT (409)

        General:
            - INTERNAL_ERROR (500)
    """

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize application exception.

        Args:
            message: Human-readable error message
            code: Machine-readable error code (e.g., "STOCK_INSUFFICIENT")
            status_code: HTTP status code (default: 400)
            details: Additional error context (optional)
        """
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        error_dict = {
            "success": False,
            "error": {
                "code": self.code,
                "message": self.message,
                "timestamp": self.timestamp
            }
        }

        if self.details:
            error_dict["error"]["details"] = self.details

        return error_dict


class DeviceError(AppException):
    """Camera could not be used. Terminal for the scanner session."""


class CameraUnavailable(DeviceError):
    """Permission denied, no device, or device busy."""


class InsecureContext(DeviceError):
    """Browser camera frames requested over an insecure transport."""


class OcrUnavailable(AppException):
    """OCR engine missing or failed to start."""


class ItemValidationError(AppException):
    """Create-item form or transaction input rejected."""


class StockInsufficient(AppException):
    """Outgoing quantity exceeds stock on hand."""


class InventoryNetworkError(AppException):
    """Inventory service unreachable or the call outcome is unknown."""


class InventoryConflict(AppException):
    """Inventory service refused the mutation."""


class InvalidTransition(AppException):
    """Operation not allowed in the current transaction state."""


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    FastAPI exception handler for AppException.

    Converts AppException to consistent JSON error response.
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict()
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Report request body, query and header errors as VALIDATION_ERROR.

    Only field names and messages are echoed; the rejected input may not
    be JSON serializable (Infinity, NaN).
    """
    fields: Dict[str, str] = {}
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path", "header")]
        fields.setdefault(".".join(loc) or "__all__", error.get("msg", "Invalid value"))
    return await app_exception_handler(request, validation_failed("Request validation failed", fields))


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)


# ============================================
# CONVENIENCE FACTORY FUNCTIONS
# ============================================

def camera_unavailable(reason: str) -> CameraUnavailable:
    """Create camera unavailable exception."""
    return CameraUnavailable(
        f"Camera unavailable: {reason}",
        "CAMERA_UNAVAILABLE",
        503,
        {"reason": reason, "manual_entry": True}
    )


def insecure_context(host: Optional[str] = None) -> InsecureContext:
    """Create insecure transport exception."""
    details = {"manual_entry": True}
    if host:
        details["host"] = host
    return InsecureContext(
        "Camera access requires a secure connection (HTTPS). Use manual entry instead.",
        "INSECURE_CONTEXT",
        403,
        details
    )


def frames_consumed() -> AppException:
    """Create exception for a second frames() call on the same source."""
    return AppException(
        "Frame sequence already started for this source",
        "FRAMES_CONSUMED",
        409
    )


def ocr_unavailable(reason: str) -> OcrUnavailable:
    """Create OCR unavailable exception."""
    return OcrUnavailable(
        f"OCR unavailable: {reason}",
        "OCR_UNAVAILABLE",
        503,
        {"reason": reason}
    )


def item_not_found(item_id: str) -> AppException:
    """Create item not found exception."""
    return AppException(
        "Inventory item not found",
        "ITEM_NOT_FOUND",
        404,
        {"item_id": item_id}
    )


def validation_failed(
    message: str,
    fields: Optional[Dict[str, str]] = None
) -> ItemValidationError:
    """Create validation exception with per-field messages."""
    return ItemValidationError(
        message,
        "VALIDATION_ERROR",
        422,
        {"fields": fields or {}}
    )


def stock_insufficient(available: float, requested: float) -> StockInsufficient:
    """Create insufficient stock exception."""
    return StockInsufficient(
        f"Insufficient stock. Available: {available:g}",
        "STOCK_INSUFFICIENT",
        409,
        {"available": available, "requested": requested}
    )


def network_error(message: str = "Inventory service unreachable") -> InventoryNetworkError:
    """Create network error exception."""
    return InventoryNetworkError(message, "NETWORK_ERROR", 503)


def conflict(message: str, details: Optional[Dict[str, Any]] = None) -> InventoryConflict:
    """Create inventory conflict exception."""
    return InventoryConflict(message, "CONFLICT", 409, details)


def invalid_transition(current: str, action: str) -> InvalidTransition:
    """Create invalid state transition exception."""
    return InvalidTransition(
        f"Cannot {action} while {current}",
        "INVALID_TRANSITION",
        409,
        {"current_state": current, "action": action}
    )


def transaction_open() -> InvalidTransition:
    """Create exception for a scan while a transaction is open."""
    return InvalidTransition(
        "Resolve the current transaction before scanning another code",
        "TRANSACTION_OPEN",
        409
    )


def commit_in_flight() -> InvalidTransition:
    """Create exception for cancel during commit."""
    return InvalidTransition(
        "Commit already sent, it can no longer be cancelled",
        "COMMIT_IN_FLIGHT",
        409
    )


def internal_error(message: str = "Internal server error") -> AppException:
    """Create internal server error exception."""
    return AppException(message, "INTERNAL_ERROR", 500)
