"""
==============================================================================
Scanner Models Module
==============================================================================

Pydantic models shared by the capture, decode and transaction layers.

Models:
-------
- Frame: one captured image sample
- CameraCapabilities: zoom range and torch support reported on open
- DecodedCode: a candidate code produced by a decode strategy
- ResolvedItem: inventory item a code resolved to
- PendingTransaction: user-chosen operation awaiting commit
- TransactionReceipt: result of a committed stock movement

==============================================================================
"""

from __future__ import annotations

import base64
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

import cv2
import numpy as np
from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


# =============================================================================
# CODE FORMATS
# =============================================================================

class CodeFormat(str, Enum):
    """Symbology or strategy a code was read with."""

    BARCODE_EAN13 = "BARCODE_EAN13"
    BARCODE_UPC = "BARCODE_UPC"
    BARCODE_CODE128 = "BARCODE_CODE128"
    QR = "QR"
    OCR_NUMERIC = "OCR_NUMERIC"
    BARCODE_EAN8 = "BARCODE_EAN8"
    BARCODE_CODE39 = "BARCODE_CODE39"
    BARCODE_ITF = "BARCODE_ITF"
    BARCODE_OTHER = "BARCODE_OTHER"
    MANUAL = "MANUAL"

    @property
    def is_two_dimensional(self) -> bool:
        return self is CodeFormat.QR

    def compatible_with(self, other: "CodeFormat") -> bool:
        """
        Check whether two formats can describe the same physical label.

        QR payloads only match QR. Every linear symbology, OCR digits and
        manual entry carry the same printed number and are interchangeable.
        """
        return self.is_two_dimensional == other.is_two_dimensional


class OcrCandidateKind(str, Enum):
    """Digit-run length class of an OCR candidate."""

    EAN13 = "EAN13"
    UPC_A = "UPC_A"
    EAN8 = "EAN8"


# =============================================================================
# CAPTURE
# =============================================================================

class Frame(BaseModel):
    """
    Immutable image sample.

    Attributes:
        image: BGR pixel array as produced by OpenCV
        captured_at: Capture timestamp
        width: Source width in pixels
        height: Source height in pixels
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    image: np.ndarray
    captured_at: datetime = Field(default_factory=utc_now)
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)

    @classmethod
    def from_image(cls, image: np.ndarray, captured_at: Optional[datetime] = None) -> "Frame":
        """Wrap an OpenCV image, reading its resolution from the array shape."""
        height, width = image.shape[:2]
        return cls(
            image=image,
            captured_at=captured_at or utc_now(),
            width=width,
            height=height,
        )

    @classmethod
    def from_jpeg_base64(cls, payload: str) -> "Frame":
        """
        Decode a base64 JPEG/PNG pushed by a browser.

        Accepts both raw base64 and data URLs.

        Raises:
            ValueError: If the payload is not a decodable image
        """
        if "," in payload and payload.startswith("data:"):
            payload = payload.split(",", 1)[1]

        try:
            raw = base64.b64decode(payload, validate=False)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid base64 frame: {e}") from e

        buffer = np.frombuffer(raw, dtype=np.uint8)
        image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
        if image is None:
            raise ValueError("Frame payload is not a decodable image")

        return cls.from_image(image)


class CameraCapabilities(BaseModel):
    """Capabilities reported by a frame source on open."""

    zoom_range: Optional[Tuple[float, float]] = None
    torch_available: bool = False

    @property
    def zoom_supported(self) -> bool:
        return self.zoom_range is not None

    def initial_zoom(self) -> Optional[float]:
        """Starting zoom: 40% into the range, capped at 3x."""
        if self.zoom_range is None:
            return None
        low, high = self.zoom_range
        return min(low + (high - low) * 0.4, 3.0)


# =============================================================================
# DECODE
# =============================================================================

class DecodedCode(BaseModel):
    """
    Candidate code emitted by a decode strategy.

    Attributes:
        value: Decoded text
        format: Symbology or strategy
        confidence: 0..1 where the strategy can tell, None otherwise
        captured_at: Capture time of the source frame
        rect: Bounding box (x, y, w, h) for structured decodes
        ocr_kind: Digit-run class for OCR candidates
    """

    model_config = ConfigDict(frozen=True)

    value: str = Field(..., min_length=1)
    format: CodeFormat
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    captured_at: datetime = Field(default_factory=utc_now)
    rect: Optional[Tuple[int, int, int, int]] = None
    ocr_kind: Optional[OcrCandidateKind] = None

    def same_event(self, other: Optional["DecodedCode"]) -> bool:
        """Equal value and compatible format, whichever strategy read it."""
        if other is None:
            return False
        return self.value == other.value and self.format.compatible_with(other.format)


# =============================================================================
# INVENTORY
# =============================================================================

class ResolvedItem(BaseModel):
    """
    Inventory item as read from the inventory service.

    fetched_at records when stock_on_hand was read.
    """

    model_config = ConfigDict(from_attributes=True)

    id: str
    code: str
    name: str
    unit_price: float = Field(..., ge=0)
    unit_cost: Optional[float] = Field(default=None, ge=0)
    stock_on_hand: float
    is_bulk: bool = False
    unit_of_measure: str = "unit"
    category: Optional[str] = None
    fetched_at: datetime = Field(default_factory=utc_now)


class TransactionOperation(str, Enum):
    """Stock mutation kinds."""

    SELL = "SELL"
    STOCK_IN = "STOCK_IN"
    STOCK_OUT = "STOCK_OUT"

    @property
    def direction(self) -> int:
        """+1 for incoming stock, -1 for outgoing."""
        return 1 if self is TransactionOperation.STOCK_IN else -1

    @property
    def consumes_stock(self) -> bool:
        return self.direction < 0

    @property
    def default_reason(self) -> str:
        return f"{self.value.lower().replace('_', '-')} via scanner"


class PendingTransaction(BaseModel):
    """Operation chosen by the user, awaiting confirmation and commit."""

    model_config = ConfigDict(frozen=True)

    item: ResolvedItem
    operation: TransactionOperation
    quantity: float = Field(..., gt=0)
    unit_price_override: Optional[float] = Field(default=None, ge=0)
    idempotency_key: str
    reason: Optional[str] = None

    @property
    def unit_price(self) -> float:
        if self.unit_price_override is not None:
            return self.unit_price_override
        return self.item.unit_price

    @property
    def total(self) -> float:
        return round(self.quantity * self.unit_price, 2)


class TransactionReceipt(BaseModel):
    """
    Committed stock movement.

    replayed is True when the inventory recognised the idempotency key
    and returned the original result without mutating stock again.
    """

    item: ResolvedItem
    idempotency_key: str
    operation: TransactionOperation
    quantity: float
    unit_price: float
    stock_before: float
    stock_after: float
    reason: Optional[str] = None
    committed_at: datetime = Field(default_factory=utc_now)
    replayed: bool = False

    @property
    def total(self) -> float:
        return round(self.quantity * self.unit_price, 2)
