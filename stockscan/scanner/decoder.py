"""
==============================================================================
Decode Engine Module
==============================================================================

Turns frames into candidate codes with two composed strategies.

Strategies:
-----------
1. Structured decode (pyzbar/zbar): every delivered frame, emits at once.
2. OCR fallback (Tesseract): user-toggled, low cadence, reads the printed
   digits under a barcode from the bottom strip of the frame.

OCR Candidate Rules:
--------------------
- Whitespace stripped, digits only
- First 13-digit run → EAN-13, else 12 → UPC-A, else 8 → EAN-8
- Valid GS1 check digit → confidence 1.0, otherwise 0.5
- Emitted only if different from the last OCR-emitted value

==============================================================================
"""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Tuple

import cv2
import numpy as np
import pytesseract
from pyzbar.pyzbar import decode

from stockscan.core import exceptions
from stockscan.core.exceptions import OcrUnavailable
from stockscan.scanner.models import CodeFormat, DecodedCode, Frame, OcrCandidateKind


# Module logger
logger = logging.getLogger(__name__)

# zbar symbology names → CodeFormat
ZBAR_FORMATS = {
    "EAN13": CodeFormat.BARCODE_EAN13,
    "EAN8": CodeFormat.BARCODE_EAN8,
    "UPCA": CodeFormat.BARCODE_UPC,
    "UPCE": CodeFormat.BARCODE_UPC,
    "CODE128": CodeFormat.BARCODE_CODE128,
    "CODE39": CodeFormat.BARCODE_CODE39,
    "QRCODE": CodeFormat.QR,
    "I25": CodeFormat.BARCODE_ITF,
}

DIGIT_RUNS = (
    (re.compile(r"\d{13}"), OcrCandidateKind.EAN13),
    (re.compile(r"\d{12}"), OcrCandidateKind.UPC_A),
    (re.compile(r"\d{8}"), OcrCandidateKind.EAN8),
)

TESSERACT_DIGITS_CONFIG = "--psm 6 --oem 3 -c tessedit_char_whitelist=0123456789"


# =============================================================================
# OCR TEXT HELPERS
# =============================================================================

def classify_digit_run(text: str) -> Optional[Tuple[str, OcrCandidateKind]]:
    """
    Pick the candidate code out of raw OCR text.

    Args:
        text: Raw recognizer output

    Returns:
        (digits, kind) or None when no run of a known length is present
    """
    compact = re.sub(r"\s+", "", text or "")
    for pattern, kind in DIGIT_RUNS:
        match = pattern.search(compact)
        if match:
            return match.group(0), kind
    return None


def gs1_check_digit_valid(digits: str) -> bool:
    """Validate the mod-10 check digit shared by EAN-13, UPC-A and EAN-8."""
    if not digits.isdigit() or len(digits) < 2:
        return False

    body, check = digits[:-1], int(digits[-1])
    total = 0
    for position, char in enumerate(reversed(body)):
        weight = 3 if position % 2 == 0 else 1
        total += int(char) * weight
    return (10 - total % 10) % 10 == check


# =============================================================================
# STRATEGY BACKENDS
# =============================================================================

class BarcodeDecoder(ABC):
    """Structured barcode/QR decoder."""

    @abstractmethod
    def decode(self, frame: Frame) -> List[DecodedCode]:
        ...


class PyzbarBarcodeDecoder(BarcodeDecoder):
    """zbar decoder through pyzbar."""

    def decode(self, frame: Frame) -> List[DecodedCode]:
        if frame.image is None or frame.image.size == 0:
            return []

        try:
            barcodes = decode(frame.image)
        except Exception as e:
            logger.error(f"Decode error: {e}")
            return []

        codes = []
        for barcode in barcodes:
            value = barcode.data.decode("utf-8", errors="replace").strip()
            if not value:
                continue

            codes.append(DecodedCode(
                value=value,
                format=ZBAR_FORMATS.get(barcode.type, CodeFormat.BARCODE_OTHER),
                captured_at=frame.captured_at,
                rect=(
                    barcode.rect.left,
                    barcode.rect.top,
                    barcode.rect.width,
                    barcode.rect.height,
                ),
            ))
        return codes


class OcrEngine(ABC):
    """Digit recognizer used by the OCR fallback."""

    @abstractmethod
    def load(self) -> None:
        """
        Prepare the engine. May take seconds; called from a worker thread.

        Raises:
            OcrUnavailable: Engine missing or broken
        """

    @abstractmethod
    def recognize_digits(self, image: np.ndarray) -> str:
        """Return the raw text read from a preprocessed image."""

    def unload(self) -> None:
        """Release engine resources."""


class TesseractOcrEngine(OcrEngine):
    """Tesseract through pytesseract with a digits-only whitelist."""

    def __init__(
        self,
        tesseract_cmd: Optional[str] = None,
        config: str = TESSERACT_DIGITS_CONFIG
    ) -> None:
        self._tesseract_cmd = tesseract_cmd
        self._config = config
        self.version: Optional[str] = None

    def load(self) -> None:
        if self._tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self._tesseract_cmd

        try:
            self.version = str(pytesseract.get_tesseract_version())
        except (pytesseract.TesseractNotFoundError, OSError) as e:
            raise exceptions.ocr_unavailable(f"tesseract not available ({e})") from e

        logger.info(f"🔤 Tesseract {self.version} ready")

    def recognize_digits(self, image: np.ndarray) -> str:
        try:
            return pytesseract.image_to_string(image, config=self._config)
        except pytesseract.TesseractNotFoundError as e:
            raise exceptions.ocr_unavailable("tesseract binary disappeared") from e
        except pytesseract.TesseractError as e:
            logger.warning(f"OCR pass failed: {e}")
            return ""


# =============================================================================
# DECODE ENGINE
# =============================================================================

class DecodeEngine:
    """
    Composes structured decode and the OCR fallback.

    The structured strategy is stateless. The OCR strategy remembers the
    last value it emitted so a static scene does not produce a candidate on
    every pass; that memory is cleared each time OCR is started.

    Attributes:
        barcode_decoder: Structured decoder
        ocr_engine: Optional OCR backend
    """

    def __init__(
        self,
        barcode_decoder: BarcodeDecoder,
        ocr_engine: Optional[OcrEngine] = None,
        crop_fraction: float = 0.3,
        contrast: float = 1.5,
        brightness: float = 1.2
    ) -> None:
        self.barcode_decoder = barcode_decoder
        self.ocr_engine = ocr_engine
        self._crop_fraction = crop_fraction
        self._contrast = contrast
        self._brightness = brightness
        self._ocr_loaded = False
        self._last_ocr_value: Optional[str] = None

    @classmethod
    def from_settings(cls, settings) -> "DecodeEngine":
        """Build the default pyzbar + Tesseract engine."""
        return cls(
            barcode_decoder=PyzbarBarcodeDecoder(),
            ocr_engine=TesseractOcrEngine(settings.tesseract_cmd),
            crop_fraction=settings.ocr_crop_fraction,
            contrast=settings.ocr_contrast,
            brightness=settings.ocr_brightness,
        )

    @property
    def ocr_available(self) -> bool:
        return self.ocr_engine is not None

    @property
    def ocr_loaded(self) -> bool:
        return self._ocr_loaded

    # =========================================================================
    # STRUCTURED DECODE
    # =========================================================================

    def decode_structured(self, frame: Frame) -> List[DecodedCode]:
        return self.barcode_decoder.decode(frame)

    # =========================================================================
    # OCR FALLBACK
    # =========================================================================

    async def load_ocr(self, progress: Optional[Callable[[str], None]] = None) -> None:
        """
        Initialize the OCR engine without blocking the event loop.

        Args:
            progress: Receives status strings ("loading", "ready", "error: ...")

        Raises:
            OcrUnavailable: No engine configured or engine failed to load
        """
        report = progress or (lambda status: None)

        if self.ocr_engine is None:
            error = exceptions.ocr_unavailable("no OCR engine configured")
            report(f"error: {error.details['reason']}")
            raise error

        if self._ocr_loaded:
            report("ready")
            return

        report("loading")
        try:
            await asyncio.to_thread(self.ocr_engine.load)
        except OcrUnavailable as e:
            report(f"error: {e.details.get('reason', e.message)}")
            raise

        self._ocr_loaded = True
        report("ready")

    def preprocess_for_ocr(self, image: np.ndarray) -> np.ndarray:
        """
        Crop the bottom strip, convert to grayscale, boost contrast then
        brightness.
        """
        height = image.shape[0]
        top = int(height * (1 - self._crop_fraction))
        region = image[top:, ...]

        if region.ndim == 3:
            region = cv2.cvtColor(region, cv2.COLOR_BGR2GRAY)

        boosted = (region.astype(np.float32) - 128.0) * self._contrast + 128.0
        boosted = boosted * self._brightness
        return np.clip(boosted, 0, 255).astype(np.uint8)

    def decode_ocr(self, frame: Frame) -> Optional[DecodedCode]:
        """
        Run one OCR pass on a frame.

        Returns:
            A new candidate, or None when nothing new was read

        Raises:
            OcrUnavailable: Engine not loaded or gone
        """
        if self.ocr_engine is None or not self._ocr_loaded:
            raise exceptions.ocr_unavailable("OCR engine not loaded")

        text = self.ocr_engine.recognize_digits(self.preprocess_for_ocr(frame.image))
        candidate = classify_digit_run(text)
        if candidate is None:
            return None

        value, kind = candidate
        if value == self._last_ocr_value:
            return None
        self._last_ocr_value = value

        confidence = 1.0 if gs1_check_digit_valid(value) else 0.5
        logger.debug(f"🔤 OCR candidate {value} ({kind.value}, confidence {confidence})")

        return DecodedCode(
            value=value,
            format=CodeFormat.OCR_NUMERIC,
            confidence=confidence,
            captured_at=frame.captured_at,
            ocr_kind=kind,
        )

    def reset_ocr_memory(self) -> None:
        self._last_ocr_value = None

    def shutdown_ocr(self) -> None:
        """Forget OCR state and release the engine."""
        self._last_ocr_value = None
        if self.ocr_engine is not None and self._ocr_loaded:
            self.ocr_engine.unload()
            self._ocr_loaded = False
