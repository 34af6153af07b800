"""
==============================================================================
Scanner Package
==============================================================================

Frame intake, decoding, debouncing and scan feedback.

Modules:
--------
- models: Frame, DecodedCode, ResolvedItem, transactions
- frame_source: Local camera and browser-pushed frame sources
- decoder: pyzbar structured decode plus Tesseract OCR fallback
- debouncer: Cooldown filter shared by both decode strategies
- feedback: Beep/vibration acknowledgement
- payment: Payment QR classification

==============================================================================
"""

from .debouncer import ScanDebouncer
from .decoder import DecodeEngine, PyzbarBarcodeDecoder, TesseractOcrEngine
from .frame_source import CameraFrameSource, FrameSource, PushedFrameSource
from .models import (
    CameraCapabilities,
    CodeFormat,
    DecodedCode,
    Frame,
    PendingTransaction,
    ResolvedItem,
    TransactionOperation,
    TransactionReceipt,
)

__all__ = [
    "ScanDebouncer",
    "DecodeEngine",
    "PyzbarBarcodeDecoder",
    "TesseractOcrEngine",
    "CameraFrameSource",
    "FrameSource",
    "PushedFrameSource",
    "CameraCapabilities",
    "CodeFormat",
    "DecodedCode",
    "Frame",
    "PendingTransaction",
    "ResolvedItem",
    "TransactionOperation",
    "TransactionReceipt",
]
