"""
==============================================================================
Decode Engine Tests
==============================================================================

Tests for structured decode composition and the OCR fallback.

==============================================================================
"""

import asyncio

import numpy as np
import pytest
import pytesseract

from stockscan.core.exceptions import OcrUnavailable
from stockscan.scanner import decoder as decoder_module
from stockscan.scanner.decoder import (
    DecodeEngine,
    PyzbarBarcodeDecoder,
    TesseractOcrEngine,
    classify_digit_run,
    gs1_check_digit_valid,
)
from stockscan.scanner.models import CodeFormat, OcrCandidateKind

from fakes import FakeBarcodeDecoder, FakeOcrEngine, blank_frame


class TestDigitRuns:
    """Tests for OCR candidate extraction."""

    def test_thirteen_digits_is_ean13(self):
        assert classify_digit_run("7790001234568") == ("7790001234568", OcrCandidateKind.EAN13)

    def test_twelve_digits_is_upc(self):
        assert classify_digit_run("036000291452") == ("036000291452", OcrCandidateKind.UPC_A)

    def test_eight_digits_is_ean8(self):
        assert classify_digit_run("96385074") == ("96385074", OcrCandidateKind.EAN8)

    def test_whitespace_inside_run_is_ignored(self):
        assert classify_digit_run("7 790001 234568\n")[0] == "7790001234568"

    def test_longest_run_preferred(self):
        value, kind = classify_digit_run("xx 7790001234568 yy")
        assert kind is OcrCandidateKind.EAN13

    def test_short_text_has_no_candidate(self):
        assert classify_digit_run("12345") is None
        assert classify_digit_run("") is None


class TestCheckDigit:

    @pytest.mark.parametrize("digits", ["7790001234568", "036000291452", "96385074"])
    def test_valid(self, digits):
        assert gs1_check_digit_valid(digits) is True

    @pytest.mark.parametrize("digits", ["7790001234567", "036000291453", "1"])
    def test_invalid(self, digits):
        assert gs1_check_digit_valid(digits) is False


class TestOcrFallback:
    """Tests for DecodeEngine OCR passes."""

    def test_decode_before_load_raises(self):
        engine = DecodeEngine(FakeBarcodeDecoder(), FakeOcrEngine(["7790001234568"]))
        with pytest.raises(OcrUnavailable):
            engine.decode_ocr(blank_frame())

    def test_load_reports_progress(self):
        engine = DecodeEngine(FakeBarcodeDecoder(), FakeOcrEngine())
        statuses = []

        asyncio.run(engine.load_ocr(statuses.append))

        assert statuses == ["loading", "ready"]
        assert engine.ocr_loaded is True

    def test_load_failure_reports_error(self):
        failing = FakeOcrEngine(load_error=OcrUnavailable("OCR unavailable: gone", "OCR_UNAVAILABLE", 503, {"reason": "gone"}))
        engine = DecodeEngine(FakeBarcodeDecoder(), failing)
        statuses = []

        with pytest.raises(OcrUnavailable):
            asyncio.run(engine.load_ocr(statuses.append))

        assert statuses == ["loading", "error: gone"]
        assert engine.ocr_loaded is False

    def test_no_engine_configured(self):
        engine = DecodeEngine(FakeBarcodeDecoder())
        assert engine.ocr_available is False
        with pytest.raises(OcrUnavailable):
            asyncio.run(engine.load_ocr())

    def test_valid_check_digit_gives_full_confidence(self):
        engine = DecodeEngine(FakeBarcodeDecoder(), FakeOcrEngine(["7790001234568"]))
        asyncio.run(engine.load_ocr())
        frame = blank_frame()

        code = engine.decode_ocr(frame)

        assert code.value == "7790001234568"
        assert code.format is CodeFormat.OCR_NUMERIC
        assert code.confidence == 1.0
        assert code.ocr_kind is OcrCandidateKind.EAN13
        assert code.captured_at == frame.captured_at

    def test_bad_check_digit_gives_half_confidence(self):
        engine = DecodeEngine(FakeBarcodeDecoder(), FakeOcrEngine(["7790001234567"]))
        asyncio.run(engine.load_ocr())

        assert engine.decode_ocr(blank_frame()).confidence == 0.5

    def test_same_value_not_emitted_twice(self):
        engine = DecodeEngine(FakeBarcodeDecoder(), FakeOcrEngine(["7790001234568"]))
        asyncio.run(engine.load_ocr())

        assert engine.decode_ocr(blank_frame()) is not None
        assert engine.decode_ocr(blank_frame()) is None

        engine.reset_ocr_memory()
        assert engine.decode_ocr(blank_frame()) is not None

    def test_no_candidate_returns_none(self):
        engine = DecodeEngine(FakeBarcodeDecoder(), FakeOcrEngine(["no digits here"]))
        asyncio.run(engine.load_ocr())
        assert engine.decode_ocr(blank_frame()) is None

    def test_shutdown_unloads_engine(self):
        ocr = FakeOcrEngine()
        engine = DecodeEngine(FakeBarcodeDecoder(), ocr)
        asyncio.run(engine.load_ocr())

        engine.shutdown_ocr()

        assert ocr.unloaded is True
        assert engine.ocr_loaded is False

    def test_preprocess_crops_bottom_strip_to_grayscale(self):
        engine = DecodeEngine(FakeBarcodeDecoder(), crop_fraction=0.25)
        image = np.full((100, 40, 3), 200, dtype=np.uint8)

        processed = engine.preprocess_for_ocr(image)

        assert processed.shape == (25, 40)
        assert processed.dtype == np.uint8
        # (200 - 128) * 1.5 + 128 = 236, * 1.2 = 283 -> clipped
        assert int(processed.max()) == 255


class TestStructuredDecode:

    def test_delegates_to_barcode_decoder(self):
        barcode = FakeBarcodeDecoder(["7790001234567"])
        engine = DecodeEngine(barcode)

        codes = engine.decode_structured(blank_frame())

        assert [c.value for c in codes] == ["7790001234567"]
        assert barcode.calls == 1

    def test_pyzbar_blank_frame_has_no_codes(self):
        assert PyzbarBarcodeDecoder().decode(blank_frame()) == []


class TestTesseractEngine:
    """Tests for Tesseract error mapping."""

    def test_missing_binary_is_ocr_unavailable(self, monkeypatch):
        def missing():
            raise pytesseract.TesseractNotFoundError()

        monkeypatch.setattr(decoder_module.pytesseract, "get_tesseract_version", missing)

        with pytest.raises(OcrUnavailable):
            TesseractOcrEngine().load()

    def test_failed_pass_returns_empty_text(self, monkeypatch):
        def broken(image, config=""):
            raise pytesseract.TesseractError(1, "bad image")

        monkeypatch.setattr(decoder_module.pytesseract, "image_to_string", broken)

        assert TesseractOcrEngine().recognize_digits(np.zeros((4, 4), dtype=np.uint8)) == ""
