"""
==============================================================================
Scan Debouncer Tests
==============================================================================

Tests for repeat suppression across decode strategies.

==============================================================================
"""

from stockscan.scanner.debouncer import DebounceState, ScanDebouncer
from stockscan.scanner.models import CodeFormat, DecodedCode


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def code(value="7790001234567", fmt=CodeFormat.BARCODE_EAN13):
    return DecodedCode(value=value, format=fmt)


class TestScanDebouncer:
    """Tests for the cooldown window."""

    def test_first_code_accepted(self):
        debouncer = ScanDebouncer(2.0, clock=FakeClock())
        assert debouncer.offer(code()) is True
        assert debouncer.state is DebounceState.ACCEPTED

    def test_repeat_within_cooldown_rejected(self):
        clock = FakeClock()
        debouncer = ScanDebouncer(2.0, clock=clock)
        debouncer.offer(code())

        clock.advance(1.9)
        assert debouncer.offer(code()) is False

    def test_repeat_after_cooldown_accepted(self):
        clock = FakeClock()
        debouncer = ScanDebouncer(2.0, clock=clock)
        debouncer.offer(code())

        clock.advance(2.0)
        assert debouncer.state is DebounceState.IDLE
        assert debouncer.offer(code()) is True

    def test_rejection_does_not_extend_window(self):
        clock = FakeClock()
        debouncer = ScanDebouncer(2.0, clock=clock)
        debouncer.offer(code())

        clock.advance(1.5)
        assert debouncer.offer(code()) is False
        clock.advance(0.6)
        assert debouncer.offer(code()) is True

    def test_different_value_accepted_immediately(self):
        debouncer = ScanDebouncer(2.0, clock=FakeClock())
        debouncer.offer(code("7790001234567"))
        assert debouncer.offer(code("7790001234568")) is True

    def test_ocr_and_barcode_same_value_are_one_event(self):
        clock = FakeClock()
        debouncer = ScanDebouncer(2.0, clock=clock)

        assert debouncer.offer(code(fmt=CodeFormat.BARCODE_EAN13)) is True
        clock.advance(0.5)
        assert debouncer.offer(code(fmt=CodeFormat.OCR_NUMERIC)) is False

    def test_qr_with_same_text_is_a_different_event(self):
        debouncer = ScanDebouncer(2.0, clock=FakeClock())
        debouncer.offer(code(fmt=CodeFormat.BARCODE_EAN13))
        assert debouncer.offer(code(fmt=CodeFormat.QR)) is True

    def test_suppress_blocks_without_event(self):
        clock = FakeClock()
        debouncer = ScanDebouncer(2.0, clock=clock)
        debouncer.suppress(code(fmt=CodeFormat.MANUAL))

        assert debouncer.offer(code()) is False
        clock.advance(2.5)
        assert debouncer.offer(code()) is True

    def test_reset_forgets_last_code(self):
        debouncer = ScanDebouncer(2.0, clock=FakeClock())
        debouncer.offer(code())
        debouncer.reset()

        assert debouncer.state is DebounceState.IDLE
        assert debouncer.offer(code()) is True
