"""
==============================================================================
Scan Feedback Module
==============================================================================

Audio/haptic acknowledgement of accepted scans.

Feedback is fire-and-forget: a failing sink is logged and never interrupts
the decode loop.

Cues:
-----
- Structured decode: 1500 Hz square beep, 150 ms, 200 ms vibration
- OCR decode: same beep, double-pulse vibration [100, 50, 100]

==============================================================================
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List

from stockscan.scanner.models import CodeFormat, DecodedCode


# Module logger
logger = logging.getLogger(__name__)

BEEP = {"frequency_hz": 1500, "duration_ms": 150, "waveform": "square"}
VIBRATE_STRUCTURED: List[int] = [200]
VIBRATE_OCR: List[int] = [100, 50, 100]


def feedback_cue(code: DecodedCode) -> Dict[str, Any]:
    """Tone and vibration pattern for an accepted code."""
    vibrate = VIBRATE_OCR if code.format is CodeFormat.OCR_NUMERIC else VIBRATE_STRUCTURED
    return {"tone": dict(BEEP), "vibrate": list(vibrate)}


class FeedbackSink(ABC):
    """Acknowledges an accepted scan to the operator. Must not block."""

    @abstractmethod
    def acknowledge(self, code: DecodedCode) -> None:
        ...


class LoggingFeedbackSink(FeedbackSink):
    """Headless sink for local cameras: records the cue in the log."""

    def acknowledge(self, code: DecodedCode) -> None:
        logger.info(f"🔔 Beep for {code.value} ({code.format.value})")


class WebSocketFeedbackSink(FeedbackSink):
    """
    Sends the cue to the browser, which plays the tone and vibrates.

    Args:
        send: Non-blocking callable queueing a message for the client
    """

    def __init__(self, send: Callable[[Dict[str, Any]], None]) -> None:
        self._send = send

    def acknowledge(self, code: DecodedCode) -> None:
        self._send({"type": "feedback", "code": code.value, **feedback_cue(code)})


def fire_feedback(sink: FeedbackSink, code: DecodedCode) -> None:
    """Call a sink without ever letting it fail the caller."""
    try:
        sink.acknowledge(code)
    except Exception as e:
        logger.warning(f"Feedback sink failed for {code.value}: {e}")
