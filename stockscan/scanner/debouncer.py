"""
==============================================================================
Scan Debouncer Module
==============================================================================

Suppresses repeated reads of the same label.

A barcode held in front of the camera is decoded on every frame, and the
OCR strategy may read the same digits a moment later. Only the first read
in a cooldown window is accepted; the same code may be accepted again once
the window has elapsed.

State Machine:
--------------
    IDLE --(decode)--> ACCEPTED --(cooldown elapsed)--> IDLE

Usage:
------
    debouncer = ScanDebouncer(cooldown_seconds=2.0)
    if debouncer.offer(code):
        resolve(code)

==============================================================================
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional

from stockscan.scanner.models import DecodedCode


# Module logger
logger = logging.getLogger(__name__)


class DebounceState(str, Enum):
    IDLE = "IDLE"
    ACCEPTED = "ACCEPTED"


class ScanDebouncer:
    """
    Last-accepted-value plus cooldown filter.

    Both decode strategies offer their codes here, so one physical scan
    yields one event regardless of which strategy saw it first.

    Attributes:
        cooldown_seconds: Window in which a repeat of the last code is dropped
    """

    def __init__(
        self,
        cooldown_seconds: float = 2.0,
        clock: Callable[[], float] = time.monotonic
    ) -> None:
        """
        Args:
            cooldown_seconds: Suppression window after an accepted code
            clock: Monotonic time source (injectable for tests)
        """
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._last: Optional[DecodedCode] = None
        self._accepted_at: Optional[float] = None

    @property
    def state(self) -> DebounceState:
        with self._lock:
            if self._accepted_at is None or self._elapsed() >= self.cooldown_seconds:
                return DebounceState.IDLE
            return DebounceState.ACCEPTED

    def _elapsed(self) -> float:
        return self._clock() - self._accepted_at

    def offer(self, code: DecodedCode) -> bool:
        """
        Offer a decoded code.

        Args:
            code: Candidate from any decode strategy

        Returns:
            True if the code starts a new scan event
        """
        with self._lock:
            if (
                self._accepted_at is not None
                and code.same_event(self._last)
                and self._elapsed() < self.cooldown_seconds
            ):
                logger.debug(f"Debounced {code.value} ({code.format.value})")
                return False

            self._last = code
            self._accepted_at = self._clock()
            return True

    def suppress(self, code: DecodedCode) -> None:
        """Mark a code as just accepted without emitting an event."""
        with self._lock:
            self._last = code
            self._accepted_at = self._clock()
        logger.debug(f"Suppressing {code.value} for {self.cooldown_seconds}s")

    def reset(self) -> None:
        with self._lock:
            self._last = None
            self._accepted_at = None
