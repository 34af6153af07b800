"""
==============================================================================
Test Doubles
==============================================================================

In-process stand-ins for the camera, the decoders, the OCR engine, the
confirmation surface and a misbehaving inventory.

==============================================================================
"""

import asyncio
import threading
from typing import Any, Dict, Iterable, List, Optional

import numpy as np

from stockscan.core import exceptions
from stockscan.inventory.base import InventoryService
from stockscan.scanner.decoder import BarcodeDecoder, OcrEngine
from stockscan.scanner.feedback import FeedbackSink
from stockscan.scanner.frame_source import FrameSource
from stockscan.scanner.models import CameraCapabilities, CodeFormat, DecodedCode, Frame
from stockscan.services.confirmation import ConfirmationSurface


def blank_frame(width: int = 64, height: int = 48) -> Frame:
    return Frame.from_image(np.zeros((height, width, 3), dtype=np.uint8))


class FakeFrameSource(FrameSource):
    """Yields a fixed list of frames, then ends."""

    def __init__(
        self,
        frames: Iterable[Frame] = (),
        capabilities: Optional[CameraCapabilities] = None,
        open_error: Optional[Exception] = None
    ):
        super().__init__()
        self._frames = list(frames)
        self._reported = capabilities or CameraCapabilities()
        self._open_error = open_error
        self.zoom_calls: List[float] = []
        self.torch_calls: List[bool] = []
        self.close_calls = 0

    def open(self, preferred_facing: str = "environment") -> CameraCapabilities:
        if self._open_error is not None:
            raise self._open_error
        self._capabilities = self._reported
        self._is_open = True
        return self._capabilities

    def _iter_frames(self):
        for frame in self._frames:
            if not self._is_open:
                return
            yield frame

    def set_zoom(self, level: float) -> bool:
        target = self._clamp_zoom(level)
        if target is None:
            return False
        self.zoom_calls.append(target)
        return True

    def set_torch(self, on: bool) -> bool:
        self.torch_calls.append(on)
        return self._capabilities.torch_available

    def close(self) -> None:
        self.close_calls += 1
        self._is_open = False


class RecordingFeedbackSink(FeedbackSink):
    """Remembers every acknowledged code."""

    def __init__(self):
        self.codes: List[DecodedCode] = []

    def acknowledge(self, code: DecodedCode) -> None:
        self.codes.append(code)


class BrokenFeedbackSink(FeedbackSink):
    """Fails like a muted or missing audio device."""

    def __init__(self):
        self.calls = 0

    def acknowledge(self, code: DecodedCode) -> None:
        self.calls += 1
        raise RuntimeError("audio device unavailable")


class FakeBarcodeDecoder(BarcodeDecoder):
    """Returns the same codes for every frame."""

    def __init__(self, values: Iterable[str] = (), fmt: CodeFormat = CodeFormat.BARCODE_EAN13):
        self.values = list(values)
        self.fmt = fmt
        self.calls = 0

    def decode(self, frame: Frame) -> List[DecodedCode]:
        self.calls += 1
        return [
            DecodedCode(value=value, format=self.fmt, captured_at=frame.captured_at)
            for value in self.values
        ]


class FakeOcrEngine(OcrEngine):
    """Recognizes scripted texts in order, then repeats the last one."""

    def __init__(self, texts: Iterable[str] = (), load_error: Optional[Exception] = None):
        self.texts = list(texts)
        self.load_error = load_error
        self.loaded = False
        self.unloaded = False

    def load(self) -> None:
        if self.load_error is not None:
            raise self.load_error
        self.loaded = True

    def recognize_digits(self, image: np.ndarray) -> str:
        if not self.texts:
            return ""
        if len(self.texts) == 1:
            return self.texts[0]
        return self.texts.pop(0)

    def unload(self) -> None:
        self.unloaded = True


class ScriptedSurface(ConfirmationSurface):
    """Answers prompts from scripted lists."""

    def __init__(self, confirmations: Iterable[bool] = (), forms: Iterable[Any] = ()):
        self.confirmations = list(confirmations)
        self.forms = list(forms)
        self.confirm_prompts: List[Any] = []
        self.form_prompts: List[Dict[str, Any]] = []

    async def confirm_transaction(self, transaction) -> bool:
        self.confirm_prompts.append(transaction)
        return self.confirmations.pop(0) if self.confirmations else True

    async def collect_new_item(self, code, error=None):
        self.form_prompts.append({"code": code, "error": error})
        return self.forms.pop(0) if self.forms else None


class FlakyInventory(InventoryService):
    """
    Wraps a real inventory and fails chosen calls.

    apply_failures: Number of apply_transaction calls that fail before
        reaching the wrapped inventory.
    apply_after_failures: Number of calls that are applied and then fail
        (the response is "lost").
    """

    def __init__(
        self,
        inner: InventoryService,
        apply_failures: int = 0,
        apply_after_failures: int = 0,
        lookup_failures: int = 0
    ):
        self.inner = inner
        self.apply_failures = apply_failures
        self.apply_after_failures = apply_after_failures
        self.lookup_failures = lookup_failures
        self.apply_calls = 0
        self.get_calls = 0

    def find_by_code(self, code):
        if self.lookup_failures:
            self.lookup_failures -= 1
            raise exceptions.network_error("lookup timed out")
        return self.inner.find_by_code(code)

    def get_item(self, item_id):
        self.get_calls += 1
        return self.inner.get_item(item_id)

    def create_item(self, code, form):
        return self.inner.create_item(code, form)

    def apply_transaction(self, item_id, operation, quantity, idempotency_key,
                          unit_price=None, reason=None):
        self.apply_calls += 1
        if self.apply_failures:
            self.apply_failures -= 1
            raise exceptions.network_error("inventory timed out")

        receipt = self.inner.apply_transaction(
            item_id, operation, quantity, idempotency_key, unit_price, reason
        )
        if self.apply_after_failures:
            self.apply_after_failures -= 1
            raise exceptions.network_error("response lost")
        return receipt


class BlockingInventory(InventoryService):
    """apply_transaction waits for release() so a commit can be observed in flight."""

    def __init__(self, inner: InventoryService):
        self.inner = inner
        self.started: Optional[asyncio.Event] = None
        self._loop = None
        self._released = threading.Event()

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        """Call from inside the running loop before committing."""
        self._loop = loop
        self.started = asyncio.Event()

    def release(self) -> None:
        self._released.set()

    def find_by_code(self, code):
        return self.inner.find_by_code(code)

    def get_item(self, item_id):
        return self.inner.get_item(item_id)

    def create_item(self, code, form):
        return self.inner.create_item(code, form)

    def apply_transaction(self, item_id, operation, quantity, idempotency_key,
                          unit_price=None, reason=None):
        self._loop.call_soon_threadsafe(self.started.set)
        self._released.wait(5)
        return self.inner.apply_transaction(
            item_id, operation, quantity, idempotency_key, unit_price, reason
        )


def drain(queue: "asyncio.Queue") -> List[Dict[str, Any]]:
    """All events currently queued."""
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


def event_types(events: Iterable[Dict[str, Any]]) -> List[str]:
    return [event["type"] for event in events]
