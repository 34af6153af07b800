"""
==============================================================================
Frame Source Module
==============================================================================

Live video intake behind one interface.

Implementations:
----------------
- CameraFrameSource: local capture device opened with OpenCV
- PushedFrameSource: frames pushed by a browser over the scanner WebSocket

Contract:
---------
- open() reports capabilities or raises a DeviceError
- frames() is lazy, infinite while open, and can only be started once
- set_zoom()/set_torch() are best effort and never raise
- close() releases the device and is safe to call repeatedly

==============================================================================
"""

from __future__ import annotations

import logging
import queue
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterator, Optional, Tuple

import cv2

from stockscan.core import exceptions
from stockscan.scanner.models import CameraCapabilities, Frame


# Module logger
logger = logging.getLogger(__name__)

# Client-reported getUserMedia failures mapped to readable reasons
CLIENT_CAMERA_ERRORS = {
    "NotAllowedError": "permission denied",
    "PermissionDeniedError": "permission denied",
    "NotFoundError": "no camera device found",
    "DevicesNotFoundError": "no camera device found",
    "NotReadableError": "camera is in use by another application",
    "TrackStartError": "camera is in use by another application",
    "OverconstrainedError": "no camera matches the requested facing",
}


class FrameSource(ABC):
    """Abstract live video source."""

    def __init__(self) -> None:
        self._capabilities = CameraCapabilities()
        self._is_open = False
        self._frames_started = False

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def capabilities(self) -> CameraCapabilities:
        return self._capabilities

    @abstractmethod
    def open(self, preferred_facing: str = "environment") -> CameraCapabilities:
        """
        Acquire the device.

        Raises:
            CameraUnavailable: Permission denied, no device or device busy
            InsecureContext: Camera frames over an insecure transport
        """

    def frames(self) -> Iterator[Frame]:
        """
        Start the frame sequence.

        Raises:
            AppException: FRAMES_CONSUMED on a second call
        """
        if self._frames_started:
            raise exceptions.frames_consumed()
        self._frames_started = True
        return self._iter_frames()

    @abstractmethod
    def _iter_frames(self) -> Iterator[Frame]:
        ...

    @abstractmethod
    def set_zoom(self, level: float) -> bool:
        """Request a zoom level. Returns True if applied."""

    @abstractmethod
    def set_torch(self, on: bool) -> bool:
        """Switch the torch. Returns True if applied."""

    @abstractmethod
    def close(self) -> None:
        """Release the device. Idempotent."""

    def _clamp_zoom(self, level: float) -> Optional[float]:
        zoom_range = self._capabilities.zoom_range
        if zoom_range is None:
            return None
        low, high = zoom_range
        return max(low, min(high, level))


# =============================================================================
# LOCAL CAMERA
# =============================================================================

class CameraFrameSource(FrameSource):
    """
    Local capture device read through cv2.VideoCapture.

    OpenCV exposes no torch control, so torch requests are logged and
    refused. Zoom is driven through CAP_PROP_ZOOM when a range is
    configured for the device.

    Example:
        >>> source = CameraFrameSource(camera_index=0)
        >>> caps = source.open()
        >>> for frame in source.frames():
        ...     process(frame)
    """

    def __init__(
        self,
        camera_index: int = 0,
        zoom_range: Optional[Tuple[float, float]] = None,
        max_read_failures: int = 30,
        capture_factory: Callable[[int], Any] = cv2.VideoCapture
    ) -> None:
        """
        Args:
            camera_index: Camera device index (0 = default)
            zoom_range: Zoom range the device supports, None if unknown
            max_read_failures: Consecutive failed reads before the device
                is considered lost
            capture_factory: VideoCapture constructor (injectable for tests)
        """
        super().__init__()
        self._camera_index = camera_index
        self._zoom_range = zoom_range
        self._max_read_failures = max_read_failures
        self._capture_factory = capture_factory
        self._cap = None
        self._lock = threading.Lock()

    def open(self, preferred_facing: str = "environment") -> CameraCapabilities:
        if self._is_open:
            return self._capabilities

        # Local devices have no facing; the configured index is used
        logger.debug(f"Opening camera {self._camera_index} (facing={preferred_facing})")

        try:
            cap = self._capture_factory(self._camera_index)
        except cv2.error as e:
            raise exceptions.camera_unavailable(str(e)) from e

        if cap is None or not cap.isOpened():
            if cap is not None:
                cap.release()
            raise exceptions.camera_unavailable(
                f"camera {self._camera_index} not found or busy"
            )

        with self._lock:
            self._cap = cap
            self._is_open = True

        self._capabilities = CameraCapabilities(
            zoom_range=self._zoom_range,
            torch_available=False,
        )
        logger.info(f"📷 Camera {self._camera_index} opened: {self._capabilities}")
        return self._capabilities

    def _iter_frames(self) -> Iterator[Frame]:
        failures = 0
        while True:
            with self._lock:
                if not self._is_open or self._cap is None:
                    return
                ok, image = self._cap.read()

            if not ok or image is None:
                failures += 1
                if failures >= self._max_read_failures:
                    raise exceptions.camera_unavailable("camera stopped delivering frames")
                continue

            failures = 0
            yield Frame.from_image(image)

    def set_zoom(self, level: float) -> bool:
        target = self._clamp_zoom(level)
        if target is None:
            logger.debug("Zoom not supported by this camera")
            return False

        with self._lock:
            if self._cap is None:
                return False
            try:
                applied = bool(self._cap.set(cv2.CAP_PROP_ZOOM, target))
            except cv2.error as e:
                logger.warning(f"Zoom failed: {e}")
                return False

        if not applied:
            logger.warning(f"Camera refused zoom {target}")
        return applied

    def set_torch(self, on: bool) -> bool:
        logger.debug(f"Torch {'on' if on else 'off'} requested, not supported by OpenCV capture")
        return False

    def close(self) -> None:
        with self._lock:
            if self._cap is not None:
                self._cap.release()
                self._cap = None
                logger.info(f"📷 Camera {self._camera_index} released")
            self._is_open = False


# =============================================================================
# BROWSER-PUSHED FRAMES
# =============================================================================

_CLOSED = object()


class PushedFrameSource(FrameSource):
    """
    Frames pushed by a browser over the scanner WebSocket.

    The browser owns the physical camera: it reports capabilities (or its
    getUserMedia error) in the init message, and zoom/torch requests are
    relayed back through the control callback. Only the freshest frames are
    kept; when the queue is full the oldest frame is dropped.
    """

    def __init__(
        self,
        secure: bool,
        capabilities: Optional[CameraCapabilities] = None,
        camera_error: Optional[str] = None,
        queue_size: int = 2,
        control: Optional[Callable[[str, Any], None]] = None,
        host: Optional[str] = None
    ) -> None:
        """
        Args:
            secure: Whether the transport is secure (wss:// or a trusted host)
            capabilities: Capabilities reported by the client
            camera_error: getUserMedia error name reported by the client
            queue_size: Frames buffered before the oldest is dropped
            control: Callback relaying ("zoom", level) / ("torch", on) to the client
            host: Client-facing host, reported with InsecureContext
        """
        super().__init__()
        self._secure = secure
        self._reported = capabilities or CameraCapabilities()
        self._camera_error = camera_error
        self._control = control
        self._host = host
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=queue_size)
        self._lock = threading.Lock()
        self._dropped = 0

    @property
    def dropped_frames(self) -> int:
        return self._dropped

    def open(self, preferred_facing: str = "environment") -> CameraCapabilities:
        if not self._secure:
            raise exceptions.insecure_context(self._host)

        if self._camera_error:
            reason = CLIENT_CAMERA_ERRORS.get(self._camera_error, self._camera_error)
            raise exceptions.camera_unavailable(reason)

        self._capabilities = self._reported
        self._is_open = True
        logger.info(f"📷 Client camera opened ({preferred_facing}): {self._capabilities}")
        return self._capabilities

    def push(self, frame: Frame) -> None:
        """Queue a frame from the client, dropping the oldest when full."""
        if not self._is_open:
            return

        with self._lock:
            if self._queue.full():
                try:
                    self._queue.get_nowait()
                    self._dropped += 1
                except queue.Empty:
                    pass
            self._queue.put_nowait(frame)

    def _iter_frames(self) -> Iterator[Frame]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                return
            yield item

    def set_zoom(self, level: float) -> bool:
        target = self._clamp_zoom(level)
        if target is None or not self._is_open:
            return False
        return self._relay("zoom", target)

    def set_torch(self, on: bool) -> bool:
        if not self._capabilities.torch_available or not self._is_open:
            return False
        return self._relay("torch", on)

    def _relay(self, action: str, value: Any) -> bool:
        if self._control is None:
            return False
        try:
            self._control(action, value)
            return True
        except Exception as e:
            logger.warning(f"Failed to relay {action} to client: {e}")
            return False

    def close(self) -> None:
        was_open = self._is_open
        self._is_open = False
        self._wake_reader()
        if was_open:
            logger.info(f"📷 Client camera closed ({self._dropped} frames dropped)")

    def _wake_reader(self) -> None:
        with self._lock:
            while not self._queue.empty():
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    break
            self._queue.put_nowait(_CLOSED)
