"""
==============================================================================
Frame Source Tests
==============================================================================

Tests for the OpenCV device source and browser-pushed frames.

==============================================================================
"""

import base64

import cv2
import numpy as np
import pytest

from stockscan.core.exceptions import AppException, CameraUnavailable, InsecureContext
from stockscan.scanner.frame_source import CameraFrameSource, PushedFrameSource
from stockscan.scanner.models import CameraCapabilities, Frame

from fakes import blank_frame


class FakeCapture:
    def __init__(self, opened=True, reads=None):
        self.opened = opened
        self.reads = list(reads or [])
        self.released = False
        self.props = {}

    def isOpened(self):
        return self.opened

    def read(self):
        if self.reads:
            return self.reads.pop(0)
        return False, None

    def set(self, prop, value):
        self.props[prop] = value
        return True

    def release(self):
        self.released = True


class TestCameraFrameSource:
    """Tests for local capture devices."""

    def test_unopened_device_is_camera_unavailable(self):
        capture = FakeCapture(opened=False)
        source = CameraFrameSource(capture_factory=lambda index: capture)

        with pytest.raises(CameraUnavailable) as exc:
            source.open()

        assert capture.released is True
        assert exc.value.details["manual_entry"] is True

    def test_frames_until_device_stops(self):
        image = np.zeros((10, 20, 3), dtype=np.uint8)
        capture = FakeCapture(reads=[(True, image), (True, image)])
        source = CameraFrameSource(max_read_failures=3, capture_factory=lambda index: capture)
        source.open()

        frames = source.frames()
        assert next(frames).width == 20
        assert next(frames).height == 10
        with pytest.raises(CameraUnavailable):
            next(frames)

    def test_frames_can_only_start_once(self):
        source = CameraFrameSource(capture_factory=lambda index: FakeCapture())
        source.open()
        source.frames()

        with pytest.raises(AppException) as exc:
            source.frames()
        assert exc.value.code == "FRAMES_CONSUMED"

    def test_zoom_clamped_to_range(self):
        capture = FakeCapture()
        source = CameraFrameSource(zoom_range=(1.0, 4.0), capture_factory=lambda index: capture)
        source.open()

        assert source.set_zoom(10) is True
        assert capture.props[cv2.CAP_PROP_ZOOM] == 4.0

    def test_no_zoom_range_means_unsupported(self):
        source = CameraFrameSource(capture_factory=lambda index: FakeCapture())
        assert source.open().zoom_supported is False
        assert source.set_zoom(2) is False
        assert source.set_torch(True) is False

    def test_close_is_idempotent(self):
        capture = FakeCapture()
        source = CameraFrameSource(capture_factory=lambda index: capture)
        source.open()

        source.close()
        source.close()

        assert capture.released is True
        assert source.is_open is False


class TestPushedFrameSource:
    """Tests for frames pushed by a browser."""

    def test_insecure_transport_refused(self):
        source = PushedFrameSource(secure=False, host="192.168.0.10")
        with pytest.raises(InsecureContext) as exc:
            source.open()
        assert exc.value.details["manual_entry"] is True

    def test_client_camera_error_mapped(self):
        source = PushedFrameSource(secure=True, camera_error="NotAllowedError")
        with pytest.raises(CameraUnavailable) as exc:
            source.open()
        assert exc.value.details["reason"] == "permission denied"

    def test_oldest_frame_dropped_when_full(self):
        source = PushedFrameSource(secure=True, queue_size=2)
        source.open()
        first, second, third = blank_frame(), blank_frame(), blank_frame()

        for frame in (first, second, third):
            source.push(frame)
        source.close()

        assert list(source.frames()) == []
        assert source.dropped_frames == 1

    def test_frames_delivered_in_order(self):
        source = PushedFrameSource(secure=True, queue_size=4)
        source.open()
        frames = [blank_frame(), blank_frame()]
        for frame in frames:
            source.push(frame)

        iterator = source.frames()
        assert next(iterator) is frames[0]
        assert next(iterator) is frames[1]

        source.close()
        assert list(iterator) == []

    def test_controls_relayed_to_client(self):
        sent = []
        source = PushedFrameSource(
            secure=True,
            capabilities=CameraCapabilities(zoom_range=(1.0, 5.0), torch_available=True),
            control=lambda action, value: sent.append((action, value)),
        )
        source.open()

        assert source.set_zoom(8) is True
        assert source.set_torch(True) is True
        assert sent == [("zoom", 5.0), ("torch", True)]

    def test_failed_relay_reports_false(self):
        def broken(action, value):
            raise ConnectionError("socket closed")

        source = PushedFrameSource(
            secure=True,
            capabilities=CameraCapabilities(zoom_range=(1.0, 5.0)),
            control=broken,
        )
        source.open()
        assert source.set_zoom(2) is False


class TestFrameDecoding:

    def test_from_jpeg_data_url(self):
        ok, encoded = cv2.imencode(".jpg", np.full((16, 32, 3), 127, dtype=np.uint8))
        payload = "data:image/jpeg;base64," + base64.b64encode(encoded.tobytes()).decode()

        frame = Frame.from_jpeg_base64(payload)

        assert (frame.width, frame.height) == (32, 16)

    def test_garbage_payload_rejected(self):
        with pytest.raises(ValueError):
            Frame.from_jpeg_base64(base64.b64encode(b"not an image").decode())


class TestCapabilities:

    def test_initial_zoom_is_forty_percent_capped_at_three(self):
        assert CameraCapabilities(zoom_range=(1.0, 5.0)).initial_zoom() == pytest.approx(2.6)
        assert CameraCapabilities(zoom_range=(1.0, 10.0)).initial_zoom() == 3.0
        assert CameraCapabilities().initial_zoom() is None
