"""
==============================================================================
Scanner WebSocket Module
==============================================================================

Drives one ScannerSession per WebSocket connection.

Protocol:
---------
1. Client connects to /ws/scan?mode=inventory|payment&source=client|device
2. Client sends init: {"type": "init", "capabilities": {...}, "camera_error": null}
   (with source=client the browser owns the camera and streams frames)
3. Client sends frames as base64 JPEG and control messages
4. Server streams session events (decoded, resolved, pending, committed...)

Client Messages:
----------------
frame {frame} · zoom {level} · torch {on} · ocr {enabled?} · manual {code}
propose {operation, quantity, unit_price?, reason?} · confirm {accept}
cancel · retry · create_item {fields} · cancel_create · resume · status · stop

Browser camera frames are only accepted over a secure transport (wss://,
a host in SECURE_HOSTS, or ALLOW_INSECURE_CAMERA).

==============================================================================
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from stockscan.config import Settings, get_settings
from stockscan.core import exceptions
from stockscan.core.dependencies import get_inventory_service
from stockscan.core.exceptions import AppException
from stockscan.inventory.base import InventoryService
from stockscan.scanner.feedback import WebSocketFeedbackSink
from stockscan.scanner.frame_source import CameraFrameSource, FrameSource, PushedFrameSource
from stockscan.scanner.models import CameraCapabilities, Frame
from stockscan.schemas.inventory import TransactionRequest, validation_messages
from stockscan.services.scanner_session import ScanMode, ScannerSession
from stockscan.services.transaction_coordinator import CoordinatorState
from stockscan.websockets.surfaces import WebSocketConfirmationSurface


# Module logger
logger = logging.getLogger(__name__)

router = APIRouter()

_STOP = object()


class ScannerWebSocketHandler:
    """
    Handler for scanner WebSocket connections.

    Manages the lifecycle of a scanning session including:
    - Transport security check for browser cameras
    - Frame source and session setup from the init message
    - Routing of client messages to the session
    - Forwarding of session events to the client
    """

    def __init__(
        self,
        websocket: WebSocket,
        inventory: InventoryService,
        settings: Settings,
        mode: ScanMode = ScanMode.INVENTORY,
        source_kind: str = "client"
    ) -> None:
        self._websocket = websocket
        self._inventory = inventory
        self._settings = settings
        self._mode = mode
        self._source_kind = source_kind
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._source: Optional[FrameSource] = None
        self._session: Optional[ScannerSession] = None
        self._surface = WebSocketConfirmationSurface(self.send)
        self._background: set = set()

    # =========================================================================
    # OUTBOUND
    # =========================================================================

    def send(self, message: Dict[str, Any]) -> None:
        """Queue a message for the client. Loop thread only."""
        self._outbox.put_nowait(message)

    def _send_threadsafe(self, message: Dict[str, Any]) -> None:
        self._loop.call_soon_threadsafe(self._outbox.put_nowait, message)

    def send_error(self, error: AppException) -> None:
        self.send({"type": "error", **error.to_dict()["error"]})

    async def _writer(self) -> None:
        while True:
            message = await self._outbox.get()
            if message is _STOP:
                return
            await self._websocket.send_json(message)

    # =========================================================================
    # SETUP
    # =========================================================================

    def is_secure(self) -> bool:
        """wss://, a trusted host, or explicitly allowed insecure frames."""
        if self._settings.allow_insecure_camera:
            return True
        url = self._websocket.url
        if url.scheme == "wss":
            return True
        if self._websocket.headers.get("x-forwarded-proto", "").lower() == "https":
            return True
        return url.hostname in self._settings.secure_hosts

    def build_source(self, init: Dict[str, Any]) -> FrameSource:
        if self._source_kind == "device":
            zoom_range = self._settings.camera_zoom_range
            return CameraFrameSource(
                camera_index=self._settings.camera_index,
                zoom_range=tuple(zoom_range) if zoom_range else None,
            )

        try:
            capabilities = CameraCapabilities.model_validate(init.get("capabilities") or {})
        except ValidationError:
            logger.warning(f"Ignoring malformed capabilities: {init.get('capabilities')}")
            capabilities = CameraCapabilities()

        return PushedFrameSource(
            secure=self.is_secure(),
            capabilities=capabilities,
            camera_error=init.get("camera_error"),
            queue_size=self._settings.frame_queue_size,
            control=lambda action, value: self._send_threadsafe(
                {"type": "camera_control", "action": action, "value": value}
            ),
            host=self._websocket.url.hostname,
        )

    async def handle_init(self, init: Dict[str, Any]) -> None:
        if init.get("mode"):
            self._mode = ScanMode(init["mode"])

        self._source = self.build_source(init)
        self._session = ScannerSession.create(
            self._source,
            self._inventory,
            settings=self._settings,
            feedback=WebSocketFeedbackSink(self.send),
            surface=self._surface,
            mode=self._mode,
            events=self._outbox,
        )
        self._session.coordinator.add_listener(
            lambda receipt, totals: logger.debug(
                f"Session totals: {totals.sale_count} sales, revenue {totals.revenue:.2f}"
            )
        )

        await self._session.open()

        if init.get("ocr") and self._session.camera_available:
            self._session.start_ocr()

    # =========================================================================
    # INBOUND
    # =========================================================================

    def _spawn(self, coro) -> None:
        """Run a long call (commit, confirm) without blocking the receive loop."""
        task = asyncio.create_task(self._guarded(coro))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _guarded(self, coro) -> None:
        try:
            await coro
        except AppException as e:
            # Commit failures are already reported as a "failed" event
            if self._session.coordinator.state is not CoordinatorState.FAILED:
                self.send_error(e)

    def handle_frame(self, data: Dict[str, Any]) -> None:
        if not isinstance(self._source, PushedFrameSource):
            return
        try:
            frame = Frame.from_jpeg_base64(data.get("frame") or "")
        except ValueError as e:
            logger.debug(f"Dropped undecodable frame: {e}")
            return
        self._source.push(frame)

    async def handle_propose(self, data: Dict[str, Any]) -> None:
        try:
            request = TransactionRequest.model_validate(data)
        except ValidationError as e:
            raise exceptions.validation_failed(
                "Please correct the highlighted fields",
                validation_messages(e)
            ) from e

        await self._session.propose(
            request.operation,
            request.quantity,
            request.unit_price,
            request.reason,
        )
        self._session.start_confirm()

    def handle_cancel(self) -> None:
        if self._surface.answer_confirmation(False):
            return
        if self._surface.cancel_form():
            return
        self._session.cancel()

    async def dispatch(self, data: Dict[str, Any]) -> bool:
        """
        Route one client message.

        Returns:
            False when the client asked to stop
        """
        message_type = data.get("type")
        session = self._session

        if message_type == "frame":
            self.handle_frame(data)
        elif message_type == "zoom":
            await session.set_zoom(float(data.get("level", 1.0)))
        elif message_type == "torch":
            await session.set_torch(bool(data.get("on")))
        elif message_type == "ocr":
            enabled = data.get("enabled")
            if enabled is None:
                session.toggle_ocr()
            elif enabled:
                session.start_ocr()
            else:
                session.stop_ocr()
        elif message_type == "manual":
            await session.submit_manual_code(data.get("code") or "")
        elif message_type == "propose":
            await self.handle_propose(data)
        elif message_type == "confirm":
            if not self._surface.answer_confirmation(bool(data.get("accept", True))):
                raise exceptions.invalid_transition(session.coordinator.state.value, "confirm")
        elif message_type == "cancel":
            self.handle_cancel()
        elif message_type == "retry":
            self._spawn(session.retry())
        elif message_type == "create_item":
            if not self._surface.submit_form(data.get("fields") or {}):
                raise exceptions.invalid_transition("no open form", "create an item")
        elif message_type == "cancel_create":
            if not self._surface.cancel_form():
                session.cancel_create()
        elif message_type == "resume":
            session.resume()
        elif message_type == "status":
            self.send({"type": "status", **session.status()})
        elif message_type == "stop":
            logger.info("🛑 Client requested stop")
            return False
        else:
            logger.debug(f"Ignoring unknown message type: {message_type}")

        return True

    # =========================================================================
    # MAIN LOOP
    # =========================================================================

    async def run(self) -> None:
        """Main handler loop."""
        await self._websocket.accept()
        self._loop = asyncio.get_running_loop()
        writer = asyncio.create_task(self._writer())
        logger.info(f"📱 Scanner WebSocket connected ({self._mode.value}, {self._source_kind})")

        try:
            init = await self._websocket.receive_json()
            if init.get("type") != "init":
                self.send_error(exceptions.invalid_transition("connected", init.get("type")))
                return

            await self.handle_init(init)

            while True:
                data = await self._websocket.receive_json()
                try:
                    if not await self.dispatch(data):
                        break
                except AppException as e:
                    self.send_error(e)
                except (TypeError, ValueError, OverflowError) as e:
                    self.send_error(exceptions.validation_failed(f"Malformed message: {e}"))

        except WebSocketDisconnect:
            logger.info("📱 Client disconnected")
        finally:
            self._surface.abandon()
            for task in list(self._background):
                task.cancel()
            if self._session is not None:
                await self._session.close()

            self._outbox.put_nowait(_STOP)
            try:
                await writer
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.debug(f"Writer stopped: {e}")
            logger.info("✅ Scanner WebSocket closed")


@router.websocket("/ws/scan")
async def websocket_scan(
    websocket: WebSocket,
    mode: ScanMode = Query(ScanMode.INVENTORY),
    source: str = Query("client", pattern="^(client|device)$"),
    inventory: InventoryService = Depends(get_inventory_service),
    settings: Settings = Depends(get_settings)
):
    """Real-time scanning session over WebSocket."""
    handler = ScannerWebSocketHandler(websocket, inventory, settings, mode, source)
    await handler.run()
