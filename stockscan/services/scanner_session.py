"""
==============================================================================
Scanner Session Service
==============================================================================

Owns one open camera and everything scanning needs around it.

Pipeline:
---------
    FrameSource ──▶ structured decode ─┐
          │                            ├──▶ ingest() ──▶ ScanDebouncer ──▶ CodeResolver
          └──(latest frame)──▶ OCR ────┘        │                              │
                                            FeedbackSink          TransactionCoordinator

Tasks:
------
- Structured loop: pulls frames in a worker thread, decodes at the target
  rate, tracks the latest frame
- OCR loop: optional, on its own timer, reads the latest frame; cancelled
  as soon as an item resolves or the session closes
- Create flow: runs the create-item form for an unknown code

Both decode loops call ingest(), which is serialized by one lock, so codes
from the two strategies are merged by the same debounce rule.

Events:
-------
Every observable change is put on the `events` queue as a dict with a
"type" key (opened, device_error, status, decoded, resolved, unknown_code,
validation_error, item_created, create_cancelled, pending, committing,
committed, totals, failed, cancelled, payment, error, closed).

Usage:
------
    async with ScannerSession.create(source, inventory, surface=surface) as session:
        await session.submit_manual_code("7790001234567")
        await session.propose(TransactionOperation.SELL, 3)
        await session.confirm()

==============================================================================
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from enum import Enum
from typing import Any, Dict, Optional

from stockscan.config import Settings, get_settings
from stockscan.core import exceptions
from stockscan.core.exceptions import AppException, DeviceError, ItemValidationError, OcrUnavailable
from stockscan.inventory.base import InventoryService
from stockscan.scanner.debouncer import ScanDebouncer
from stockscan.scanner.decoder import DecodeEngine
from stockscan.scanner.feedback import FeedbackSink, LoggingFeedbackSink, fire_feedback
from stockscan.scanner.frame_source import FrameSource
from stockscan.scanner.models import (
    CodeFormat,
    DecodedCode,
    Frame,
    PendingTransaction,
    TransactionOperation,
    TransactionReceipt,
    utc_now,
)
from stockscan.scanner.payment import parse_payment_payload
from stockscan.services.confirmation import ConfirmationSurface
from stockscan.services.resolver import CodeResolver, Found
from stockscan.services.transaction_coordinator import CoordinatorState, TransactionCoordinator
from stockscan.utils.session_logger import ScanSessionLogger
from stockscan.utils.validators import CodeValidator


# Module logger
logger = logging.getLogger(__name__)


class ScanMode(str, Enum):
    """What accepted codes are used for."""

    INVENTORY = "inventory"
    PAYMENT = "payment"


class ScannerSession:
    """
    One scanning session per open camera.

    Attributes:
        session_id: Short identifier used in logs
        mode: ScanMode
        zoom_supported / torch_supported: Capabilities of the open source
        zoom_level / torch_on: Current camera controls
        ocr_active: Whether the OCR fallback is running
        ocr_status: Human-readable OCR progress
        events: Queue of event dicts for the UI
    """

    def __init__(
        self,
        source: FrameSource,
        engine: DecodeEngine,
        resolver: CodeResolver,
        coordinator: TransactionCoordinator,
        feedback: Optional[FeedbackSink] = None,
        surface: Optional[ConfirmationSurface] = None,
        debouncer: Optional[ScanDebouncer] = None,
        settings: Optional[Settings] = None,
        mode: ScanMode = ScanMode.INVENTORY,
        events: Optional[asyncio.Queue] = None,
        session_logger: Optional[ScanSessionLogger] = None
    ) -> None:
        self.settings = settings or get_settings()
        self.source = source
        self.engine = engine
        self.resolver = resolver
        self.coordinator = coordinator
        self.feedback = feedback or LoggingFeedbackSink()
        self.surface = surface
        self.debouncer = debouncer or ScanDebouncer(self.settings.debounce_cooldown_seconds)
        self.mode = ScanMode(mode)
        self.events: asyncio.Queue = events if events is not None else asyncio.Queue()
        self.session_logger = session_logger

        self.session_id = uuid.uuid4().hex[:8]
        self.opened_at = utc_now()

        # Capability flags
        self.camera_available = False
        self.zoom_supported = False
        self.torch_supported = False
        self.zoom_level: Optional[float] = None
        self.torch_on = False
        self.ocr_active = False
        self.ocr_status = "off"

        self._opened = False
        self._closed = False
        self._paused = False
        self._latest_frame: Optional[Frame] = None
        self._resolved_code: Optional[DecodedCode] = None
        self._ingest_lock = asyncio.Lock()

        self._structured_task: Optional[asyncio.Task] = None
        self._ocr_task: Optional[asyncio.Task] = None
        self._create_task: Optional[asyncio.Task] = None
        self._confirm_task: Optional[asyncio.Task] = None

    @classmethod
    def create(
        cls,
        source: FrameSource,
        inventory: InventoryService,
        settings: Optional[Settings] = None,
        **kwargs: Any
    ) -> "ScannerSession":
        """Build a session with the default decode engine and coordinator."""
        settings = settings or get_settings()
        engine = kwargs.pop("engine", None) or DecodeEngine.from_settings(settings)
        coordinator = TransactionCoordinator(
            inventory,
            staleness_seconds=settings.stock_staleness_seconds,
            history_size=settings.history_size,
        )
        if "session_logger" not in kwargs and settings.session_logs_enabled:
            kwargs["session_logger"] = ScanSessionLogger(settings.log_path)

        return cls(
            source=source,
            engine=engine,
            resolver=CodeResolver(inventory),
            coordinator=coordinator,
            settings=settings,
            **kwargs
        )

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def is_open(self) -> bool:
        return self._opened and not self._closed

    @property
    def create_flow_active(self) -> bool:
        return self._create_task is not None and not self._create_task.done()

    @property
    def accepting(self) -> bool:
        """Whether a decoded code may start a new scan event right now."""
        return (
            self.is_open
            and self.camera_available
            and not self._paused
            and not self.coordinator.is_busy
            and not self.create_flow_active
        )

    @property
    def latest_frame(self) -> Optional[Frame]:
        return self._latest_frame

    def status(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "mode": self.mode.value,
            "camera_available": self.camera_available,
            "zoom_supported": self.zoom_supported,
            "torch_supported": self.torch_supported,
            "zoom_level": self.zoom_level,
            "torch_on": self.torch_on,
            "ocr_active": self.ocr_active,
            "ocr_status": self.ocr_status,
            "paused": self._paused,
            "accepting": self.accepting,
            "transaction": self.coordinator.snapshot(),
        }

    def _emit(self, event_type: str, **data: Any) -> None:
        self.events.put_nowait({"type": event_type, **data})

    def _emit_error(self, error: AppException, event_type: str = "error") -> None:
        self._emit(event_type, **error.to_dict()["error"])

    def _emit_status(self) -> None:
        self._emit("status", **self.status())

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def __aenter__(self) -> "ScannerSession":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def open(self) -> None:
        """
        Open the frame source and start structured decoding.

        A camera that cannot be opened (no permission, no device, insecure
        context) does not fail the session: it continues in manual-entry
        mode after a device_error event.
        """
        if self._opened:
            return
        self._opened = True

        try:
            capabilities = await asyncio.to_thread(
                self.source.open, self.settings.preferred_facing
            )
        except DeviceError as e:
            await self._camera_lost(e)
            self._emit("opened", capabilities=None, **self.status())
            return

        self.camera_available = True
        self.zoom_supported = capabilities.zoom_supported
        self.torch_supported = capabilities.torch_available

        initial_zoom = capabilities.initial_zoom()
        if initial_zoom is not None:
            if await asyncio.to_thread(self.source.set_zoom, initial_zoom):
                self.zoom_level = initial_zoom

        self._structured_task = asyncio.create_task(self._structured_loop())

        logger.info(f"🚀 Scanner session {self.session_id} opened ({self.mode.value})")
        self._emit("opened", capabilities=capabilities.model_dump(), **self.status())

    async def close(self) -> None:
        """
        Stop everything and release the camera. Idempotent, and safe after
        a failed open.
        """
        if self._closed:
            return
        self._closed = True
        self.ocr_active = False

        await self._cancel_tasks(
            self._ocr_task,
            self._create_task,
            self._confirm_task,
            self._structured_task,
        )

        if self.torch_on:
            try:
                await asyncio.to_thread(self.source.set_torch, False)
            except Exception as e:
                logger.warning(f"Torch off failed: {e}")
            self.torch_on = False

        try:
            await asyncio.to_thread(self.source.close)
        except Exception as e:
            logger.warning(f"Frame source close failed: {e}")

        self.engine.shutdown_ocr()
        self.ocr_status = "off"

        if self.session_logger is not None and self.coordinator.totals.movement_count > 0:
            try:
                await asyncio.to_thread(
                    self.session_logger.generate_log,
                    self.session_id,
                    self.mode.value,
                    self.opened_at,
                    list(self.coordinator.history),
                    self.coordinator.totals,
                )
            except OSError as e:
                logger.error(f"Failed to write session log: {e}")

        logger.info(f"🛑 Scanner session {self.session_id} closed")
        self._emit("closed", totals=self.coordinator.totals.model_dump())

    async def _cancel_tasks(self, *tasks: Optional[asyncio.Task]) -> None:
        current = asyncio.current_task()
        pending = [t for t in tasks if t is not None and t is not current and not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # =========================================================================
    # DECODE LOOPS
    # =========================================================================

    async def _structured_loop(self) -> None:
        loop = asyncio.get_running_loop()
        interval = self.settings.decode_interval_seconds
        last_decode = 0.0

        try:
            frames = self.source.frames()
            while not self._closed:
                frame = await asyncio.to_thread(next, frames, None)
                if frame is None:
                    logger.info("Frame source ended")
                    break

                self._latest_frame = frame
                now = loop.time()
                if now - last_decode < interval or not self.accepting:
                    continue
                last_decode = now

                for code in await asyncio.to_thread(self.engine.decode_structured, frame):
                    await self.ingest(code)
        except DeviceError as e:
            await self._camera_lost(e)

    async def _camera_lost(self, error: DeviceError) -> None:
        """Drop to manual entry: no frames, no OCR, camera released."""
        logger.error(f"📷 Camera unavailable: {error.message}")
        self.camera_available = False
        self.zoom_supported = False
        self.torch_supported = False
        self.stop_ocr()

        try:
            await asyncio.to_thread(self.source.close)
        except Exception as e:
            logger.warning(f"Frame source close failed: {e}")

        self._emit("device_error", manual_entry=True, **error.to_dict()["error"])

    async def _ocr_loop(self) -> None:
        try:
            await self.engine.load_ocr(self._set_ocr_status)
        except OcrUnavailable as e:
            self.ocr_active = False
            self._emit_error(e)
            self._emit_status()
            return

        self.engine.reset_ocr_memory()
        self._set_ocr_status("searching")

        while self.ocr_active and not self._closed:
            frame = self._latest_frame
            if frame is not None and self.accepting:
                self._set_ocr_status("reading")
                try:
                    code = await asyncio.to_thread(self.engine.decode_ocr, frame)
                except OcrUnavailable as e:
                    self.ocr_active = False
                    self._set_ocr_status(f"error: {e.details.get('reason', e.message)}")
                    self._emit_error(e)
                    return

                if code is not None:
                    self._set_ocr_status(f"found: {code.value}")
                    await self.ingest(code)
                    if not self.ocr_active:
                        return
                else:
                    self._set_ocr_status("searching")

            await asyncio.sleep(self.settings.ocr_interval_seconds)

    def _set_ocr_status(self, status: str) -> None:
        if status != self.ocr_status:
            self.ocr_status = status
            self._emit_status()

    # =========================================================================
    # OCR CONTROL
    # =========================================================================

    def start_ocr(self) -> bool:
        """Start the OCR fallback. Returns False if no OCR engine exists."""
        if not self.is_open or not self.camera_available:
            return False
        if not self.engine.ocr_available:
            self._emit_error(exceptions.ocr_unavailable("no OCR engine configured"))
            return False
        if self.ocr_active:
            return True

        self.ocr_active = True
        self._ocr_task = asyncio.create_task(self._ocr_loop())
        logger.info("🔤 OCR started")
        return True

    def stop_ocr(self) -> None:
        if not self.ocr_active and self._ocr_task is None:
            return
        self.ocr_active = False
        task, self._ocr_task = self._ocr_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
        self._set_ocr_status("off")
        logger.info("🔤 OCR stopped")

    def toggle_ocr(self) -> bool:
        if self.ocr_active:
            self.stop_ocr()
        else:
            self.start_ocr()
        return self.ocr_active

    # =========================================================================
    # CAMERA CONTROL
    # =========================================================================

    async def set_zoom(self, level: float) -> bool:
        if not self.is_open or not self.zoom_supported:
            return False

        low, high = self.source.capabilities.zoom_range
        target = max(low, min(high, float(level)))
        applied = await asyncio.to_thread(self.source.set_zoom, target)
        if applied:
            self.zoom_level = target
            self._emit_status()
        return applied

    async def set_torch(self, on: bool) -> bool:
        if not self.is_open or not self.torch_supported:
            return False

        applied = await asyncio.to_thread(self.source.set_torch, bool(on))
        if applied:
            self.torch_on = bool(on)
            self._emit_status()
        return applied

    # =========================================================================
    # INGEST
    # =========================================================================

    async def ingest(self, code: DecodedCode) -> bool:
        """
        Merge point for every decode strategy.

        Returns:
            True if the code was accepted as a new scan event
        """
        async with self._ingest_lock:
            if not self.accepting:
                return False
            if not self.debouncer.offer(code):
                return False

            fire_feedback(self.feedback, code)
            self._emit("decoded", code=code.model_dump(mode="json"))
            await self._route(code)
            return True

    async def submit_manual_code(self, raw: str) -> None:
        """
        Manual entry fallback: bypasses the debouncer, not the transaction guard.

        Raises:
            ItemValidationError: Empty or malformed code
            InvalidTransition: Session closed or a transaction/form is open
        """
        if not self.is_open:
            raise exceptions.invalid_transition("closed", "enter a code")

        if self.mode is ScanMode.PAYMENT:
            value = (raw or "").strip()
            if not value:
                raise exceptions.validation_failed("Code is required", {"code": "Code is required"})
        else:
            is_valid, value, error = CodeValidator().validate(raw)
            if not is_valid:
                raise exceptions.validation_failed(error, {"code": error})

        async with self._ingest_lock:
            if self.coordinator.is_busy or self.create_flow_active:
                raise exceptions.transaction_open()

            code = DecodedCode(value=value, format=CodeFormat.MANUAL)
            self._emit("decoded", code=code.model_dump(mode="json"))
            await self._route(code)

    async def _route(self, code: DecodedCode) -> None:
        if self.mode is ScanMode.PAYMENT:
            payload = parse_payment_payload(code.value)
            self._paused = True
            self._emit("payment", payload=payload.model_dump())
            return

        await self._resolve(code)

    async def _resolve(self, code: DecodedCode) -> None:
        try:
            result = await asyncio.to_thread(self.resolver.resolve, code.value)
        except AppException as e:
            # Let the same label be read again right away
            self.debouncer.reset()
            self._emit_error(e)
            return

        if isinstance(result, Found):
            self._resolved_code = code
            self.coordinator.select(result.item, code.captured_at)
            self.stop_ocr()
            self._emit("resolved", item=result.item.model_dump(mode="json"), code=code.value)
            return

        self._emit("unknown_code", code=code.value, manual_entry=code.format is CodeFormat.MANUAL)
        if self.surface is not None:
            self._create_task = asyncio.create_task(self._create_flow(code))

    # =========================================================================
    # CREATE FLOW
    # =========================================================================

    async def _create_flow(self, code: DecodedCode) -> None:
        error: Optional[AppException] = None

        while True:
            fields = await self.surface.collect_new_item(code.value, error)
            if fields is None:
                logger.info(f"Create flow for {code.value} cancelled")
                self._emit("create_cancelled", code=code.value)
                return

            try:
                item = await asyncio.to_thread(self.resolver.create_item, code.value, fields)
            except ItemValidationError as e:
                error = e
                self._emit_error(e, "validation_error")
                continue
            except AppException as e:
                error = e
                self._emit_error(e)
                continue

            # Back to passive scanning; the label still in view must not reopen it
            self.debouncer.suppress(code)
            self._emit("item_created", item=item.model_dump(mode="json"))
            return

    def cancel_create(self) -> bool:
        if not self.create_flow_active:
            return False
        self._create_task.cancel()
        self._create_task = None
        self._emit("create_cancelled")
        return True

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    async def propose(
        self,
        operation: TransactionOperation,
        quantity: float,
        unit_price_override: Optional[float] = None,
        reason: Optional[str] = None
    ) -> PendingTransaction:
        pending = await self.coordinator.propose(operation, quantity, unit_price_override, reason)
        self._emit("pending", transaction=pending.model_dump(mode="json"), total=pending.total)
        return pending

    async def confirm(self) -> Optional[TransactionReceipt]:
        """
        Ask the surface to confirm the pending transaction, then commit.

        Returns:
            Receipt, or None if the user declined
        """
        if self.coordinator.state is not CoordinatorState.PENDING:
            raise exceptions.invalid_transition(self.coordinator.state.value, "confirm")

        accepted = True
        if self.surface is not None:
            accepted = await self.surface.confirm_transaction(self.coordinator.pending)

        if not accepted:
            self.cancel()
            return None
        return await self.commit()

    def start_confirm(self) -> asyncio.Task:
        """Run confirm() in the background (UI surfaces answer asynchronously)."""
        self._confirm_task = asyncio.create_task(self._confirm_quietly())
        return self._confirm_task

    async def _confirm_quietly(self) -> None:
        try:
            await self.confirm()
        except AppException as e:
            if self.coordinator.state is not CoordinatorState.FAILED:
                self._emit_error(e)

    async def commit(self) -> TransactionReceipt:
        """Commit, or retry a FAILED commit with the same idempotency key."""
        pending = self.coordinator.pending
        if pending is not None:
            self._emit("committing", idempotency_key=pending.idempotency_key)

        try:
            receipt = await self.coordinator.commit()
        except AppException as e:
            if self.coordinator.state is CoordinatorState.FAILED:
                self._emit(
                    "failed",
                    can_retry=True,
                    can_cancel=True,
                    **e.to_dict()["error"]
                )
            raise

        self._suppress_resolved_code()
        self._emit(
            "committed",
            receipt=receipt.model_dump(mode="json"),
            totals=self.coordinator.totals.model_dump(),
        )
        self._emit("totals", **self.coordinator.totals.model_dump())
        return receipt

    async def retry(self) -> TransactionReceipt:
        if self.coordinator.state is not CoordinatorState.FAILED:
            raise exceptions.invalid_transition(self.coordinator.state.value, "retry")
        return await self.commit()

    def cancel(self) -> bool:
        """
        Cancel the open transaction or create form. Never calls the inventory.

        Raises:
            InvalidTransition: COMMIT_IN_FLIGHT during commit
        """
        if self.create_flow_active:
            return self.cancel_create()

        cancelled = self.coordinator.cancel()
        if cancelled:
            self._suppress_resolved_code()
            self._emit("cancelled", **self.status())
        return cancelled

    def _suppress_resolved_code(self) -> None:
        if self._resolved_code is not None:
            self.debouncer.suppress(self._resolved_code)
            self._resolved_code = None

    def resume(self) -> None:
        """Resume scanning after a payment QR was read."""
        self._paused = False
        self._emit_status()
