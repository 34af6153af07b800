"""
==============================================================================
WebSocket Confirmation Surface
==============================================================================

ConfirmationSurface whose prompts are answered by the browser.

Each prompt is sent as a message and waits on a future that the WebSocket
handler resolves when the matching client message arrives:

    confirm_request  ◀── confirm {accept}
    create_request   ◀── create_item {fields} | cancel_create

==============================================================================
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Mapping, Optional

from stockscan.core.exceptions import AppException
from stockscan.scanner.models import PendingTransaction
from stockscan.services.confirmation import ConfirmationSurface, FormInput


# Module logger
logger = logging.getLogger(__name__)


class WebSocketConfirmationSurface(ConfirmationSurface):

    def __init__(self, send: Callable[[Dict[str, Any]], None]) -> None:
        self._send = send
        self._confirmation: Optional[asyncio.Future] = None
        self._form: Optional[asyncio.Future] = None

    @property
    def awaiting_confirmation(self) -> bool:
        return self._confirmation is not None and not self._confirmation.done()

    @property
    def awaiting_form(self) -> bool:
        return self._form is not None and not self._form.done()

    async def confirm_transaction(self, transaction: PendingTransaction) -> bool:
        self._confirmation = asyncio.get_running_loop().create_future()
        self._send({
            "type": "confirm_request",
            "transaction": transaction.model_dump(mode="json"),
            "unit_price": transaction.unit_price,
            "total": transaction.total,
        })
        try:
            return bool(await self._confirmation)
        finally:
            self._confirmation = None

    async def collect_new_item(
        self,
        code: str,
        error: Optional[AppException] = None
    ) -> Optional[FormInput]:
        self._form = asyncio.get_running_loop().create_future()
        self._send({
            "type": "create_request",
            "code": code,
            "error": error.to_dict()["error"] if error else None,
        })
        try:
            return await self._form
        finally:
            self._form = None

    # =========================================================================
    # CLIENT ANSWERS
    # =========================================================================

    def answer_confirmation(self, accepted: bool) -> bool:
        """Resolve the open confirm prompt. False if none is open."""
        if not self.awaiting_confirmation:
            return False
        self._confirmation.set_result(accepted)
        return True

    def submit_form(self, fields: Mapping[str, Any]) -> bool:
        """Resolve the open create prompt with the submitted fields."""
        if not self.awaiting_form:
            return False
        self._form.set_result(dict(fields))
        return True

    def cancel_form(self) -> bool:
        if not self.awaiting_form:
            return False
        self._form.set_result(None)
        return True

    def abandon(self) -> None:
        """Client went away: release anyone still waiting."""
        for future in (self._confirmation, self._form):
            if future is not None and not future.done():
                future.cancel()
        logger.debug("Pending prompts abandoned")
