"""
==============================================================================
HTTP Inventory Service Module
==============================================================================

InventoryService client for a remote inventory REST API (the same
endpoints served by stockscan.api.v1.inventory).

Status Mapping:
---------------
- 404 on lookup → None (unknown code)
- 404 otherwise → ITEM_NOT_FOUND
- 422 → ItemValidationError
- 409 → InventoryConflict
- 5xx, timeout, transport failure → InventoryNetworkError

Retries:
--------
Only GET requests are retried. Transactions are never retried here:
the user retries explicitly, reusing the idempotency key.

==============================================================================
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from stockscan.core import exceptions
from stockscan.inventory.base import InventoryService
from stockscan.scanner.models import ResolvedItem, TransactionOperation, TransactionReceipt
from stockscan.schemas.inventory import ItemCreateForm


# Module logger
logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1/inventory"


class HttpInventoryService(InventoryService):
    """
    Remote inventory over HTTP.

    Example:
        >>> service = HttpInventoryService("http://inventory:8000")
        >>> service.find_by_code("7790001234567")
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_seconds: float = 10.0,
        retry_max_attempts: int = 3,
        retry_backoff_ms: int = 150,
        client: Optional[httpx.Client] = None
    ) -> None:
        """
        Args:
            base_url: Service root, e.g. http://localhost:8000
            timeout_seconds: Per-request timeout
            retry_max_attempts: Attempts for idempotent reads
            retry_backoff_ms: Linear backoff step between read attempts
            client: Preconfigured client (tests pass a FastAPI TestClient)
        """
        if client is None and not base_url:
            raise ValueError("base_url or client is required")

        self._owns_client = client is None
        self._client = client or httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
        )
        self._retry_max_attempts = max(1, retry_max_attempts)
        self._retry_backoff_ms = max(0, retry_backoff_ms)

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        allow_retry = method.upper() == "GET"
        attempts = self._retry_max_attempts if allow_retry else 1

        for attempt in range(1, attempts + 1):
            try:
                response = self._client.request(method, path, **kwargs)
            except httpx.TimeoutException as e:
                if attempt >= attempts:
                    raise exceptions.network_error("Inventory service timed out") from e
                self._backoff(attempt)
                continue
            except httpx.TransportError as e:
                if attempt >= attempts:
                    raise exceptions.network_error(f"Inventory service unreachable: {e}") from e
                self._backoff(attempt)
                continue

            if response.status_code >= 500:
                if attempt < attempts:
                    self._backoff(attempt)
                    continue
                raise exceptions.network_error(
                    f"Inventory service error ({response.status_code})"
                )
            return response

        raise exceptions.network_error()

    def _backoff(self, attempt: int) -> None:
        time.sleep((self._retry_backoff_ms * attempt) / 1000)

    @staticmethod
    def _error_body(response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            return {"message": response.text}

        if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
            return payload["error"]
        if isinstance(payload, dict) and "detail" in payload:
            return {"message": str(payload["detail"])}
        return {"message": response.text}

    def _raise_for_status(self, response: httpx.Response, item_id: Optional[str] = None) -> None:
        if response.status_code < 400:
            return

        body = self._error_body(response)
        message = body.get("message", "Inventory request failed")
        details = body.get("details") or {}

        if response.status_code == 404:
            raise exceptions.item_not_found(item_id or "")
        if response.status_code == 409:
            raise exceptions.conflict(message, details)
        if response.status_code == 422:
            raise exceptions.validation_failed(message, details.get("fields"))

        raise exceptions.AppException(
            message,
            body.get("code", "HTTP_ERROR"),
            response.status_code,
            details
        )

    # =========================================================================
    # CONTRACT
    # =========================================================================

    def find_by_code(self, code: str) -> Optional[ResolvedItem]:
        code = (code or "").strip()
        if not code:
            return None

        response = self._request("GET", f"{API_PREFIX}/by-code/{quote(code, safe='')}")
        if response.status_code == 404:
            return None
        self._raise_for_status(response)
        return ResolvedItem.model_validate(response.json()["item"])

    def get_item(self, item_id: str) -> ResolvedItem:
        response = self._request("GET", f"{API_PREFIX}/items/{quote(str(item_id), safe='')}")
        self._raise_for_status(response, item_id)
        return ResolvedItem.model_validate(response.json()["item"])

    def create_item(self, code: Optional[str], form: ItemCreateForm) -> ResolvedItem:
        body = form.model_dump()
        body["code"] = code
        response = self._request("POST", f"{API_PREFIX}/items", json=body)
        self._raise_for_status(response)
        return ResolvedItem.model_validate(response.json()["item"])

    def apply_transaction(
        self,
        item_id: str,
        operation: TransactionOperation,
        quantity: float,
        idempotency_key: str,
        unit_price: Optional[float] = None,
        reason: Optional[str] = None
    ) -> TransactionReceipt:
        response = self._request(
            "POST",
            f"{API_PREFIX}/items/{quote(str(item_id), safe='')}/transactions",
            json={
                "operation": TransactionOperation(operation).value,
                "quantity": quantity,
                "unit_price": unit_price,
                "reason": reason,
            },
            headers={"Idempotency-Key": idempotency_key},
        )
        self._raise_for_status(response, item_id)
        receipt = TransactionReceipt.model_validate(response.json()["receipt"])
        logger.info(
            f"📦 Remote {receipt.operation.value} {receipt.quantity:g} × {receipt.item.code}"
            f"{' (replayed)' if receipt.replayed else ''}"
        )
        return receipt

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
