"""
==============================================================================
API Integration Tests
==============================================================================

Tests for REST API endpoints and the scanner WebSocket.

==============================================================================
"""

import pytest
from fastapi.testclient import TestClient

from stockscan.scanner.models import ResolvedItem

COCA_COLA_CODE = "7790001234567"
INVENTORY = "/api/v1/inventory"


def receive_until(websocket, message_type, limit=50):
    """Read messages until one of the given type arrives; return all read."""
    messages = []
    for _ in range(limit):
        message = websocket.receive_json()
        messages.append(message)
        if message["type"] == message_type:
            return messages
    raise AssertionError(f"No {message_type} message in {[m['type'] for m in messages]}")


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_health_check(self, client: TestClient, coca_cola: ResolvedItem):
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["components"]["database"] == "healthy"
        assert data["components"]["ocr"] in ["healthy", "unavailable"]
        assert data["details"]["items"] == 1

    def test_readiness_probe(self, client: TestClient):
        response = client.get("/api/v1/health/ready")
        assert response.status_code == 200
        assert response.json()["ready"] is True

    def test_liveness_probe(self, client: TestClient):
        response = client.get("/api/v1/health/live")
        assert response.status_code == 200
        assert response.json()["alive"] is True

    def test_root(self, client: TestClient):
        assert client.get("/").json()["scanner"] == "/ws/scan"


class TestInventoryEndpoints:
    """Tests for lookup, create and transactions."""

    def test_lookup_by_code(self, client: TestClient, coca_cola: ResolvedItem):
        response = client.get(f"{INVENTORY}/by-code/{COCA_COLA_CODE}")
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["item"]["name"] == "Coca Cola 2L"
        assert data["item"]["stock_on_hand"] == 20

    def test_lookup_unknown_code(self, client: TestClient):
        response = client.get(f"{INVENTORY}/by-code/9999999999999")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ITEM_NOT_FOUND"

    def test_create_item(self, client: TestClient):
        response = client.post(
            f"{INVENTORY}/items",
            json={"code": "9999999999999", "name": "Alfajor", "unit_price": 800, "initial_quantity": 5}
        )
        assert response.status_code == 201
        assert response.json()["item"]["stock_on_hand"] == 5

    def test_create_item_invalid_price(self, client: TestClient):
        response = client.post(f"{INVENTORY}/items", json={"name": "Alfajor", "unit_price": 0})
        assert response.status_code == 422

    def test_transaction_is_idempotent(self, client: TestClient, coca_cola: ResolvedItem):
        url = f"{INVENTORY}/items/{coca_cola.id}/transactions"
        body = {"operation": "SELL", "quantity": 3}
        headers = {"Idempotency-Key": "key-1"}

        first = client.post(url, json=body, headers=headers)
        second = client.post(url, json=body, headers=headers)

        assert first.status_code == 200
        assert first.json()["receipt"]["stock_after"] == 17
        assert second.json()["receipt"]["replayed"] is True
        assert client.get(f"{INVENTORY}/items/{coca_cola.id}").json()["item"]["stock_on_hand"] == 17

    def test_transaction_requires_idempotency_key(self, client: TestClient, coca_cola: ResolvedItem):
        response = client.post(
            f"{INVENTORY}/items/{coca_cola.id}/transactions",
            json={"operation": "SELL", "quantity": 1}
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.parametrize("quantity", ["Infinity", "NaN"])
    def test_non_finite_quantity_rejected(self, client: TestClient, coca_cola: ResolvedItem, quantity):
        response = client.post(
            f"{INVENTORY}/items/{coca_cola.id}/transactions",
            content=f'{{"operation": "STOCK_IN", "quantity": {quantity}}}',
            headers={"Idempotency-Key": "key-1", "Content-Type": "application/json"}
        )
        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert "quantity" in error["details"]["fields"]
        assert client.get(f"{INVENTORY}/items/{coca_cola.id}").json()["item"]["stock_on_hand"] == 20

    def test_non_finite_initial_quantity_rejected(self, client: TestClient):
        response = client.post(
            f"{INVENTORY}/items",
            content='{"code": "9999999999999", "name": "Alfajor", "unit_price": 800, "initial_quantity": Infinity}',
            headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 422
        assert "initial_quantity" in response.json()["error"]["details"]["fields"]

    def test_insufficient_stock_conflict(self, client: TestClient, coca_cola: ResolvedItem):
        response = client.post(
            f"{INVENTORY}/items/{coca_cola.id}/transactions",
            json={"operation": "STOCK_OUT", "quantity": 50},
            headers={"Idempotency-Key": "key-1"}
        )
        assert response.status_code == 409

    def test_alternate_code(self, client: TestClient, coca_cola: ResolvedItem):
        response = client.post(f"{INVENTORY}/items/{coca_cola.id}/codes", json={"code": "7790001230000"})
        assert response.status_code == 200

        lookup = client.get(f"{INVENTORY}/by-code/7790001230000")
        assert lookup.json()["item"]["id"] == coca_cola.id

    def test_missing_item(self, client: TestClient):
        assert client.get(f"{INVENTORY}/items/999").status_code == 404


class TestScannerWebSocket:
    """Tests for the /ws/scan protocol."""

    def test_manual_sell_flow(self, client: TestClient, coca_cola: ResolvedItem):
        with client.websocket_connect("/ws/scan?mode=inventory&source=client") as websocket:
            websocket.send_json({"type": "init", "capabilities": {}})
            opened = receive_until(websocket, "opened")[-1]
            assert opened["camera_available"] is True

            websocket.send_json({"type": "manual", "code": COCA_COLA_CODE})
            resolved = receive_until(websocket, "resolved")[-1]
            assert resolved["item"]["id"] == coca_cola.id

            websocket.send_json({"type": "propose", "operation": "SELL", "quantity": 3})
            prompt = receive_until(websocket, "confirm_request")[-1]
            assert prompt["total"] == 7500

            websocket.send_json({"type": "confirm", "accept": True})
            committed = receive_until(websocket, "committed")[-1]
            assert committed["receipt"]["stock_after"] == 17
            assert committed["totals"]["revenue"] == 7500

            websocket.send_json({"type": "stop"})
            closed = receive_until(websocket, "closed")[-1]
            assert closed["totals"]["sale_count"] == 1

    def test_declined_confirmation(self, client: TestClient, coca_cola: ResolvedItem):
        with client.websocket_connect("/ws/scan") as websocket:
            websocket.send_json({"type": "init"})
            receive_until(websocket, "opened")

            websocket.send_json({"type": "manual", "code": COCA_COLA_CODE})
            receive_until(websocket, "resolved")
            websocket.send_json({"type": "propose", "operation": "SELL", "quantity": 3})
            receive_until(websocket, "confirm_request")

            websocket.send_json({"type": "cancel"})
            cancelled = receive_until(websocket, "cancelled")[-1]
            assert cancelled["transaction"]["state"] == "SCANNING"
            websocket.send_json({"type": "stop"})
            receive_until(websocket, "closed")

        lookup = client.get(f"{INVENTORY}/by-code/{COCA_COLA_CODE}")
        assert lookup.json()["item"]["stock_on_hand"] == 20

    def test_camera_error_falls_back_to_manual(self, client: TestClient, coca_cola: ResolvedItem):
        with client.websocket_connect("/ws/scan") as websocket:
            websocket.send_json({"type": "init", "camera_error": "NotAllowedError"})
            error = receive_until(websocket, "device_error")[-1]
            assert error["code"] == "CAMERA_UNAVAILABLE"
            assert error["manual_entry"] is True

            websocket.send_json({"type": "manual", "code": COCA_COLA_CODE})
            receive_until(websocket, "resolved")
            websocket.send_json({"type": "stop"})
            receive_until(websocket, "closed")

    def test_invalid_proposal_reported(self, client: TestClient, coca_cola: ResolvedItem):
        with client.websocket_connect("/ws/scan") as websocket:
            websocket.send_json({"type": "init"})
            receive_until(websocket, "opened")

            websocket.send_json({"type": "propose", "operation": "SELL", "quantity": 0})
            error = receive_until(websocket, "error")[-1]
            assert error["code"] == "VALIDATION_ERROR"
            assert "quantity" in error["details"]["fields"]
            websocket.send_json({"type": "stop"})
            receive_until(websocket, "closed")

    def test_non_finite_proposal_keeps_session(self, client: TestClient, coca_cola: ResolvedItem):
        with client.websocket_connect("/ws/scan") as websocket:
            websocket.send_json({"type": "init"})
            receive_until(websocket, "opened")
            websocket.send_json({"type": "manual", "code": COCA_COLA_CODE})
            receive_until(websocket, "resolved")

            websocket.send_text('{"type": "propose", "operation": "SELL", "quantity": Infinity}')
            error = receive_until(websocket, "error")[-1]
            assert error["code"] == "VALIDATION_ERROR"
            assert "quantity" in error["details"]["fields"]

            websocket.send_json({"type": "propose", "operation": "SELL", "quantity": 1})
            receive_until(websocket, "confirm_request")
            websocket.send_json({"type": "stop"})
            receive_until(websocket, "closed")

    def test_unknown_code_create_flow(self, client: TestClient):
        with client.websocket_connect("/ws/scan") as websocket:
            websocket.send_json({"type": "init"})
            receive_until(websocket, "opened")

            websocket.send_json({"type": "manual", "code": "9999999999999"})
            request = receive_until(websocket, "create_request")[-1]
            assert request["code"] == "9999999999999"

            websocket.send_json({
                "type": "create_item",
                "fields": {"name": "Alfajor", "unit_price": 800, "initial_quantity": 5},
            })
            created = receive_until(websocket, "item_created")[-1]
            assert created["item"]["stock_on_hand"] == 5
            websocket.send_json({"type": "stop"})
            receive_until(websocket, "closed")

    def test_first_message_must_be_init(self, client: TestClient):
        with client.websocket_connect("/ws/scan") as websocket:
            websocket.send_json({"type": "manual", "code": COCA_COLA_CODE})
            error = websocket.receive_json()
            assert error["type"] == "error"
            assert error["code"] == "INVALID_TRANSITION"
