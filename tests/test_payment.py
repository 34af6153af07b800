"""
==============================================================================
Payment QR Parser Tests
==============================================================================
"""

import json

from stockscan.scanner.payment import (
    FreeTextFields,
    OpaquePayload,
    PaymentScan,
    StructuredPayment,
    parse_amount,
    parse_payment_payload,
)

CBU = "0170099220000067797370"


class TestParseAmount:

    def test_formats(self):
        assert parse_amount("1500") == 1500.0
        assert parse_amount("1500.50") == 1500.5
        assert parse_amount("1.500,50") == 1500.5
        assert parse_amount("1500,50") == 1500.5
        assert parse_amount(250) == 250.0

    def test_garbage(self):
        assert parse_amount("abc") is None
        assert parse_amount(None) is None


class TestParsePaymentPayload:
    """Tests for payload classification."""

    def test_structured_flat(self):
        raw = json.dumps({
            "tipo": "PAGO_REPARTOS",
            "monto": 12500,
            "concepto": "Pedido 42",
            "alias": "reparto.norte",
            "cbu": CBU,
        })

        payment = parse_payment_payload(raw)

        assert isinstance(payment, StructuredPayment)
        assert payment.amount == 12500.0
        assert payment.currency == "ARS"
        assert payment.alias == "reparto.norte"
        assert payment.cbu == CBU

    def test_structured_nested_beneficiary(self):
        raw = json.dumps({
            "sistema": "REPARTOS_SI",
            "monto": "1.250,75",
            "beneficiario": {"nombre": "Distribuidora Sur", "alias": "dist.sur", "banco": "Galicia"},
        })

        payment = parse_payment_payload(raw)

        assert isinstance(payment, StructuredPayment)
        assert payment.amount == 1250.75
        assert payment.recipient == "Distribuidora Sur"
        assert payment.bank == "Galicia"

    def test_other_json_is_opaque(self):
        payment = parse_payment_payload('{"url": "https://example.com"}')
        assert isinstance(payment, OpaquePayload)

    def test_free_text_fields(self):
        payment = parse_payment_payload(f"Transferir $ 3.200,00 a CBU: {CBU} alias: juan.perez")

        assert isinstance(payment, FreeTextFields)
        assert payment.cbu == CBU
        assert payment.alias == "juan.perez"
        assert payment.amount == 3200.0

    def test_plain_text_is_opaque(self):
        payment = parse_payment_payload("https://shop.example.com/p/123")
        assert payment == OpaquePayload(raw="https://shop.example.com/p/123")

    def test_tagged_envelope(self):
        envelope = PaymentScan.model_validate({"payload": {"tag": "opaque", "raw": "x"}})
        assert isinstance(envelope.payload, OpaquePayload)
