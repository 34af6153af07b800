"""
==============================================================================
Payment QR Parsing Module
==============================================================================

Classifies payment QR payloads into a tagged result.

Variants:
---------
- structured-payment: JSON emitted by our own QR generators
  ({"tipo": "PAGO_REPARTOS", ...} or {"sistema": "REPARTOS_SI", ...})
- freetext-fields: plain text carrying an alias, CBU or CVU (and maybe an amount)
- opaque: anything else, returned verbatim

==============================================================================
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field


# Module logger
logger = logging.getLogger(__name__)

ALIAS_PATTERN = re.compile(r"alias[:\s]*([a-zA-Z0-9.]+)", re.IGNORECASE)
CBU_PATTERN = re.compile(r"cbu[:\s]*(\d{22})", re.IGNORECASE)
CVU_PATTERN = re.compile(r"cvu[:\s]*(\d{22})", re.IGNORECASE)
CURRENCY_AMOUNT_PATTERN = re.compile(r"\$\s*([\d.,]+)")
AMOUNT_PATTERN = re.compile(r"\$?\s*([\d.,]+)")


class StructuredPayment(BaseModel):
    """Payment request generated by this platform."""

    tag: Literal["structured-payment"] = "structured-payment"
    amount: Optional[float] = None
    currency: str = "ARS"
    concept: Optional[str] = None
    recipient: Optional[str] = None
    alias: Optional[str] = None
    cbu: Optional[str] = None
    cvu: Optional[str] = None
    bank: Optional[str] = None
    reference: Optional[str] = None
    raw: str


class FreeTextFields(BaseModel):
    """Bank transfer details found in free text."""

    tag: Literal["freetext-fields"] = "freetext-fields"
    alias: Optional[str] = None
    cbu: Optional[str] = None
    cvu: Optional[str] = None
    amount: Optional[float] = None
    raw: str


class OpaquePayload(BaseModel):
    """Unrecognised content."""

    tag: Literal["opaque"] = "opaque"
    raw: str


PaymentPayload = Union[StructuredPayment, FreeTextFields, OpaquePayload]


class PaymentScan(BaseModel):
    """Envelope used when a parsed payload is sent to a client."""

    payload: PaymentPayload = Field(..., discriminator="tag")


def parse_amount(text: Optional[Any]) -> Optional[float]:
    """
    Parse an amount written as 1500, 1500.50, 1.500,50 or 1500,50.

    Returns:
        Float amount, or None if unparseable
    """
    if text is None:
        return None
    if isinstance(text, (int, float)):
        return float(text)

    value = str(text).strip()
    if "," in value:
        value = value.replace(".", "").replace(",", ".")
    try:
        return float(value)
    except ValueError:
        return None


def _blank_to_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _structured_from_json(data: Dict[str, Any], raw: str) -> StructuredPayment:
    # v2 nests the account under "beneficiario"
    account = data.get("beneficiario") if isinstance(data.get("beneficiario"), dict) else data

    return StructuredPayment(
        amount=parse_amount(data.get("monto")),
        currency=data.get("moneda") or "ARS",
        concept=_blank_to_none(data.get("concepto")),
        recipient=_blank_to_none(account.get("nombre") or data.get("destinatario")),
        alias=_blank_to_none(account.get("alias")),
        cbu=_blank_to_none(account.get("cbu")),
        cvu=_blank_to_none(account.get("cvu")),
        bank=_blank_to_none(account.get("banco")),
        reference=_blank_to_none(data.get("referencia")),
        raw=raw,
    )


def _fields_from_text(text: str) -> Optional[FreeTextFields]:
    alias = ALIAS_PATTERN.search(text)
    cbu = CBU_PATTERN.search(text)
    cvu = CVU_PATTERN.search(text)

    if not (alias or cbu or cvu):
        return None

    amount_match = CURRENCY_AMOUNT_PATTERN.search(text) or AMOUNT_PATTERN.search(text)

    return FreeTextFields(
        alias=alias.group(1) if alias else None,
        cbu=cbu.group(1) if cbu else None,
        cvu=cvu.group(1) if cvu else None,
        amount=parse_amount(amount_match.group(1)) if amount_match else None,
        raw=text,
    )


def parse_payment_payload(text: str) -> PaymentPayload:
    """
    Classify a decoded payment QR.

    Args:
        text: Raw QR content

    Returns:
        StructuredPayment, FreeTextFields or OpaquePayload
    """
    cleaned = (text or "").strip()

    try:
        data = json.loads(cleaned)
    except (json.JSONDecodeError, ValueError):
        data = None
    else:
        if isinstance(data, dict) and (
            data.get("tipo") == "PAGO_REPARTOS" or data.get("sistema") == "REPARTOS_SI"
        ):
            payment = _structured_from_json(data, cleaned)
            logger.info(f"💳 Structured payment scanned: {payment.amount} {payment.currency}")
            return payment
        # Valid JSON from another system
        return OpaquePayload(raw=cleaned)

    fields = _fields_from_text(cleaned)
    if fields is not None:
        logger.info("💳 Payment details found in free text")
        return fields

    return OpaquePayload(raw=cleaned)
