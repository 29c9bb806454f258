"""X-PAYMENT / X-PAYMENT-RESPONSE header codec.

Pure functions, no network. Both headers are base64 of a JSON object; the
decoders accept the standard and url-safe alphabets, with or without
padding.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Any, Mapping

from x402gate.constants import PAYMENT_HEADER, PAYMENT_RESPONSE_HEADER
from x402gate.errors import InvalidPaymentError, MissingPaymentError
from x402gate.models import PaymentPayload, SettlementResult

logger = logging.getLogger(__name__)


def _b64decode(value: str) -> bytes:
    """Decode base64 in either alphabet, restoring stripped padding."""
    normalized = value.strip().replace("-", "+").replace("_", "/")
    normalized += "=" * (-len(normalized) % 4)
    return base64.b64decode(normalized, validate=True)


def _b64encode_json(data: dict[str, Any]) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


# ---------------------------------------------------------------------------
# X-PAYMENT
# ---------------------------------------------------------------------------


def decode_payment(raw: str | None) -> PaymentPayload:
    """Decode and validate an ``X-PAYMENT`` value.

    Raises:
        MissingPaymentError: ``raw`` is absent or blank.
        InvalidPaymentError: not base64, not JSON, or not a valid payload.
    """
    if raw is None or not raw.strip():
        raise MissingPaymentError(f"{PAYMENT_HEADER} header is required")
    try:
        decoded = _b64decode(raw)
    except (binascii.Error, ValueError) as e:
        raise InvalidPaymentError(f"Invalid payment: not base64 ({e})") from e
    try:
        data = json.loads(decoded.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidPaymentError(f"Invalid payment: not JSON ({e})") from e
    try:
        payment = PaymentPayload.from_dict(data)
    except (ValueError, TypeError) as e:
        raise InvalidPaymentError(f"Invalid payment: {e}") from e
    logger.debug("Decoded payment from %s on %s.", payment.payer, payment.network)
    return payment


def try_decode_payment(raw: str | None) -> PaymentPayload | None:
    """Speculative decode: the same as ``decode_payment`` but never raises."""
    try:
        return decode_payment(raw)
    except (MissingPaymentError, InvalidPaymentError):
        return None


def encode_payment(payment: PaymentPayload) -> str:
    """Encode a payload as an ``X-PAYMENT`` value (payer-side helper)."""
    return _b64encode_json(payment.to_dict())


# ---------------------------------------------------------------------------
# X-PAYMENT-RESPONSE
# ---------------------------------------------------------------------------


def encode_payment_response(settlement: SettlementResult) -> str:
    """Settlement evidence for a successful settlement."""
    return _b64encode_json(
        {
            "success": True,
            "transaction": settlement.transaction,
            "network": settlement.network,
            "payer": settlement.payer,
        }
    )


def decode_payment_response(value: str | None) -> dict[str, Any] | None:
    """Decode an ``X-PAYMENT-RESPONSE`` value.

    Returns None when the value is absent, unparsable, or does not report
    ``success: true``.
    """
    if not value:
        return None
    try:
        data = json.loads(_b64decode(value).decode("utf-8"))
    except (binascii.Error, ValueError, UnicodeDecodeError):
        return None
    if not isinstance(data, dict) or data.get("success") is not True:
        return None
    return data


def log_payment_response_header(
    headers: Mapping[str, str],
    log: logging.Logger | None = None,
) -> dict[str, Any] | None:
    """Log the settlement evidence carried by a response, if any."""
    log = log or logger
    value = headers.get(PAYMENT_RESPONSE_HEADER)
    if not value:
        log.info("No %s header on response.", PAYMENT_RESPONSE_HEADER)
        return None
    decoded = decode_payment_response(value)
    if decoded is None:
        log.warning("Unparsable %s header: %s.", PAYMENT_RESPONSE_HEADER, value)
        return None
    log.info(
        "Payment settled: tx=%s network=%s payer=%s.",
        decoded.get("transaction"),
        decoded.get("network"),
        decoded.get("payer"),
    )
    return decoded
