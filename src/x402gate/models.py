"""x402 wire models: requirements, payment payloads, facilitator results.

Pure data model with no I/O. Field names are snake_case in Python and
camelCase on the wire; ``to_dict``/``from_dict`` translate between the two.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Union

from x402gate.constants import SCHEME_EXACT, X402_VERSION


# ---------------------------------------------------------------------------
# Prices
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenAsset:
    """An ERC-20 token with the EIP-712 domain used to sign transfers."""

    address: str
    decimals: int
    eip712_name: str
    eip712_version: str = "2"


@dataclass(frozen=True)
class TokenAmount:
    """A price already expressed in atomic units of a specific token."""

    amount: str
    asset: TokenAsset


# A price is money ("$0.01", 0.01, Decimal("0.01")) or an explicit TokenAmount.
Price = Union[str, int, float, Decimal, TokenAmount]


@dataclass(frozen=True)
class AtomicAmount:
    """Output of price conversion: an integer amount in a concrete asset."""

    max_amount_required: str
    asset_address: str
    eip712: dict[str, str]


# ---------------------------------------------------------------------------
# PaymentRequirement
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PaymentRequirement:
    """What the server will accept for one call. Built fresh per request."""

    network: str
    max_amount_required: str
    resource: str
    pay_to: str
    asset: str
    description: str = ""
    mime_type: str = "application/json"
    max_timeout_seconds: int = 300
    output_schema: dict[str, Any] | None = None
    extra: dict[str, Any] | None = None
    scheme: str = SCHEME_EXACT

    def to_dict(self) -> dict[str, Any]:
        return {
            "scheme": self.scheme,
            "network": self.network,
            "maxAmountRequired": self.max_amount_required,
            "resource": self.resource,
            "description": self.description,
            "mimeType": self.mime_type,
            "payTo": self.pay_to,
            "maxTimeoutSeconds": self.max_timeout_seconds,
            "asset": self.asset,
            "outputSchema": self.output_schema,
            "extra": self.extra,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PaymentRequirement:
        return cls(
            scheme=str(data.get("scheme", SCHEME_EXACT)),
            network=str(data["network"]),
            max_amount_required=str(data["maxAmountRequired"]),
            resource=str(data.get("resource", "")),
            description=str(data.get("description", "")),
            mime_type=str(data.get("mimeType", "application/json")),
            pay_to=str(data["payTo"]),
            max_timeout_seconds=int(data.get("maxTimeoutSeconds", 300)),
            asset=str(data["asset"]),
            output_schema=data.get("outputSchema"),
            extra=data.get("extra"),
        )


# ---------------------------------------------------------------------------
# PaymentPayload
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransferAuthorization:
    """EIP-3009 transferWithAuthorization parameters signed by the payer."""

    from_address: str
    to: str
    value: str
    valid_after: str
    valid_before: str
    nonce: str

    def to_dict(self) -> dict[str, str]:
        return {
            "from": self.from_address,
            "to": self.to,
            "value": self.value,
            "validAfter": self.valid_after,
            "validBefore": self.valid_before,
            "nonce": self.nonce,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TransferAuthorization:
        return cls(
            from_address=_require_str(data, "from"),
            to=_require_str(data, "to"),
            value=_require_str(data, "value"),
            valid_after=_require_str(data, "validAfter"),
            valid_before=_require_str(data, "validBefore"),
            nonce=_require_str(data, "nonce"),
        )


@dataclass(frozen=True)
class ExactEvmPayload:
    """Signature plus authorization for the ``exact`` scheme on EVM chains."""

    signature: str
    authorization: TransferAuthorization

    def to_dict(self) -> dict[str, Any]:
        return {
            "signature": self.signature,
            "authorization": self.authorization.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExactEvmPayload:
        authorization = data.get("authorization")
        if not isinstance(authorization, dict):
            raise ValueError("payload.authorization must be an object")
        return cls(
            signature=_require_str(data, "signature"),
            authorization=TransferAuthorization.from_dict(authorization),
        )


@dataclass(frozen=True)
class PaymentPayload:
    """The caller's signed payment credential, decoded from ``X-PAYMENT``."""

    scheme: str
    network: str
    payload: ExactEvmPayload
    x402_version: int = X402_VERSION

    @property
    def payer(self) -> str:
        """The address the credential *claims* to pay from (unverified)."""
        return self.payload.authorization.from_address

    def to_dict(self) -> dict[str, Any]:
        return {
            "x402Version": self.x402_version,
            "scheme": self.scheme,
            "network": self.network,
            "payload": self.payload.to_dict(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PaymentPayload:
        """Parse a wire payload. Raises ValueError on any structural problem.

        The protocol version is always stamped to the version this gate
        speaks, whatever the caller sent.
        """
        if not isinstance(data, dict):
            raise ValueError("payment payload must be a JSON object")
        inner = data.get("payload")
        if not isinstance(inner, dict):
            raise ValueError("payload must be an object")
        return cls(
            scheme=_require_str(data, "scheme"),
            network=_require_str(data, "network"),
            payload=ExactEvmPayload.from_dict(inner),
            x402_version=X402_VERSION,
        )


# ---------------------------------------------------------------------------
# Facilitator results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VerificationResult:
    is_valid: bool
    invalid_reason: str | None = None
    payer: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "invalidReason": self.invalid_reason,
            "payer": self.payer,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VerificationResult:
        return cls(
            is_valid=bool(data.get("isValid", False)),
            invalid_reason=data.get("invalidReason"),
            payer=data.get("payer"),
        )


@dataclass(frozen=True)
class SettlementResult:
    """Outcome of an on-chain settlement. Trust fields only when ``success``."""

    success: bool
    network: str
    transaction: str = ""
    payer: str | None = None
    error_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "transaction": self.transaction,
            "network": self.network,
            "payer": self.payer,
        }
        if self.error_reason is not None:
            data["errorReason"] = self.error_reason
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SettlementResult:
        return cls(
            success=bool(data.get("success", False)),
            network=str(data.get("network", "")),
            transaction=str(data.get("transaction") or ""),
            payer=data.get("payer"),
            error_reason=data.get("errorReason"),
        )


# ---------------------------------------------------------------------------
# Per-route configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ErrorMessages:
    """Optional overrides for the ``error`` text of payment challenges."""

    payment_required: str | None = None
    invalid_payment: str | None = None
    no_matching_requirements: str | None = None
    verification_failed: str | None = None
    settlement_failed: str | None = None


@dataclass(frozen=True)
class RequirementConfig:
    """Everything needed to price one protected call."""

    price: Price
    network: str
    pay_to: str
    resource: str | None = None
    method: str | None = None
    description: str = ""
    mime_type: str | None = None
    max_timeout_seconds: int | None = None
    input_schema: dict[str, Any] | None = None
    output_schema: dict[str, Any] | None = None
    discoverable: bool = True
    error_messages: ErrorMessages = field(default_factory=ErrorMessages)


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ValueError(f"missing or invalid field '{key}'")
    return value
