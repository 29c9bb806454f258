"""Gate error taxonomy.

Every failure the gate can report to a caller is a ``GateError``. Each
carries the HTTP status it maps to and renders its own response body via
``to_body()``:

- ``ConfigurationError`` (500): the server is misconfigured; ``accepts`` is empty.
- ``PaymentRequiredError`` (402): the payer can fix it; body is a payment
  challenge listing the accepted requirements.
- ``SettlementError``: raised after the protected operation ran.
  ``SettlementFailedError`` is a 402 challenge, ``ServiceUnavailableError``
  is a 502 telling the caller to retry the whole call.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from x402gate.constants import GateStatus, X402_VERSION

if TYPE_CHECKING:
    from x402gate.models import PaymentRequirement


class GateError(Exception):
    """Base exception for payment gating failures."""

    status_code: int = GateStatus.PAYMENT_REQUIRED

    def __init__(
        self,
        message: str,
        *,
        accepts: list[PaymentRequirement] | None = None,
        payer: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.accepts = list(accepts or [])
        self.payer = payer

    def with_accepts(self, accepts: list[PaymentRequirement]) -> GateError:
        """Attach the requirements the caller should pay against."""
        self.accepts = list(accepts)
        return self

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "x402Version": X402_VERSION,
            "error": self.message,
            "accepts": [req.to_dict() for req in self.accepts],
        }
        if self.payer:
            body["payer"] = self.payer
        return body


# ---------------------------------------------------------------------------
# Configuration (500)
# ---------------------------------------------------------------------------


class ConfigurationError(GateError):
    """The gate cannot build a requirement from its configuration."""

    status_code = GateStatus.INTERNAL_ERROR


class PriceConversionError(ConfigurationError):
    """The configured price could not be turned into an atomic amount."""


class UnsupportedNetworkError(ConfigurationError):
    """The configured network is not a supported EVM network."""


# ---------------------------------------------------------------------------
# Payer-actionable (402)
# ---------------------------------------------------------------------------


class PaymentRequiredError(GateError):
    status_code = GateStatus.PAYMENT_REQUIRED


class MissingPaymentError(PaymentRequiredError):
    """No payment credential was presented."""


class InvalidPaymentError(PaymentRequiredError):
    """The credential is not base64, not JSON, or structurally invalid."""


class NoMatchingRequirementError(PaymentRequiredError):
    """The credential does not target any of the accepted requirements."""


class VerificationTransportError(PaymentRequiredError):
    """The facilitator could not be reached to verify the credential."""

    def __init__(
        self,
        message: str,
        *,
        detail: str,
        accepts: list[PaymentRequirement] | None = None,
        payer: str | None = None,
    ) -> None:
        super().__init__(message, accepts=accepts, payer=payer)
        self.detail = detail

    def to_body(self) -> dict[str, Any]:
        body = super().to_body()
        body["verificationError"] = self.detail
        return body


class VerificationRejectedError(PaymentRequiredError):
    """The facilitator examined the credential and found it invalid."""


# ---------------------------------------------------------------------------
# Settlement (after execution)
# ---------------------------------------------------------------------------


class SettlementError(GateError):
    """Settlement did not complete after the protected operation ran."""


class SettlementFailedError(SettlementError):
    status_code = GateStatus.PAYMENT_REQUIRED


class ServiceUnavailableError(SettlementError):
    """The settlement service itself failed (5xx); the caller should retry."""

    status_code = GateStatus.BAD_GATEWAY

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "x402Version": X402_VERSION,
            "error": self.message,
            "retryable": True,
        }
        if self.accepts:
            body["accepts"] = [req.to_dict() for req in self.accepts]
        return body
