"""Async HTTP client for a hosted x402 facilitator (``/verify``, ``/settle``)."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from x402gate.constants import DEFAULT_FACILITATOR_URL, X402_VERSION
from x402gate.facilitator_auth import FacilitatorAuth, NoFacilitatorAuth
from x402gate.models import (
    PaymentPayload,
    PaymentRequirement,
    SettlementResult,
    VerificationResult,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------


class FacilitatorError(Exception):
    """Base exception for facilitator calls."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FacilitatorAuthError(FacilitatorError):
    """401/403 — API key rejected."""


class FacilitatorNotFoundError(FacilitatorError):
    """404 — wrong facilitator URL."""


class FacilitatorValidationError(FacilitatorError):
    """400/422 — the facilitator rejected the request body."""


class FacilitatorServerError(FacilitatorError):
    """5xx — facilitator-side failure (retryable)."""


class FacilitatorConnectionError(FacilitatorError):
    """Network/DNS failure (retryable)."""


class FacilitatorTimeoutError(FacilitatorError):
    """Request timeout (retryable)."""


_STATUS_MAP: dict[int, type[FacilitatorError]] = {
    400: FacilitatorValidationError,
    401: FacilitatorAuthError,
    403: FacilitatorAuthError,
    404: FacilitatorNotFoundError,
    422: FacilitatorValidationError,
}


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class FacilitatorClient:
    """Async client for the facilitator HTTP API.

    Implements the ``Facilitator`` protocol. Auth headers are requested
    from ``auth`` on every call so per-request tokens stay fresh.
    """

    def __init__(
        self,
        url: str = DEFAULT_FACILITATOR_URL,
        auth: FacilitatorAuth | None = None,
        timeout: httpx.Timeout | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self._auth = auth or NoFacilitatorAuth()
        self._client = httpx.AsyncClient(
            base_url=self.url,
            timeout=timeout or httpx.Timeout(connect=5.0, read=30.0, write=10.0, pool=5.0),
        )

    # -- internal request dispatcher -----------------------------------------

    async def _request(
        self,
        method: str,
        endpoint: str,
        action: str,
        json_data: dict[str, Any] | None = None,
    ) -> Any:
        """Send a request and map errors to the facilitator exception hierarchy."""
        headers = self._auth.create_auth_headers().get(endpoint.lstrip("/"), {})
        try:
            response = await self._client.request(
                method, endpoint, json=json_data, headers=headers
            )
        except httpx.ConnectError as exc:
            raise FacilitatorConnectionError(f"Failed to {action}: {exc}") from exc
        except httpx.TimeoutException as exc:
            raise FacilitatorTimeoutError(f"Failed to {action}: {exc}") from exc

        if response.status_code != 200:
            message = f"Failed to {action}: {response.status_code} {response.reason_phrase}"
            exc_cls = _STATUS_MAP.get(response.status_code)
            if exc_cls is None:
                exc_cls = (
                    FacilitatorServerError
                    if response.status_code >= 500
                    else FacilitatorError
                )
            raise exc_cls(message, status_code=response.status_code)

        return response.json()

    @staticmethod
    def _body(payment: PaymentPayload, requirement: PaymentRequirement) -> dict[str, Any]:
        return {
            "x402Version": X402_VERSION,
            "paymentPayload": payment.to_dict(),
            "paymentRequirements": requirement.to_dict(),
        }

    # -- public API methods ---------------------------------------------------

    async def verify(
        self, payment: PaymentPayload, requirement: PaymentRequirement
    ) -> VerificationResult:
        """POST /verify — check a credential without moving funds."""
        data = await self._request(
            "POST", "/verify", "verify payment", self._body(payment, requirement)
        )
        return VerificationResult.from_dict(data)

    async def settle(
        self, payment: PaymentPayload, requirement: PaymentRequirement
    ) -> SettlementResult:
        """POST /settle — submit the authorized transfer on-chain."""
        data = await self._request(
            "POST", "/settle", "settle payment", self._body(payment, requirement)
        )
        result = SettlementResult.from_dict(data)
        logger.info(
            "Facilitator settle: success=%s tx=%s network=%s.",
            result.success,
            result.transaction,
            result.network,
        )
        return result

    async def supported(self) -> list[dict[str, Any]]:
        """GET /supported — scheme/network pairs the facilitator handles."""
        data = await self._request("GET", "/supported", "get supported payment kinds")
        return list(data.get("kinds", []))

    # -- lifecycle ------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> FacilitatorClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
