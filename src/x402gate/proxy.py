"""Paid reverse proxy to an upstream HTTP API (OpenRouter by default)."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Sequence

import httpx

from x402gate.codec import log_payment_response_header
from x402gate.cors import apply_cors_headers
from x402gate.config import GateConfig
from x402gate.debt_ledger import DebtLedger, DeferredPricing
from x402gate.debt_store import InMemoryDebtStore
from x402gate.gate import GateOptions, PaymentGate, SettlementOutcome, json_response
from x402gate.models import RequirementConfig

logger = logging.getLogger(__name__)
settlement_logger = logging.getLogger(__name__ + ".settlement")

DEFAULT_UPSTREAM_URL = "https://openrouter.ai"
DEFAULT_TARGET_PATH = "/api/v1/chat/completions"
DEFAULT_TITLE = "x402-openrouter-proxy"

_DROP_REQUEST_HEADERS = frozenset({"host", "content-length"})
_DROP_RESPONSE_HEADERS = frozenset(
    {"content-security-policy", "content-length", "content-encoding", "transfer-encoding"}
)


def resolve_target_path(
    path_segments: Sequence[str] = (), default_path: str = DEFAULT_TARGET_PATH
) -> str:
    if not path_segments:
        return default_path
    joined = "/".join(path_segments)
    return joined if joined.startswith("/") else f"/{joined}"


class UpstreamProxy:
    """Forwards a request to the upstream API with the service's API key."""

    def __init__(
        self,
        base_url: str = DEFAULT_UPSTREAM_URL,
        api_key: str | None = None,
        default_path: str = DEFAULT_TARGET_PATH,
        timeout: httpx.Timeout | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.default_path = default_path
        self._api_key = api_key
        self._client = httpx.AsyncClient(
            timeout=timeout or httpx.Timeout(connect=5.0, read=120.0, write=30.0, pool=5.0),
        )

    def forward_headers(self, request: httpx.Request) -> dict[str, str]:
        headers = {
            key: value
            for key, value in request.headers.items()
            if key.lower() not in _DROP_REQUEST_HEADERS
        }
        if not any(key.lower() == "x-title" for key in headers):
            headers["x-title"] = DEFAULT_TITLE
        if self._api_key:
            for key in [k for k in headers if k.lower() == "authorization"]:
                del headers[key]
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def forward(
        self, request: httpx.Request, path_segments: Sequence[str] = ()
    ) -> httpx.Response:
        """Send ``request`` upstream. Transport failures become a 502 response."""
        method = request.method.upper()
        target_path = resolve_target_path(path_segments, self.default_path)
        query = request.url.query.decode("ascii") if request.url.query else ""
        target_url = f"{self.base_url}{target_path}" + (f"?{query}" if query else "")
        content = None if method in ("GET", "HEAD") else await request.aread()

        logger.info("Forwarding %s %s.", method, target_url)
        try:
            upstream = await self._client.request(
                method, target_url, headers=self.forward_headers(request), content=content
            )
        except httpx.HTTPError as e:
            logger.error("Upstream request failed for %s %s: %s.", method, target_path, e)
            return json_response(502, {"error": str(e) or "Failed to reach upstream"})

        logger.info(
            "Upstream response %d %s for %s %s.",
            upstream.status_code,
            upstream.reason_phrase,
            method,
            target_path,
        )
        headers = [
            (key, value)
            for key, value in upstream.headers.multi_items()
            if key.lower() not in _DROP_RESPONSE_HEADERS
        ]
        return httpx.Response(upstream.status_code, headers=headers, content=upstream.content)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> UpstreamProxy:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()


def log_settlement(outcome: SettlementOutcome) -> None:
    """Default ``on_settle`` for the proxy: record what was settled."""
    if outcome.settlement is None:
        settlement_logger.info(
            "Settlement skipped (upstream status %d).", outcome.response.status_code
        )
        return
    log = settlement_logger.info if outcome.settlement.success else settlement_logger.warning
    log(
        "Settlement finished: success=%s status=%d tx=%s network=%s payer=%s.",
        outcome.settlement.success,
        outcome.response.status_code,
        outcome.settlement.transaction,
        outcome.settlement.network,
        outcome.settlement.payer,
    )


class PaidProxy:
    """Gate + upstream proxy + CORS: one call per inbound request.

    With ``pricing`` set, each call is priced from the caller's outstanding
    debt instead of ``base_config.price``.
    """

    def __init__(
        self,
        gate: PaymentGate,
        upstream: UpstreamProxy,
        base_config: RequirementConfig,
        *,
        allowed_origin: str | None = None,
        pricing: DeferredPricing | None = None,
    ) -> None:
        self.gate = gate
        self.upstream = upstream
        self.base_config = base_config
        self.allowed_origin = allowed_origin
        self.pricing = pricing

    @classmethod
    def from_config(cls, config: GateConfig, *, deferred: bool = False) -> PaidProxy:
        """Wire gate, upstream and (optionally) debt-based pricing from ``config``."""
        base = RequirementConfig(
            price=config.default_price,
            network=config.network,
            pay_to=config.pay_to,
            description="Access to OpenRouter proxy",
            mime_type="application/json",
        )
        pricing = None
        if deferred:
            ledger = DebtLedger(InMemoryDebtStore(ttl_secs=config.debt_ttl_secs))
            pricing = DeferredPricing(ledger, base)
        return cls(
            PaymentGate.from_config(config),
            UpstreamProxy(config.upstream_base_url, config.upstream_api_key),
            base,
            allowed_origin=config.allowed_origin,
            pricing=pricing,
        )

    def resolve_config(self, overrides: dict[str, Any] | None = None) -> RequirementConfig:
        return replace(self.base_config, **(overrides or {}))

    async def _on_settle(self, outcome: SettlementOutcome) -> None:
        log_settlement(outcome)
        if self.pricing is not None:
            await self.pricing.on_settle(outcome)

    async def forward(
        self,
        request: httpx.Request,
        path_segments: Sequence[str] = (),
        overrides: dict[str, Any] | None = None,
    ) -> httpx.Response:
        config = self.resolve_config(overrides)
        if self.pricing is not None:
            pricing = DeferredPricing(self.pricing.ledger, config, self.pricing.cost_of)
            config_or_builder: Any = pricing.requirement_config
        else:
            config_or_builder = config

        response = await self.gate.gate(
            request,
            config_or_builder,
            lambda: self.upstream.forward(request, path_segments),
            GateOptions(on_settle=self._on_settle),
        )
        log_payment_response_header(response.headers, settlement_logger)
        return apply_cors_headers(request, response, self.allowed_origin)
