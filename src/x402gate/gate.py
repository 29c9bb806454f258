"""End-to-end payment gate for HTTP calls.

``PaymentGate.gate`` runs one protected call through the whole protocol:

1. resolve the requirement config (a builder may price by the *claimed*
   payer, decoded best-effort from ``X-PAYMENT``)
2. build the requirement
3. decode the credential
4. verify it
5. run the protected operation
6. settle (or skip when the operation failed)
7. attach ``X-PAYMENT-RESPONSE`` evidence
8. notify ``on_settle``
9. return the operation's response

Steps 2-4 reject with a payment challenge before anything runs. Only
step 6 can fail after the operation ran. The operation's result is never
released without reaching settlement or the explicit skip policy.
"""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Union

import httpx

from x402gate.codec import decode_payment, encode_payment_response, try_decode_payment
from x402gate.constants import (
    EXPOSE_HEADERS_HEADER,
    GateStatus,
    PAYMENT_HEADER,
    PAYMENT_RESPONSE_HEADER,
)
from x402gate.cors import expose_payment_response_header
from x402gate.errors import (
    ConfigurationError,
    GateError,
    InvalidPaymentError,
    MissingPaymentError,
)
from x402gate.facilitator import Facilitator
from x402gate.models import (
    PaymentPayload,
    PaymentRequirement,
    RequirementConfig,
    SettlementResult,
)
from x402gate.requirements import PriceConverter, build_requirement, process_price_to_atomic_amount
from x402gate.settlement import SettlementExecutor, SettlementPolicy
from x402gate.verifier import VerifiedPayment, Verifier

if TYPE_CHECKING:
    from x402gate.config import GateConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PricingContext:
    """What a requirement builder may look at before anything is verified."""

    request: httpx.Request
    claimed_payment: PaymentPayload | None = None

    @property
    def claimed_payer(self) -> str | None:
        return self.claimed_payment.payer if self.claimed_payment else None


RequirementBuilder = Callable[
    [PricingContext], Union[RequirementConfig, Awaitable[RequirementConfig]]
]
ConfigOrBuilder = Union[RequirementConfig, RequirementBuilder]


@dataclass(frozen=True)
class SettlementOutcome:
    """Passed to ``on_settle`` once a gated call completed."""

    response: httpx.Response
    requirement: PaymentRequirement
    config: RequirementConfig
    verified_payer: str
    settlement: SettlementResult | None = None

    @property
    def skipped(self) -> bool:
        return self.settlement is None

    @property
    def settled(self) -> bool:
        return self.settlement is not None and self.settlement.success

    @property
    def payer(self) -> str | None:
        """Payer confirmed by settlement, or None if nothing settled."""
        if not self.settled:
            return None
        return self.settlement.payer or self.verified_payer


OnSettle = Callable[[SettlementOutcome], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class GateOptions:
    on_settle: OnSettle | None = None
    # None defers to the executor's SettlementPolicy.
    settle_on_error: bool | None = None


@dataclass(frozen=True)
class Authorization:
    """A verified credential ready for execution and settlement."""

    verified: VerifiedPayment
    config: RequirementConfig
    accepts: list[PaymentRequirement] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


def json_response(status_code: int, body: dict[str, Any]) -> httpx.Response:
    return httpx.Response(
        status_code,
        content=json.dumps(body).encode("utf-8"),
        headers={"Content-Type": "application/json"},
    )


def challenge_response(error: GateError) -> httpx.Response:
    """Render a gate error as its JSON response."""
    response = json_response(int(error.status_code), error.to_body())
    response.headers[EXPOSE_HEADERS_HEADER] = PAYMENT_RESPONSE_HEADER
    return response


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------


class PaymentGate:
    """Runs protected calls behind x402 payment."""

    def __init__(
        self,
        facilitator: Facilitator,
        policy: SettlementPolicy | None = None,
        converter: PriceConverter = process_price_to_atomic_amount,
        settlement: SettlementExecutor | None = None,
    ) -> None:
        self.verifier = Verifier(facilitator)
        self.settlement = settlement or SettlementExecutor(facilitator, policy)
        self._converter = converter

    @classmethod
    def from_config(cls, config: GateConfig) -> PaymentGate:
        """Gate backed by the hosted facilitator named in ``config``."""
        from x402gate.facilitator_auth import Ed25519JwtAuth
        from x402gate.facilitator_client import FacilitatorClient

        auth = None
        if config.facilitator_key_id and config.facilitator_key_secret:
            auth = Ed25519JwtAuth(
                config.facilitator_key_id,
                config.facilitator_key_secret,
                config.facilitator_url,
            )
        client = FacilitatorClient(config.facilitator_url, auth=auth)
        return cls(client, config.settlement_policy())

    async def resolve_config(
        self, request: httpx.Request, config: ConfigOrBuilder
    ) -> RequirementConfig:
        if isinstance(config, RequirementConfig):
            return config
        claimed = try_decode_payment(request.headers.get(PAYMENT_HEADER))
        try:
            return await _maybe_await(
                config(PricingContext(request=request, claimed_payment=claimed))
            )
        except GateError:
            raise
        except Exception as e:
            logger.exception("Requirement builder raised.")
            raise ConfigurationError(f"Failed to build payment requirement: {e}") from e

    def build_requirement(
        self, config: RequirementConfig, *, resource: str, method: str = "GET"
    ) -> PaymentRequirement:
        return build_requirement(
            config, resource=resource, method=method, converter=self._converter
        )

    async def authorize(
        self,
        raw_payment: str | None,
        config: RequirementConfig,
        *,
        resource: str,
        method: str = "GET",
    ) -> Authorization:
        """Build the requirement, decode and verify the credential.

        Raises a ``GateError`` subclass on any rejection.
        """
        requirement = self.build_requirement(config, resource=resource, method=method)
        accepts = [requirement]
        messages = config.error_messages

        try:
            payment = decode_payment(raw_payment)
        except MissingPaymentError as e:
            logger.warning("Payment header missing for %s.", resource)
            if messages.payment_required:
                e.message = messages.payment_required
            raise e.with_accepts(accepts)
        except InvalidPaymentError as e:
            logger.warning("Failed to decode payment header for %s: %s.", resource, e)
            if messages.invalid_payment:
                e.message = messages.invalid_payment
            raise e.with_accepts(accepts)

        verified = await self.verifier.verify(payment, accepts, messages)
        return Authorization(verified=verified, config=config, accepts=accepts)

    async def gate(
        self,
        request: httpx.Request,
        config: ConfigOrBuilder,
        operation: Callable[[], Awaitable[httpx.Response]],
        options: GateOptions | None = None,
    ) -> httpx.Response:
        """Run ``operation`` only after payment verifies; settle before returning."""
        options = options or GateOptions()
        resource = str(request.url)
        logger.info("Gating %s %s with x402 payment.", request.method, resource)

        try:
            resolved = await self.resolve_config(request, config)
            auth = await self.authorize(
                request.headers.get(PAYMENT_HEADER),
                resolved,
                resource=resource,
                method=request.method,
            )
        except ConfigurationError as e:
            logger.error("Cannot price %s %s: %s.", request.method, resource, e.message)
            return challenge_response(e)
        except GateError as e:
            logger.warning(
                "Payment gate rejected %s %s: %s.", request.method, resource, e.message
            )
            return challenge_response(e)

        response = await self._run_operation(operation)
        logger.info("Protected operation completed with status %d.", response.status_code)

        try:
            settlement = await self.settlement.settle(
                auth.verified.payment,
                auth.verified.requirement,
                accepts=auth.accepts,
                operation_failed=response.status_code >= 400,
                settle_on_error=options.settle_on_error,
                messages=resolved.error_messages,
            )
        except GateError as e:
            return challenge_response(e)

        if settlement is not None and settlement.success:
            response.headers[PAYMENT_RESPONSE_HEADER] = encode_payment_response(settlement)
        expose_payment_response_header(response.headers)

        outcome = SettlementOutcome(
            response=response,
            requirement=auth.verified.requirement,
            config=resolved,
            verified_payer=auth.verified.payer,
            settlement=settlement,
        )
        await self._notify(options.on_settle, outcome)
        return response

    async def _run_operation(
        self, operation: Callable[[], Awaitable[httpx.Response]]
    ) -> httpx.Response:
        try:
            return await operation()
        except Exception as e:
            logger.exception("Protected operation raised.")
            return json_response(
                GateStatus.INTERNAL_ERROR, {"error": f"Protected operation failed: {e}"}
            )

    async def _notify(self, on_settle: OnSettle | None, outcome: SettlementOutcome) -> None:
        if on_settle is None:
            return
        try:
            await _maybe_await(on_settle(outcome))
        except Exception:
            logger.warning("on_settle handler raised.", exc_info=True)
