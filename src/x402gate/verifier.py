"""Payment verification: requirement matching plus facilitator verify."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from x402gate.errors import (
    NoMatchingRequirementError,
    VerificationRejectedError,
    VerificationTransportError,
)
from x402gate.facilitator import Facilitator
from x402gate.models import ErrorMessages, PaymentPayload, PaymentRequirement

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerifiedPayment:
    payment: PaymentPayload
    requirement: PaymentRequirement
    payer: str


def find_matching_requirement(
    payment: PaymentPayload,
    requirements: Sequence[PaymentRequirement],
) -> PaymentRequirement | None:
    """First requirement with the payload's scheme and network.

    The exact-EVM payload does not name its asset, so scheme and network
    are the only fields that can be matched before verification.
    """
    for requirement in requirements:
        if requirement.scheme == payment.scheme and requirement.network == payment.network:
            return requirement
    return None


class Verifier:
    """Checks a decoded credential against the accepted requirements."""

    def __init__(self, facilitator: Facilitator) -> None:
        self._facilitator = facilitator

    async def verify(
        self,
        payment: PaymentPayload,
        requirements: Sequence[PaymentRequirement],
        messages: ErrorMessages | None = None,
    ) -> VerifiedPayment:
        """Verify ``payment`` or raise a 402-class error carrying ``accepts``.

        Raises:
            NoMatchingRequirementError: no requirement shares scheme/network.
            VerificationTransportError: the facilitator call itself failed.
            VerificationRejectedError: the facilitator said ``isValid: false``.
        """
        messages = messages or ErrorMessages()
        accepts = list(requirements)

        requirement = find_matching_requirement(payment, accepts)
        if requirement is None:
            logger.warning(
                "No matching requirement for %s/%s from %s.",
                payment.scheme,
                payment.network,
                payment.payer,
            )
            raise NoMatchingRequirementError(
                messages.no_matching_requirements or "Unable to find matching payment requirements",
                accepts=accepts,
            )

        try:
            result = await self._facilitator.verify(payment, requirement)
        except Exception as e:
            logger.warning("Payment verification call failed: %s.", e)
            raise VerificationTransportError(
                messages.verification_failed or str(e) or "Payment verification failed",
                detail=str(e),
                accepts=accepts,
            ) from e

        if not result.is_valid:
            payer = result.payer or payment.payer
            logger.warning(
                "Payment from %s rejected: %s.", payer, result.invalid_reason
            )
            raise VerificationRejectedError(
                messages.verification_failed
                or result.invalid_reason
                or "Payment verification failed",
                accepts=accepts,
                payer=payer,
            )

        payer = result.payer or payment.payer
        logger.info("Payment verified for %s.", payer)
        return VerifiedPayment(payment=payment, requirement=requirement, payer=payer)
