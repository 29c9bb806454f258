"""Abstract settlement service interface.

Defines the Facilitator Protocol that the verifier and settlement executor
depend on. ``FacilitatorClient`` is the hosted-HTTP implementation; tests
and alternative backends only need these two coroutines.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from x402gate.models import (
    PaymentPayload,
    PaymentRequirement,
    SettlementResult,
    VerificationResult,
)


@runtime_checkable
class Facilitator(Protocol):
    """Verifies payment credentials and settles them on-chain."""

    async def verify(
        self, payment: PaymentPayload, requirement: PaymentRequirement
    ) -> VerificationResult: ...

    async def settle(
        self, payment: PaymentPayload, requirement: PaymentRequirement
    ) -> SettlementResult: ...
