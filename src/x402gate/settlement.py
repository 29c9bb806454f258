"""Settlement after execution: skip policy, bounded retry, classification.

Settlement runs only once the protected operation has produced a result.
Failed operations are not billed unless ``settle_on_error`` is set. Each
settle attempt is independent; after the last failure the error is
classified by the facilitator's HTTP status:

- status >= 500: the settlement service is down -> ``ServiceUnavailableError``
  (502, retry the whole call).
- anything else: ``SettlementFailedError`` (402, a new credential is needed).
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence, TypeVar

from x402gate.constants import (
    SETTLEMENT_INITIAL_DELAY,
    SETTLEMENT_MAX_ATTEMPTS,
    SETTLEMENT_MAX_DELAY,
)
from x402gate.errors import ServiceUnavailableError, SettlementFailedError
from x402gate.facilitator import Facilitator
from x402gate.models import (
    ErrorMessages,
    PaymentPayload,
    PaymentRequirement,
    SettlementResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]

_STATUS_PATTERN = re.compile(r"failed to settle payment:\s+(\d{3})", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------


def backoff_delay(
    attempt: int,
    initial_delay: float = SETTLEMENT_INITIAL_DELAY,
    max_delay: float = SETTLEMENT_MAX_DELAY,
) -> float:
    """Seconds to wait before 1-based ``attempt``. The first attempt waits 0."""
    if attempt <= 1:
        return 0.0
    return min(initial_delay * (2 ** (attempt - 2)), max_delay)


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = SETTLEMENT_MAX_ATTEMPTS,
    initial_delay: float = SETTLEMENT_INITIAL_DELAY,
    max_delay: float = SETTLEMENT_MAX_DELAY,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Call ``fn`` until it returns, at most ``max_attempts`` times.

    Any exception is retried; the last one is re-raised.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
    for attempt in range(1, max_attempts + 1):
        delay = backoff_delay(attempt, initial_delay, max_delay)
        if delay > 0:
            await sleep(delay)
        try:
            return await fn()
        except Exception as e:
            if attempt == max_attempts:
                raise
            logger.warning(
                "Attempt %d/%d failed: %s. Retrying in %.2fs.",
                attempt,
                max_attempts,
                e,
                backoff_delay(attempt + 1, initial_delay, max_delay),
            )
    raise AssertionError("unreachable")


def extract_facilitator_status(error: BaseException) -> int | None:
    """HTTP status of a failed facilitator call, if it can be determined."""
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status
    match = _STATUS_PATTERN.search(str(error))
    if match:
        return int(match.group(1))
    return None


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SettlementPolicy:
    max_attempts: int = SETTLEMENT_MAX_ATTEMPTS
    initial_delay: float = SETTLEMENT_INITIAL_DELAY
    max_delay: float = SETTLEMENT_MAX_DELAY
    settle_on_error: bool = False


class SettlementExecutor:
    """Finalizes a verified payment after the protected operation ran."""

    def __init__(
        self,
        facilitator: Facilitator,
        policy: SettlementPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._facilitator = facilitator
        self.policy = policy or SettlementPolicy()
        self._sleep = sleep

    def should_settle(self, operation_failed: bool, settle_on_error: bool | None = None) -> bool:
        force = self.policy.settle_on_error if settle_on_error is None else settle_on_error
        return force or not operation_failed

    async def settle(
        self,
        payment: PaymentPayload,
        requirement: PaymentRequirement,
        *,
        accepts: Sequence[PaymentRequirement] = (),
        operation_failed: bool = False,
        settle_on_error: bool | None = None,
        messages: ErrorMessages | None = None,
    ) -> SettlementResult | None:
        """Settle ``payment``, or return None when the skip policy applies.

        A result with ``success=False`` is returned as-is (logged); only
        exhausted retries raise.

        Raises:
            ServiceUnavailableError: the facilitator kept failing with 5xx.
            SettlementFailedError: any other exhausted failure.
        """
        if not self.should_settle(operation_failed, settle_on_error):
            logger.info("Skipping settlement: protected operation failed.")
            return None

        messages = messages or ErrorMessages()
        try:
            result = await retry_with_backoff(
                lambda: self._facilitator.settle(payment, requirement),
                max_attempts=self.policy.max_attempts,
                initial_delay=self.policy.initial_delay,
                max_delay=self.policy.max_delay,
                sleep=self._sleep,
            )
        except Exception as e:
            status = extract_facilitator_status(e)
            if status is not None and status >= 500:
                logger.error("Settlement service unavailable (status %d): %s.", status, e)
                raise ServiceUnavailableError(
                    messages.settlement_failed
                    or "Settlement service is temporarily unavailable. Please retry.",
                    accepts=list(accepts),
                ) from e
            logger.error("Settlement failed: %s.", e)
            raise SettlementFailedError(
                messages.settlement_failed or str(e) or "Settlement failed",
                accepts=list(accepts),
            ) from e

        if result.success:
            logger.info(
                "Settled payment from %s: tx=%s on %s.",
                result.payer,
                result.transaction,
                result.network,
            )
        else:
            logger.warning(
                "Settlement did not succeed for %s: %s.",
                payment.payer,
                result.error_reason,
            )
        return result
