"""Deferred pricing: each caller pays the previous call's bill.

The price of a call is unknown until it has run (e.g. LLM token usage).
``DebtLedger`` remembers, per payer address, the cost of the last call.
The next request from that address is priced at that amount; a new
address is quoted 0, a registration call that puts it on the books.

Pricing reads use the *claimed* payer (before verification). Ledger
writes use the payer confirmed by settlement only.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import replace
from decimal import Decimal, InvalidOperation
from typing import Callable

import httpx

from x402gate.debt_store import DebtStore, InMemoryDebtStore
from x402gate.gate import PricingContext, SettlementOutcome
from x402gate.models import RequirementConfig
from x402gate.requirements import atomic_to_usd

logger = logging.getLogger(__name__)

CostFn = Callable[[httpx.Response], Decimal]


def normalize_address(address: str) -> str:
    return address.strip().lower()


class DebtLedger:
    """Outstanding USD per caller address.

    Per-address asyncio locks make ``record_settlement`` an atomic
    read-modify-write, so concurrent calls from one address cannot lose
    an update.
    """

    def __init__(self, store: DebtStore | None = None) -> None:
        self._store = store if store is not None else InMemoryDebtStore()
        self._locks: dict[str, asyncio.Lock] = {}

    def _get_lock(self, address: str) -> asyncio.Lock:
        """Get or create a per-address lock."""
        if address not in self._locks:
            self._locks[address] = asyncio.Lock()
        return self._locks[address]

    def _drop_lock(self, address: str) -> None:
        lock = self._locks.get(address)
        if lock is not None and not lock.locked():
            del self._locks[address]

    def _purge_expired(self) -> None:
        """Purge expired in-memory entries and their locks.

        Durable stores expire entries on their own side; their locks are
        dropped when ``get`` finds the address absent.
        """
        if not isinstance(self._store, InMemoryDebtStore):
            return
        expired = self._store.purge_expired()
        for address in expired:
            self._drop_lock(address)
        if expired:
            logger.debug("Purged %d expired debt entries.", len(expired))

    async def get(self, address: str) -> Decimal:
        """Outstanding amount for ``address``; 0 when unknown."""
        key = normalize_address(address)
        amount = await self._store.get(key)
        if amount is None:
            self._drop_lock(key)
            return Decimal(0)
        return amount

    async def set(self, address: str, amount: Decimal) -> None:
        if amount < 0:
            raise ValueError(f"debt must be non-negative, got {amount}")
        self._purge_expired()
        key = normalize_address(address)
        async with self._get_lock(key):
            await self._store.set(key, amount)

    async def record_settlement(self, address: str, paid: Decimal, cost: Decimal) -> Decimal:
        """Apply one settled call: ``paid`` clears debt, ``cost`` is the new bill.

        new = max(outstanding - paid, 0) + cost

        Returns the new outstanding amount.
        """
        if paid < 0 or cost < 0:
            raise ValueError(f"paid and cost must be non-negative, got {paid}, {cost}")
        self._purge_expired()
        key = normalize_address(address)
        async with self._get_lock(key):
            current = await self._store.get(key) or Decimal(0)
            new = max(current - paid, Decimal(0)) + cost
            await self._store.set(key, new)
        logger.info("Debt for %s: %s -> %s (paid %s, cost %s).", key, current, new, paid, cost)
        return new


def usage_cost(response: httpx.Response) -> Decimal:
    """Read ``usage.cost`` (USD) from a JSON response body; 0 if absent."""
    try:
        data = json.loads(response.content)
    except (ValueError, UnicodeDecodeError):
        return Decimal(0)
    usage = data.get("usage") if isinstance(data, dict) else None
    if not isinstance(usage, dict) or usage.get("cost") is None:
        return Decimal(0)
    try:
        cost = Decimal(str(usage["cost"]))
    except InvalidOperation:
        return Decimal(0)
    if not cost.is_finite() or cost < 0:
        return Decimal(0)
    return cost


class DeferredPricing:
    """Requirement builder + ``on_settle`` hook backed by a DebtLedger.

    Usage::

        pricing = DeferredPricing(ledger, base_config)
        await gate.gate(request, pricing.requirement_config, operation,
                        GateOptions(on_settle=pricing.on_settle))
    """

    def __init__(
        self,
        ledger: DebtLedger,
        base_config: RequirementConfig,
        cost_of: CostFn = usage_cost,
    ) -> None:
        self.ledger = ledger
        self._base = base_config
        self.cost_of = cost_of

    async def requirement_config(self, ctx: PricingContext) -> RequirementConfig:
        payer = ctx.claimed_payer
        price = await self.ledger.get(payer) if payer else Decimal(0)
        logger.info("Quoting %s USD to %s.", price, payer or "unknown payer")
        return replace(self._base, price=price)

    async def on_settle(self, outcome: SettlementOutcome) -> None:
        payer = outcome.payer
        if payer is None:
            logger.info("No settled payer; debt ledger unchanged.")
            return
        paid = atomic_to_usd(outcome.requirement.max_amount_required)
        cost = self.cost_of(outcome.response)
        await self.ledger.record_settlement(payer, paid, cost)
