"""Persistence interface for per-address outstanding debt.

Defines the DebtStore Protocol that DebtLedger depends on. The in-memory
store is the baseline; a durable store only needs the same two methods.
"""

from __future__ import annotations

import time
from decimal import Decimal
from typing import Callable, Protocol, runtime_checkable


@runtime_checkable
class DebtStore(Protocol):
    """Async key-value store: lowercase address -> USD amount."""

    async def get(self, address: str) -> Decimal | None: ...

    async def set(self, address: str, amount: Decimal) -> None: ...


class InMemoryDebtStore:
    """Process-local store with optional TTL expiry.

    Entries older than ``ttl_secs`` read as absent and are dropped on
    access. ``ttl_secs=None`` keeps entries forever.
    """

    def __init__(
        self,
        ttl_secs: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_secs
        self._clock = clock
        self._entries: dict[str, tuple[Decimal, float]] = {}

    async def get(self, address: str) -> Decimal | None:
        entry = self._entries.get(address)
        if entry is None:
            return None
        amount, written_at = entry
        if self._ttl is not None and self._clock() - written_at >= self._ttl:
            del self._entries[address]
            return None
        return amount

    async def set(self, address: str, amount: Decimal) -> None:
        self._entries[address] = (amount, self._clock())

    def purge_expired(self) -> list[str]:
        """Drop expired entries. Returns the addresses removed."""
        if self._ttl is None:
            return []
        now = self._clock()
        expired = [a for a, (_, t) in self._entries.items() if now - t >= self._ttl]
        for address in expired:
            del self._entries[address]
        return expired

    def __len__(self) -> int:
        return len(self._entries)
