"""Gate configuration: a plain frozen dataclass, no pydantic.

The host application constructs this from its own settings and passes it
to the gate components. ``GateConfig.from_env`` covers the common case of
a service configured entirely through environment variables.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Mapping
from urllib.parse import urlparse

from eth_account import Account
from eth_utils import is_address, to_checksum_address

from x402gate.constants import (
    DEFAULT_FACILITATOR_URL,
    DEFAULT_NETWORK,
    DEFAULT_PRICE,
    ENV_NETWORKS,
    SETTLEMENT_INITIAL_DELAY,
    SETTLEMENT_MAX_ATTEMPTS,
    SETTLEMENT_MAX_DELAY,
)
from x402gate.settlement import SettlementPolicy

_PRIVATE_KEY_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
_TRUTHY = frozenset({"1", "true", "yes", "on"})


class ConfigError(ValueError):
    """Raised when the environment does not describe a usable gate."""


@dataclass(frozen=True)
class GateConfig:
    pay_to: str
    facilitator_url: str = DEFAULT_FACILITATOR_URL
    network: str = DEFAULT_NETWORK
    default_price: str = DEFAULT_PRICE
    allowed_origin: str | None = None
    settlement_max_attempts: int = SETTLEMENT_MAX_ATTEMPTS
    settlement_initial_delay: float = SETTLEMENT_INITIAL_DELAY
    settlement_max_delay: float = SETTLEMENT_MAX_DELAY
    settle_on_error: bool = False
    facilitator_key_id: str | None = None
    facilitator_key_secret: str | None = None
    upstream_base_url: str = "https://openrouter.ai"
    upstream_api_key: str | None = None
    debt_ttl_secs: float | None = None

    def settlement_policy(self) -> SettlementPolicy:
        return SettlementPolicy(
            max_attempts=self.settlement_max_attempts,
            initial_delay=self.settlement_initial_delay,
            max_delay=self.settlement_max_delay,
            settle_on_error=self.settle_on_error,
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> GateConfig:
        """Load configuration from environment variables.

        The payee comes from ``PAY_TO_ADDRESS`` or is derived from
        ``SERVICE_PRIVATE_KEY``. All problems are reported together.

        Raises:
            ConfigError: one or more variables are missing or invalid.
        """
        env = os.environ if environ is None else environ
        issues: list[str] = []

        def get(name: str) -> str | None:
            value = env.get(name)
            return value.strip() if value and value.strip() else None

        pay_to = get("PAY_TO_ADDRESS")
        private_key = get("SERVICE_PRIVATE_KEY")
        if pay_to is not None:
            if not is_address(pay_to):
                issues.append("PAY_TO_ADDRESS: must be a valid EVM address")
            else:
                pay_to = to_checksum_address(pay_to)
        elif private_key is not None:
            if not _PRIVATE_KEY_RE.match(private_key):
                issues.append(
                    "SERVICE_PRIVATE_KEY: must be a 32-byte 0x-prefixed hex string"
                )
            else:
                pay_to = Account.from_key(private_key).address
        else:
            issues.append("SERVICE_PRIVATE_KEY: required when PAY_TO_ADDRESS is unset")

        network = get("NETWORK") or DEFAULT_NETWORK
        if network not in ENV_NETWORKS:
            issues.append(f"NETWORK: must be one of {', '.join(sorted(ENV_NETWORKS))}")

        allowed_origin = get("ALLOWED_ORIGIN")
        if allowed_origin is not None:
            parsed = urlparse(allowed_origin)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                issues.append("ALLOWED_ORIGIN: must be a URL")

        debt_ttl: float | None = None
        raw_ttl = get("DEBT_TTL_SECS")
        if raw_ttl is not None:
            try:
                debt_ttl = float(raw_ttl)
            except ValueError:
                issues.append("DEBT_TTL_SECS: must be a number")
            else:
                if debt_ttl <= 0:
                    issues.append("DEBT_TTL_SECS: must be positive")

        key_id = get("FACILITATOR_KEY_ID")
        key_secret = get("FACILITATOR_KEY_SECRET")
        if (key_id is None) != (key_secret is None):
            issues.append(
                "FACILITATOR_KEY_ID/FACILITATOR_KEY_SECRET: set both or neither"
            )

        if issues:
            raise ConfigError(f"Invalid environment configuration: {'; '.join(issues)}")

        return cls(
            pay_to=pay_to or "",
            facilitator_url=(get("X402_FACILITATOR_URL") or DEFAULT_FACILITATOR_URL).rstrip("/"),
            network=network,
            default_price=get("X402_PRICE") or DEFAULT_PRICE,
            allowed_origin=allowed_origin,
            settle_on_error=(get("SETTLE_ON_ERROR") or "").lower() in _TRUTHY,
            facilitator_key_id=key_id,
            facilitator_key_secret=key_secret,
            upstream_api_key=get("OPENROUTER_API_KEY"),
            debt_ttl_secs=debt_ttl,
        )
