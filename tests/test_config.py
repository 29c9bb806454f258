"""Tests for GateConfig and environment loading."""

import pytest
from eth_account import Account
from eth_utils import to_checksum_address

from x402gate.config import ConfigError, GateConfig
from x402gate.gate import PaymentGate
from x402gate.facilitator_client import FacilitatorClient

PRIVATE_KEY = "0x" + "11" * 32
PAY_TO = "0x" + "ab" * 20


class TestGateConfig:
    def test_defaults(self) -> None:
        config = GateConfig(pay_to=PAY_TO)
        assert config.facilitator_url == "https://x402.org/facilitator"
        assert config.network == "base-sepolia"
        assert config.default_price == "$0.01"
        assert config.settle_on_error is False

    def test_frozen(self) -> None:
        config = GateConfig(pay_to=PAY_TO)
        with pytest.raises(AttributeError):
            config.network = "base"  # type: ignore[misc]

    def test_settlement_policy(self) -> None:
        policy = GateConfig(pay_to=PAY_TO, settlement_max_attempts=5, settle_on_error=True).settlement_policy()
        assert policy.max_attempts == 5
        assert policy.initial_delay == 0.15
        assert policy.max_delay == 1.0
        assert policy.settle_on_error is True


class TestFromEnv:
    def test_private_key_derives_pay_to(self) -> None:
        config = GateConfig.from_env({"SERVICE_PRIVATE_KEY": PRIVATE_KEY})
        assert config.pay_to == Account.from_key(PRIVATE_KEY).address
        assert config.network == "base-sepolia"

    def test_pay_to_address_checksummed(self) -> None:
        config = GateConfig.from_env({"PAY_TO_ADDRESS": PAY_TO})
        assert config.pay_to == to_checksum_address(PAY_TO)

    def test_full(self) -> None:
        config = GateConfig.from_env(
            {
                "SERVICE_PRIVATE_KEY": PRIVATE_KEY,
                "NETWORK": "base",
                "ALLOWED_ORIGIN": "https://app.example.com",
                "OPENROUTER_API_KEY": "sk-or-123",
                "X402_FACILITATOR_URL": "https://facilitator.example.com/",
                "X402_PRICE": "$0.02",
                "SETTLE_ON_ERROR": "true",
                "DEBT_TTL_SECS": "3600",
            }
        )
        assert config.network == "base"
        assert config.allowed_origin == "https://app.example.com"
        assert config.upstream_api_key == "sk-or-123"
        assert config.facilitator_url == "https://facilitator.example.com"
        assert config.default_price == "$0.02"
        assert config.settle_on_error is True
        assert config.debt_ttl_secs == 3600.0

    def test_missing_payee(self) -> None:
        with pytest.raises(ConfigError, match="SERVICE_PRIVATE_KEY"):
            GateConfig.from_env({})

    def test_bad_private_key(self) -> None:
        with pytest.raises(ConfigError, match="32-byte 0x-prefixed hex"):
            GateConfig.from_env({"SERVICE_PRIVATE_KEY": "0x1234"})

    def test_bad_network(self) -> None:
        with pytest.raises(ConfigError, match="NETWORK"):
            GateConfig.from_env({"SERVICE_PRIVATE_KEY": PRIVATE_KEY, "NETWORK": "polygon"})

    def test_all_issues_reported(self) -> None:
        with pytest.raises(ConfigError) as exc_info:
            GateConfig.from_env(
                {
                    "PAY_TO_ADDRESS": "nope",
                    "NETWORK": "mainnet",
                    "ALLOWED_ORIGIN": "not a url",
                    "DEBT_TTL_SECS": "-5",
                    "FACILITATOR_KEY_ID": "only-id",
                }
            )
        message = str(exc_info.value)
        assert message.startswith("Invalid environment configuration: ")
        for name in ("PAY_TO_ADDRESS", "NETWORK", "ALLOWED_ORIGIN", "DEBT_TTL_SECS", "FACILITATOR_KEY_ID"):
            assert name in message

    def test_blank_values_ignored(self) -> None:
        config = GateConfig.from_env({"SERVICE_PRIVATE_KEY": PRIVATE_KEY, "NETWORK": "  "})
        assert config.network == "base-sepolia"


class TestPaymentGateFromConfig:
    def test_wires_facilitator_client(self) -> None:
        config = GateConfig(pay_to=PAY_TO, facilitator_url="https://f.example.com", settlement_max_attempts=4)
        gate = PaymentGate.from_config(config)
        facilitator = gate.settlement._facilitator
        assert isinstance(facilitator, FacilitatorClient)
        assert facilitator.url == "https://f.example.com"
        assert gate.settlement.policy.max_attempts == 4
