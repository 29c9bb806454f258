"""Constants for x402 payment gating."""

from enum import IntEnum


X402_VERSION = 1
SCHEME_EXACT = "exact"

PAYMENT_HEADER = "X-PAYMENT"
PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"
EXPOSE_HEADERS_HEADER = "Access-Control-Expose-Headers"

# MCP tool calls carry the payment in the request _meta, not a header.
MCP_PAYMENT_META_KEY = "x402/payment"
MCP_PAYMENT_RESPONSE_META_KEY = "x402/payment-response"

DEFAULT_FACILITATOR_URL = "https://x402.org/facilitator"
DEFAULT_NETWORK = "base-sepolia"
DEFAULT_PRICE = "$0.01"
DEFAULT_MIME_TYPE = "application/json"
DEFAULT_MAX_TIMEOUT_SECONDS = 300

SETTLEMENT_MAX_ATTEMPTS = 3
SETTLEMENT_INITIAL_DELAY = 0.15  # seconds before the second attempt
SETTLEMENT_MAX_DELAY = 1.0  # backoff ceiling


class GateStatus(IntEnum):
    """HTTP status codes produced by the gate itself."""

    OK = 200
    PAYMENT_REQUIRED = 402
    INTERNAL_ERROR = 500
    BAD_GATEWAY = 502


# ---------------------------------------------------------------------------
# USDC deployments on supported EVM networks
# ---------------------------------------------------------------------------

USDC_DECIMALS = 6

# network -> (chain id, USDC address, EIP-712 domain name)
USDC_DEPLOYMENTS: dict[str, tuple[int, str, str]] = {
    "base": (8453, "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", "USD Coin"),
    "base-sepolia": (84532, "0x036CbD53842c5426634e7929541eC2318f3dCF7e", "USDC"),
    "avalanche": (43114, "0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E", "USD Coin"),
    "avalanche-fuji": (43113, "0x5425890298aed601595a70AB815c96711a31Bc65", "USD Coin"),
    "polygon": (137, "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359", "USD Coin"),
    "polygon-amoy": (80002, "0x41E94Eb019C0762f9Bfcf9Fb1E58725BfB0e7582", "USDC"),
}

USDC_EIP712_VERSION = "2"

SUPPORTED_NETWORKS: frozenset[str] = frozenset(USDC_DEPLOYMENTS)

# Networks accepted by GateConfig.from_env.
ENV_NETWORKS: frozenset[str] = frozenset({"base", "base-sepolia"})
