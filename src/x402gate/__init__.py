"""x402-gate: pay-per-call gating with x402 micropayments.

Gates HTTP endpoints and MCP tools behind verified, settled USDC payments.
"""

__version__ = "0.1.0"

from x402gate.config import ConfigError, GateConfig
from x402gate.codec import decode_payment, encode_payment_response, decode_payment_response
from x402gate.errors import (
    GateError,
    ConfigurationError,
    PaymentRequiredError,
    SettlementError,
    ServiceUnavailableError,
)
from x402gate.facilitator import Facilitator
from x402gate.facilitator_client import FacilitatorClient, FacilitatorError
from x402gate.gate import PaymentGate, GateOptions, PricingContext, SettlementOutcome
from x402gate.models import (
    PaymentPayload,
    PaymentRequirement,
    RequirementConfig,
    SettlementResult,
    VerificationResult,
)
from x402gate.debt_ledger import DebtLedger, DeferredPricing
from x402gate.debt_store import DebtStore, InMemoryDebtStore
from x402gate.paid_tools import PaidToolServer
from x402gate.proxy import PaidProxy, UpstreamProxy
from x402gate.settlement import SettlementPolicy

__all__ = [
    "ConfigError",
    "GateConfig",
    "decode_payment",
    "encode_payment_response",
    "decode_payment_response",
    "GateError",
    "ConfigurationError",
    "PaymentRequiredError",
    "SettlementError",
    "ServiceUnavailableError",
    "Facilitator",
    "FacilitatorClient",
    "FacilitatorError",
    "PaymentGate",
    "GateOptions",
    "PricingContext",
    "SettlementOutcome",
    "PaymentPayload",
    "PaymentRequirement",
    "RequirementConfig",
    "SettlementResult",
    "VerificationResult",
    "DebtLedger",
    "DeferredPricing",
    "DebtStore",
    "InMemoryDebtStore",
    "PaidToolServer",
    "PaidProxy",
    "UpstreamProxy",
    "SettlementPolicy",
]
