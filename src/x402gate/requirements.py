"""Payment requirement construction: price + network + payee -> requirement."""

from __future__ import annotations

import logging
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Callable

from eth_utils import is_address, to_checksum_address

from x402gate.constants import (
    DEFAULT_MAX_TIMEOUT_SECONDS,
    DEFAULT_MIME_TYPE,
    SUPPORTED_NETWORKS,
    USDC_DECIMALS,
    USDC_DEPLOYMENTS,
    USDC_EIP712_VERSION,
)
from x402gate.errors import ConfigurationError, PriceConversionError, UnsupportedNetworkError
from x402gate.models import AtomicAmount, PaymentRequirement, Price, RequirementConfig, TokenAmount

logger = logging.getLogger(__name__)

# (price, network) -> AtomicAmount; raises on failure.
PriceConverter = Callable[[Price, str], AtomicAmount]


# ---------------------------------------------------------------------------
# Price conversion
# ---------------------------------------------------------------------------


def parse_money(price: str | int | float | Decimal) -> Decimal:
    """Parse a USD amount such as ``"$0.01"``, ``"1,000"``, ``0.5``.

    Raises ValueError on non-numeric, non-finite or negative amounts.
    """
    if isinstance(price, bool):
        raise ValueError(f"invalid money amount: {price!r}")
    if isinstance(price, str):
        text = price.strip().replace(",", "")
        if text.startswith("$"):
            text = text[1:].strip()
        raw = text
    else:
        raw = str(price)
    try:
        amount = Decimal(raw)
    except InvalidOperation as e:
        raise ValueError(f"invalid money amount: {price!r}") from e
    if not amount.is_finite():
        raise ValueError(f"invalid money amount: {price!r}")
    if amount < 0:
        raise ValueError(f"money amount must be non-negative, got {price!r}")
    return amount


def process_price_to_atomic_amount(price: Price, network: str) -> AtomicAmount:
    """Default price converter: USD money is paid in the network's USDC.

    A ``TokenAmount`` is passed through unchanged. Money is scaled by the
    token's decimals and truncated to whole atomic units.
    """
    if isinstance(price, TokenAmount):
        try:
            atomic = int(price.amount)
        except ValueError as e:
            raise PriceConversionError(f"Invalid token amount: {price.amount!r}") from e
        if atomic < 0:
            raise PriceConversionError(f"Token amount must be non-negative, got {atomic}")
        if not is_address(price.asset.address):
            raise PriceConversionError(f"Invalid asset address: {price.asset.address!r}")
        return AtomicAmount(
            max_amount_required=str(atomic),
            asset_address=price.asset.address,
            eip712={
                "name": price.asset.eip712_name,
                "version": price.asset.eip712_version,
            },
        )

    deployment = USDC_DEPLOYMENTS.get(network)
    if deployment is None:
        raise PriceConversionError(f"No USDC asset known for network '{network}'")
    _chain_id, asset_address, eip712_name = deployment

    try:
        amount = parse_money(price)
    except ValueError as e:
        raise PriceConversionError(f"Invalid price: {e}") from e

    atomic = (amount * (Decimal(10) ** USDC_DECIMALS)).to_integral_value(rounding=ROUND_DOWN)
    return AtomicAmount(
        max_amount_required=str(int(atomic)),
        asset_address=asset_address,
        eip712={"name": eip712_name, "version": USDC_EIP712_VERSION},
    )


def atomic_to_usd(atomic: str | int, decimals: int = USDC_DECIMALS) -> Decimal:
    """Inverse of the money scaling, for logging and ledger display."""
    return Decimal(int(atomic)) / (Decimal(10) ** decimals)


# ---------------------------------------------------------------------------
# Requirement builder
# ---------------------------------------------------------------------------


def build_requirement(
    config: RequirementConfig,
    *,
    resource: str,
    method: str = "GET",
    converter: PriceConverter = process_price_to_atomic_amount,
) -> PaymentRequirement:
    """Build the single requirement a caller must satisfy for this call.

    Args:
        config: Price, network, payee and optional metadata.
        resource: The call's canonical URL; used unless ``config.resource``
            overrides it.
        method: The inbound HTTP method, recorded in the output schema.
        converter: ``(price, network) -> AtomicAmount``.

    Raises:
        UnsupportedNetworkError: ``config.network`` is not a supported network.
        PriceConversionError: The converter could not price the call.
        ConfigurationError: The payee is not a valid address.
    """
    if config.network not in SUPPORTED_NETWORKS:
        raise UnsupportedNetworkError(f"Unsupported network: {config.network}")

    if not config.pay_to or not is_address(config.pay_to):
        raise ConfigurationError(f"Invalid payTo address: {config.pay_to!r}")

    try:
        atomic = converter(config.price, config.network)
    except PriceConversionError:
        raise
    except Exception as e:
        raise PriceConversionError(f"Price conversion failed: {e}") from e

    input_schema = {
        "type": "http",
        "method": (config.method or method).upper(),
        "discoverable": config.discoverable,
        **(config.input_schema or {}),
    }

    requirement = PaymentRequirement(
        network=config.network,
        max_amount_required=atomic.max_amount_required,
        resource=config.resource or resource,
        description=config.description,
        mime_type=config.mime_type or DEFAULT_MIME_TYPE,
        pay_to=to_checksum_address(config.pay_to),
        max_timeout_seconds=(
            config.max_timeout_seconds
            if config.max_timeout_seconds is not None
            else DEFAULT_MAX_TIMEOUT_SECONDS
        ),
        asset=to_checksum_address(atomic.asset_address),
        output_schema={"input": input_schema, "output": config.output_schema},
        extra=dict(atomic.eip712),
    )
    logger.debug(
        "Built requirement for %s: %s atomic on %s.",
        requirement.resource,
        requirement.max_amount_required,
        requirement.network,
    )
    return requirement
