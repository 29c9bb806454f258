"""Paid MCP tools: the x402 gate for tool calls instead of HTTP requests.

The credential travels in the call's ``_meta["x402/payment"]`` and the
settlement evidence comes back in ``result["_meta"]["x402/payment-response"]``.
Failures are returned as MCP error results rather than HTTP statuses.

``PaidToolServer`` wraps the host's tool server and adds ``paid_tool``;
every other attribute is delegated to the wrapped server.
"""

from __future__ import annotations

import json
import logging
from dataclasses import fields, replace
from typing import Any, Awaitable, Callable, Protocol

from x402gate.constants import (
    DEFAULT_MAX_TIMEOUT_SECONDS,
    DEFAULT_MIME_TYPE,
    MCP_PAYMENT_META_KEY,
    MCP_PAYMENT_RESPONSE_META_KEY,
)
from x402gate.errors import (
    GateError,
    InvalidPaymentError,
    SettlementFailedError,
    VerificationTransportError,
)
from x402gate.gate import PaymentGate
from x402gate.models import ErrorMessages, Price, RequirementConfig

logger = logging.getLogger(__name__)

ToolResult = dict[str, Any]
ToolHandler = Callable[[dict[str, Any], dict[str, Any]], Awaitable[ToolResult]]

_MESSAGES = ErrorMessages(
    payment_required=f"_meta.{MCP_PAYMENT_META_KEY} is required",
    invalid_payment="Invalid payment",
)


class ToolServer(Protocol):
    """The part of an MCP server that ``PaidToolServer`` needs."""

    def tool(
        self,
        name: str,
        description: str,
        handler: ToolHandler,
        *,
        params_schema: dict[str, Any] | None = None,
        annotations: dict[str, Any] | None = None,
    ) -> Any: ...


def error_result(body: dict[str, Any]) -> ToolResult:
    return {
        "isError": True,
        "structuredContent": body,
        "content": [{"type": "text", "text": json.dumps(body)}],
    }


def _gate_error_result(error: GateError) -> ToolResult:
    body = error.to_body()
    if isinstance(error, VerificationTransportError):
        body["error"] = f"Verification failed: {error.detail}"
    elif isinstance(error, SettlementFailedError):
        body["error"] = f"Settlement failed: {error.message}"
    return error_result(body)


class PaidToolServer:
    """Tool server wrapper that registers tools behind x402 payment."""

    def __init__(
        self,
        server: ToolServer,
        gate: PaymentGate,
        *,
        pay_to: str,
        network: str,
    ) -> None:
        self._server = server
        self._gate = gate
        self.pay_to = pay_to
        self.network = network

    def __getattr__(self, name: str) -> Any:
        return getattr(self._server, name)

    def paid_tool(
        self,
        name: str,
        description: str,
        price: Price,
        handler: ToolHandler,
        *,
        params_schema: dict[str, Any] | None = None,
        annotations: dict[str, Any] | None = None,
        error_messages: ErrorMessages | None = None,
    ) -> Any:
        """Register ``handler`` as a tool that must be paid for per call.

        ``error_messages`` overrides the default rejection texts field by field.
        """
        messages = _MESSAGES
        if error_messages is not None:
            messages = replace(
                _MESSAGES,
                **{
                    f.name: getattr(error_messages, f.name)
                    for f in fields(error_messages)
                    if getattr(error_messages, f.name) is not None
                },
            )
        config = RequirementConfig(
            price=price,
            network=self.network,
            pay_to=self.pay_to,
            resource=f"mcp://tool/{name}",
            description=description,
            mime_type=DEFAULT_MIME_TYPE,
            max_timeout_seconds=DEFAULT_MAX_TIMEOUT_SECONDS,
            error_messages=messages,
        )

        async def paid_handler(args: dict[str, Any], meta: dict[str, Any] | None = None) -> ToolResult:
            return await self._call(name, config, handler, args, meta or {})

        return self._server.tool(
            name,
            description,
            paid_handler,
            params_schema=params_schema,
            annotations={**(annotations or {}), "paymentHint": True},
        )

    async def _call(
        self,
        name: str,
        config: RequirementConfig,
        handler: ToolHandler,
        args: dict[str, Any],
        meta: dict[str, Any],
    ) -> ToolResult:
        logger.info("Paid tool %s called.", name)
        raw = meta.get(MCP_PAYMENT_META_KEY)
        resource = config.resource or name

        try:
            if raw is not None and not isinstance(raw, str):
                requirement = self._gate.build_requirement(config, resource=resource)
                raise InvalidPaymentError(
                    config.error_messages.invalid_payment or "Invalid payment",
                    accepts=[requirement],
                )
            auth = await self._gate.authorize(raw, config, resource=resource)
        except GateError as e:
            logger.warning("Paid tool %s rejected: %s.", name, e.message)
            return _gate_error_result(e)

        failed = False
        try:
            result = await handler(args, meta)
            failed = bool(isinstance(result, dict) and result.get("isError"))
        except Exception as e:
            logger.exception("Paid tool %s raised.", name)
            failed = True
            result = {
                "isError": True,
                "content": [{"type": "text", "text": f"Tool execution failed: {e}"}],
            }

        try:
            settlement = await self._gate.settlement.settle(
                auth.verified.payment,
                auth.verified.requirement,
                accepts=auth.accepts,
                operation_failed=failed,
                messages=config.error_messages,
            )
        except GateError as e:
            return _gate_error_result(e)

        if settlement is not None and settlement.success:
            result.setdefault("_meta", {})[MCP_PAYMENT_RESPONSE_META_KEY] = {
                "success": True,
                "transaction": settlement.transaction,
                "network": settlement.network,
                "payer": settlement.payer,
            }
        return result
