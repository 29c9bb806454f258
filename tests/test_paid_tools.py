"""Tests for paid MCP tools."""

import base64
import json
from unittest.mock import AsyncMock

import pytest

from x402gate.facilitator_client import FacilitatorServerError
from x402gate.gate import PaymentGate
from x402gate.models import ErrorMessages, SettlementResult, VerificationResult
from x402gate.paid_tools import PaidToolServer, error_result

PAY_TO = "0x" + "ab" * 20
PAYER = "0x" + "cd" * 20


class _FakeToolServer:
    """Records tool registrations like an MCP server would."""

    def __init__(self) -> None:
        self.tools: dict = {}
        self.name = "fake-server"

    def tool(self, name, description, handler, *, params_schema=None, annotations=None):
        self.tools[name] = {
            "description": description,
            "handler": handler,
            "params_schema": params_schema,
            "annotations": annotations,
        }
        return name


def _payment(network: str = "base-sepolia") -> str:
    data = {
        "scheme": "exact",
        "network": network,
        "payload": {
            "signature": "0xsig",
            "authorization": {
                "from": PAYER,
                "to": PAY_TO,
                "value": "1000",
                "validAfter": "0",
                "validBefore": "9999999999",
                "nonce": "0x01",
            },
        },
    }
    return base64.b64encode(json.dumps(data).encode()).decode()


def _mock_facilitator(valid: bool = True, settle=None):
    facilitator = AsyncMock()
    facilitator.verify = AsyncMock(
        return_value=VerificationResult(
            is_valid=valid, invalid_reason=None if valid else "insufficient_funds", payer=PAYER
        )
    )
    facilitator.settle = AsyncMock(
        side_effect=settle
        or [SettlementResult(success=True, network="base-sepolia", transaction="0xtx", payer=PAYER)]
    )
    return facilitator


def _server(facilitator, handler=None):
    async def no_sleep(delay: float) -> None:
        return None

    gate = PaymentGate(facilitator)
    gate.settlement._sleep = no_sleep
    base = _FakeToolServer()
    server = PaidToolServer(base, gate, pay_to=PAY_TO, network="base-sepolia")
    handler = handler or AsyncMock(
        return_value={"content": [{"type": "text", "text": "hello"}]}
    )
    server.paid_tool(
        "echo",
        "Echo a message",
        "$0.001",
        handler,
        params_schema={"message": {"type": "string"}},
        annotations={"readOnlyHint": True},
    )
    return base, handler


async def _call(base, meta=None):
    return await base.tools["echo"]["handler"]({"message": "hi"}, meta)


class TestRegistration:
    def test_payment_hint_added(self) -> None:
        base, _ = _server(_mock_facilitator())
        tool = base.tools["echo"]
        assert tool["annotations"] == {"readOnlyHint": True, "paymentHint": True}
        assert tool["params_schema"] == {"message": {"type": "string"}}
        assert tool["description"] == "Echo a message"

    def test_delegates_other_attributes(self) -> None:
        base = _FakeToolServer()
        server = PaidToolServer(base, PaymentGate(AsyncMock()), pay_to=PAY_TO, network="base")
        assert server.name == "fake-server"
        server.tool("free", "Free tool", AsyncMock())
        assert "free" in base.tools


class TestPaidToolRejections:
    @pytest.mark.asyncio
    async def test_missing_payment(self) -> None:
        base, handler = _server(_mock_facilitator())
        result = await _call(base, {})
        assert result["isError"] is True
        body = result["structuredContent"]
        assert body["error"] == "_meta.x402/payment is required"
        accepted = body["accepts"][0]
        assert accepted["resource"] == "mcp://tool/echo"
        assert accepted["maxAmountRequired"] == "1000"
        assert accepted["maxTimeoutSeconds"] == 300
        assert accepted["description"] == "Echo a message"
        assert json.loads(result["content"][0]["text"]) == body
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_none_meta(self) -> None:
        base, _ = _server(_mock_facilitator())
        result = await _call(base, None)
        assert result["structuredContent"]["error"] == "_meta.x402/payment is required"

    @pytest.mark.asyncio
    async def test_non_string_payment(self) -> None:
        facilitator = _mock_facilitator()
        base, handler = _server(facilitator)
        result = await _call(base, {"x402/payment": {"scheme": "exact"}})
        assert result["structuredContent"]["error"] == "Invalid payment"
        assert len(result["structuredContent"]["accepts"]) == 1
        facilitator.verify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_undecodable_payment(self) -> None:
        base, handler = _server(_mock_facilitator())
        result = await _call(base, {"x402/payment": "not a payment"})
        assert result["structuredContent"]["error"] == "Invalid payment"
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_verification_rejected(self) -> None:
        base, handler = _server(_mock_facilitator(valid=False))
        result = await _call(base, {"x402/payment": _payment()})
        body = result["structuredContent"]
        assert body["error"] == "insufficient_funds"
        assert body["payer"] == PAYER
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_verification_transport_failure(self) -> None:
        facilitator = _mock_facilitator()
        facilitator.verify = AsyncMock(side_effect=RuntimeError("timeout"))
        base, _ = _server(facilitator)
        result = await _call(base, {"x402/payment": _payment()})
        assert result["structuredContent"]["error"] == "Verification failed: timeout"


class TestPaidToolExecution:
    @pytest.mark.asyncio
    async def test_success_attaches_payment_response(self) -> None:
        facilitator = _mock_facilitator()
        base, handler = _server(facilitator)
        result = await _call(base, {"x402/payment": _payment()})
        assert result["content"][0]["text"] == "hello"
        assert result["_meta"]["x402/payment-response"] == {
            "success": True,
            "transaction": "0xtx",
            "network": "base-sepolia",
            "payer": PAYER,
        }
        handler.assert_awaited_once()
        assert handler.call_args.args[0] == {"message": "hi"}

    @pytest.mark.asyncio
    async def test_error_result_skips_settlement(self) -> None:
        facilitator = _mock_facilitator()
        handler = AsyncMock(return_value=error_result({"error": "bad input"}))
        base, _ = _server(facilitator, handler)
        result = await _call(base, {"x402/payment": _payment()})
        assert result["isError"] is True
        assert "_meta" not in result
        facilitator.settle.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_handler_exception(self) -> None:
        facilitator = _mock_facilitator()
        handler = AsyncMock(side_effect=ValueError("kaboom"))
        base, _ = _server(facilitator, handler)
        result = await _call(base, {"x402/payment": _payment()})
        assert result == {
            "isError": True,
            "content": [{"type": "text", "text": "Tool execution failed: kaboom"}],
        }
        facilitator.settle.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_settlement_failure(self) -> None:
        err = RuntimeError("Failed to settle payment: 400 Bad Request")
        facilitator = _mock_facilitator(settle=[err, err, err])
        base, _ = _server(facilitator)
        result = await _call(base, {"x402/payment": _payment()})
        body = result["structuredContent"]
        assert body["error"].startswith("Settlement failed: ")
        assert body["accepts"][0]["resource"] == "mcp://tool/echo"

    @pytest.mark.asyncio
    async def test_settlement_service_down(self) -> None:
        err = FacilitatorServerError("Failed to settle payment: 503", status_code=503)
        facilitator = _mock_facilitator(settle=[err, err, err])
        base, _ = _server(facilitator)
        result = await _call(base, {"x402/payment": _payment()})
        assert result["isError"] is True
        assert result["structuredContent"]["retryable"] is True
        assert facilitator.settle.await_count == 3

    @pytest.mark.asyncio
    async def test_settlement_failure_uses_tool_messages(self) -> None:
        err = RuntimeError("Failed to settle payment: 400 Bad Request")
        facilitator = _mock_facilitator(settle=[err, err, err])
        gate = PaymentGate(facilitator)

        async def no_sleep(delay: float) -> None:
            return None

        gate.settlement._sleep = no_sleep
        base = _FakeToolServer()
        server = PaidToolServer(base, gate, pay_to=PAY_TO, network="base-sepolia")
        server.paid_tool(
            "echo",
            "Echo a message",
            "$0.001",
            AsyncMock(return_value={"content": []}),
            error_messages=ErrorMessages(settlement_failed="Payment could not be captured"),
        )

        result = await _call(base, {"x402/payment": _payment()})
        assert result["structuredContent"]["error"] == (
            "Settlement failed: Payment could not be captured"
        )

        missing = await _call(base, {})
        assert missing["structuredContent"]["error"] == "_meta.x402/payment is required"
