"""Tests for the facilitator HTTP client."""

import base64
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from x402gate.codec import decode_payment
from x402gate.facilitator import Facilitator
from x402gate.facilitator_client import (
    FacilitatorAuthError,
    FacilitatorClient,
    FacilitatorConnectionError,
    FacilitatorError,
    FacilitatorNotFoundError,
    FacilitatorServerError,
    FacilitatorTimeoutError,
    FacilitatorValidationError,
)
from x402gate.models import PaymentRequirement
from x402gate.settlement import extract_facilitator_status

PAYER = "0x" + "cd" * 20


def _payment():
    data = {
        "x402Version": 1,
        "scheme": "exact",
        "network": "base-sepolia",
        "payload": {
            "signature": "0xsig",
            "authorization": {
                "from": PAYER,
                "to": "0x" + "ab" * 20,
                "value": "10000",
                "validAfter": "0",
                "validBefore": "9999999999",
                "nonce": "0x01",
            },
        },
    }
    return decode_payment(base64.b64encode(json.dumps(data).encode()).decode())


def _requirement() -> PaymentRequirement:
    return PaymentRequirement(
        network="base-sepolia",
        max_amount_required="10000",
        resource="https://api.example.com/x",
        pay_to="0x" + "ab" * 20,
        asset="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
    )


def _client_with_response(status: int, body: object = None) -> FacilitatorClient:
    client = FacilitatorClient("https://facilitator.example.com/")
    client._client.request = AsyncMock(
        return_value=httpx.Response(status, json=body if body is not None else {})
    )
    return client


# ---------------------------------------------------------------------------
# Init
# ---------------------------------------------------------------------------


class TestFacilitatorClientInit:
    def test_trailing_slash_stripped(self) -> None:
        client = FacilitatorClient("https://facilitator.example.com/")
        assert client.url == "https://facilitator.example.com"

    def test_default_url(self) -> None:
        assert FacilitatorClient().url == "https://x402.org/facilitator"

    def test_timeout_configured(self) -> None:
        client = FacilitatorClient()
        assert client._client.timeout.connect == 5.0
        assert client._client.timeout.read == 30.0

    def test_implements_protocol(self) -> None:
        assert isinstance(FacilitatorClient(), Facilitator)


# ---------------------------------------------------------------------------
# verify / settle
# ---------------------------------------------------------------------------


class TestVerify:
    @pytest.mark.asyncio
    async def test_valid(self) -> None:
        client = _client_with_response(200, {"isValid": True, "payer": PAYER})
        result = await client.verify(_payment(), _requirement())
        assert result.is_valid is True
        assert result.payer == PAYER

    @pytest.mark.asyncio
    async def test_request_body(self) -> None:
        client = _client_with_response(200, {"isValid": True})
        await client.verify(_payment(), _requirement())
        args, kwargs = client._client.request.call_args
        assert args == ("POST", "/verify")
        body = kwargs["json"]
        assert body["x402Version"] == 1
        assert body["paymentPayload"]["payload"]["authorization"]["from"] == PAYER
        assert body["paymentRequirements"]["maxAmountRequired"] == "10000"

    @pytest.mark.asyncio
    async def test_invalid(self) -> None:
        client = _client_with_response(
            200, {"isValid": False, "invalidReason": "insufficient_funds"}
        )
        result = await client.verify(_payment(), _requirement())
        assert result.is_valid is False
        assert result.invalid_reason == "insufficient_funds"


class TestSettle:
    @pytest.mark.asyncio
    async def test_success(self) -> None:
        client = _client_with_response(
            200,
            {"success": True, "transaction": "0xtx", "network": "base-sepolia", "payer": PAYER},
        )
        result = await client.settle(_payment(), _requirement())
        assert result.success is True
        assert result.transaction == "0xtx"
        assert client._client.request.call_args.args == ("POST", "/settle")

    @pytest.mark.asyncio
    async def test_error_message_carries_status(self) -> None:
        client = _client_with_response(503)
        with pytest.raises(FacilitatorServerError) as exc_info:
            await client.settle(_payment(), _requirement())
        assert str(exc_info.value) == "Failed to settle payment: 503 Service Unavailable"
        assert exc_info.value.status_code == 503
        assert extract_facilitator_status(exc_info.value) == 503


class TestSupported:
    @pytest.mark.asyncio
    async def test_kinds(self) -> None:
        kinds = [{"x402Version": 1, "scheme": "exact", "network": "base"}]
        client = _client_with_response(200, {"kinds": kinds})
        assert await client.supported() == kinds


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


class TestErrorMapping:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "exc_cls"),
        [
            (400, FacilitatorValidationError),
            (401, FacilitatorAuthError),
            (403, FacilitatorAuthError),
            (404, FacilitatorNotFoundError),
            (422, FacilitatorValidationError),
            (500, FacilitatorServerError),
            (502, FacilitatorServerError),
            (409, FacilitatorError),
        ],
    )
    async def test_status_codes(self, status: int, exc_cls: type) -> None:
        client = _client_with_response(status)
        with pytest.raises(exc_cls) as exc_info:
            await client.verify(_payment(), _requirement())
        assert exc_info.value.status_code == status
        assert str(exc_info.value).startswith(f"Failed to verify payment: {status}")

    @pytest.mark.asyncio
    async def test_connect_error(self) -> None:
        client = FacilitatorClient()
        client._client.request = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(FacilitatorConnectionError) as exc_info:
            await client.settle(_payment(), _requirement())
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        client = FacilitatorClient()
        client._client.request = AsyncMock(side_effect=httpx.ReadTimeout("slow"))
        with pytest.raises(FacilitatorTimeoutError):
            await client.settle(_payment(), _requirement())


# ---------------------------------------------------------------------------
# Auth headers
# ---------------------------------------------------------------------------


class TestAuthHeaders:
    @pytest.mark.asyncio
    async def test_endpoint_headers_sent(self) -> None:
        auth = AsyncMock()
        auth.create_auth_headers = lambda: {
            "verify": {"Authorization": "Bearer v"},
            "settle": {"Authorization": "Bearer s"},
            "supported": {},
        }
        client = FacilitatorClient("https://f.example.com", auth=auth)
        client._client.request = AsyncMock(
            return_value=httpx.Response(200, json={"success": True, "network": "base"})
        )
        await client.settle(_payment(), _requirement())
        assert client._client.request.call_args.kwargs["headers"] == {
            "Authorization": "Bearer s"
        }

    @pytest.mark.asyncio
    async def test_no_auth_sends_no_headers(self) -> None:
        client = _client_with_response(200, {"isValid": True})
        await client.verify(_payment(), _requirement())
        assert client._client.request.call_args.kwargs["headers"] == {}


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_context_manager_closes(self) -> None:
        async with FacilitatorClient() as client:
            client._client.aclose = AsyncMock()
        client._client.aclose.assert_awaited_once()
