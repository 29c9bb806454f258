"""Tests for CORS helpers."""

import httpx

from x402gate.cors import (
    apply_cors_headers,
    expose_payment_response_header,
    preflight_response,
    resolve_allowed_origin,
)


def _request(origin: str | None = None, **headers: str) -> httpx.Request:
    if origin is not None:
        headers["origin"] = origin
    return httpx.Request("POST", "https://api.example.com/x", headers=headers)


class TestResolveAllowedOrigin:
    def test_localhost_mirrored(self) -> None:
        assert resolve_allowed_origin(_request("http://localhost:3000"), None) == "http://localhost:3000"

    def test_loopback_mirrored(self) -> None:
        assert resolve_allowed_origin(_request("http://127.0.0.1:5173"), "https://app.example.com") == "http://127.0.0.1:5173"

    def test_configured_origin_mirrored(self) -> None:
        origin = "https://app.example.com"
        assert resolve_allowed_origin(_request(origin), origin) == origin

    def test_foreign_origin_gets_configured(self) -> None:
        assert resolve_allowed_origin(_request("https://evil.example"), "https://app.example.com") == "https://app.example.com"

    def test_wildcard_fallback(self) -> None:
        assert resolve_allowed_origin(_request("https://evil.example"), None) == "*"

    def test_no_origin(self) -> None:
        assert resolve_allowed_origin(_request(), None) == "*"

    def test_localhost_lookalike_not_mirrored(self) -> None:
        assert resolve_allowed_origin(_request("http://localhost.evil.example"), None) == "*"


class TestApplyCorsHeaders:
    def test_headers_set(self) -> None:
        response = apply_cors_headers(_request("http://localhost:3000"), httpx.Response(200))
        assert response.headers["Access-Control-Allow-Origin"] == "http://localhost:3000"
        assert response.headers["Access-Control-Allow-Methods"] == "GET,POST,OPTIONS"
        assert response.headers["Access-Control-Max-Age"] == "86400"
        assert response.headers["Vary"] == "Origin"
        assert response.headers["Access-Control-Expose-Headers"] == "X-PAYMENT-RESPONSE"

    def test_echoes_requested_headers(self) -> None:
        request = _request(**{"access-control-request-headers": "x-payment, content-type"})
        response = apply_cors_headers(request, httpx.Response(200))
        assert response.headers["Access-Control-Allow-Headers"] == "x-payment, content-type"

    def test_default_allowed_headers_include_payment(self) -> None:
        response = apply_cors_headers(_request(), httpx.Response(200))
        assert "X-PAYMENT" in response.headers["Access-Control-Allow-Headers"]

    def test_vary_appended(self) -> None:
        response = httpx.Response(200, headers={"Vary": "Accept-Encoding"})
        apply_cors_headers(_request(), response)
        assert response.headers["Vary"] == "Accept-Encoding, Origin"

    def test_vary_not_duplicated(self) -> None:
        response = httpx.Response(200, headers={"Vary": "origin"})
        apply_cors_headers(_request(), response)
        assert response.headers["Vary"] == "origin"


class TestPreflight:
    def test_204(self) -> None:
        response = preflight_response(_request("http://localhost:8080"))
        assert response.status_code == 204
        assert response.headers["Access-Control-Allow-Origin"] == "http://localhost:8080"


class TestExposePaymentResponseHeader:
    def test_sets_when_absent(self) -> None:
        headers = httpx.Headers()
        expose_payment_response_header(headers)
        assert headers["Access-Control-Expose-Headers"] == "X-PAYMENT-RESPONSE"

    def test_appends(self) -> None:
        headers = httpx.Headers({"Access-Control-Expose-Headers": "X-Request-Id"})
        expose_payment_response_header(headers)
        assert headers["Access-Control-Expose-Headers"] == "X-Request-Id, X-PAYMENT-RESPONSE"

    def test_case_insensitive_no_duplicate(self) -> None:
        headers = httpx.Headers({"Access-Control-Expose-Headers": "x-payment-response"})
        expose_payment_response_header(headers)
        assert headers["Access-Control-Expose-Headers"] == "x-payment-response"
