"""CORS helpers for browser callers of gated endpoints."""

from __future__ import annotations

from urllib.parse import urlparse

import httpx

from x402gate.constants import EXPOSE_HEADERS_HEADER, PAYMENT_RESPONSE_HEADER

ALLOWED_METHODS = "GET,POST,OPTIONS"
DEFAULT_ALLOWED_HEADERS = "Content-Type,Authorization,X-Requested-With,X-PAYMENT"
MAX_AGE_SECS = 86400

_LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1", "[::1]", "::1"})


def _is_local_origin(origin: str) -> bool:
    try:
        parsed = urlparse(origin)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and parsed.hostname in _LOCAL_HOSTS


def resolve_allowed_origin(request: httpx.Request, allowed_origin: str | None) -> str:
    """Mirror local dev origins and the configured origin; otherwise fall back."""
    origin = request.headers.get("origin")
    if origin and (_is_local_origin(origin) or origin == allowed_origin):
        return origin
    return allowed_origin or "*"


def apply_cors_headers(
    request: httpx.Request,
    response: httpx.Response,
    allowed_origin: str | None = None,
) -> httpx.Response:
    """Set the CORS response headers in place and return ``response``."""
    headers = response.headers
    headers["Access-Control-Allow-Origin"] = resolve_allowed_origin(request, allowed_origin)
    headers["Access-Control-Allow-Methods"] = ALLOWED_METHODS
    headers["Access-Control-Allow-Headers"] = request.headers.get(
        "access-control-request-headers", DEFAULT_ALLOWED_HEADERS
    )
    headers["Access-Control-Max-Age"] = str(MAX_AGE_SECS)
    vary = headers.get("Vary")
    if not vary:
        headers["Vary"] = "Origin"
    elif "origin" not in [v.strip().lower() for v in vary.split(",")]:
        headers["Vary"] = f"{vary}, Origin"
    expose_payment_response_header(headers)
    return response


def preflight_response(request: httpx.Request, allowed_origin: str | None = None) -> httpx.Response:
    """204 answer to an OPTIONS preflight."""
    return apply_cors_headers(request, httpx.Response(204), allowed_origin)


def expose_payment_response_header(headers: httpx.Headers) -> None:
    """Make sure browsers may read ``X-PAYMENT-RESPONSE``."""
    existing = headers.get(EXPOSE_HEADERS_HEADER)
    if not existing:
        headers[EXPOSE_HEADERS_HEADER] = PAYMENT_RESPONSE_HEADER
        return
    names = [name.strip().lower() for name in existing.split(",")]
    if PAYMENT_RESPONSE_HEADER.lower() not in names:
        headers[EXPOSE_HEADERS_HEADER] = f"{existing}, {PAYMENT_RESPONSE_HEADER}"
