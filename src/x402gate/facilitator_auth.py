"""Facilitator authentication headers.

Public facilitators need no auth. Hosted facilitators that authenticate
API keys expect a short-lived Ed25519-signed JWT per request, scoped to
the exact ``METHOD host/path`` being called.
"""

from __future__ import annotations

import base64
import binascii
import secrets
import time
from typing import Protocol, runtime_checkable
from urllib.parse import urlparse

_TOKEN_TTL_SECS = 120
_ISSUER = "cdp"


class FacilitatorAuthConfigError(Exception):
    """Raised when facilitator credentials cannot be loaded."""


@runtime_checkable
class FacilitatorAuth(Protocol):
    def create_auth_headers(self) -> dict[str, dict[str, str]]:
        """Return headers keyed by endpoint: verify, settle, supported."""
        ...


class NoFacilitatorAuth:
    """Auth for public facilitators: no headers at all."""

    def create_auth_headers(self) -> dict[str, dict[str, str]]:
        return {"verify": {}, "settle": {}, "supported": {}}


def load_ed25519_private_key(raw: str):
    """Accept a PEM private key or bare base64 (32-byte seed or 64-byte seed+pub).

    Raises FacilitatorAuthConfigError on anything else.
    """
    from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
    from cryptography.hazmat.primitives.serialization import load_pem_private_key

    stripped = raw.strip()
    if stripped.startswith("-----"):
        try:
            key = load_pem_private_key(stripped.encode(), password=None)
        except (ValueError, TypeError) as e:
            raise FacilitatorAuthConfigError(f"Invalid PEM private key: {e}") from e
        if not isinstance(key, Ed25519PrivateKey):
            raise FacilitatorAuthConfigError("PEM private key is not Ed25519")
        return key

    try:
        decoded = base64.b64decode(stripped, validate=True)
    except (binascii.Error, ValueError) as e:
        raise FacilitatorAuthConfigError(f"Private key is not base64: {e}") from e
    if len(decoded) not in (32, 64):
        raise FacilitatorAuthConfigError(
            f"Ed25519 key must be 32 or 64 bytes, got {len(decoded)}"
        )
    return Ed25519PrivateKey.from_private_bytes(decoded[:32])


class Ed25519JwtAuth:
    """Per-request bearer JWTs signed with an Ed25519 API key.

    A fresh token is minted for each endpoint every time headers are
    requested, so callers should ask for headers per request.
    """

    def __init__(self, key_id: str, private_key: str, facilitator_url: str) -> None:
        self._key_id = key_id
        self._private_key = load_ed25519_private_key(private_key)
        parsed = urlparse(facilitator_url.rstrip("/"))
        self._host = parsed.netloc
        self._base_path = parsed.path

    def create_token(self, method: str, path: str) -> str:
        import jwt

        now = int(time.time())
        claims = {
            "sub": self._key_id,
            "iss": _ISSUER,
            "nbf": now,
            "exp": now + _TOKEN_TTL_SECS,
            "uris": [f"{method} {self._host}{self._base_path}{path}"],
        }
        headers = {"kid": self._key_id, "nonce": secrets.token_hex(16)}
        return jwt.encode(claims, self._private_key, algorithm="EdDSA", headers=headers)

    def create_auth_headers(self) -> dict[str, dict[str, str]]:
        return {
            "verify": {"Authorization": f"Bearer {self.create_token('POST', '/verify')}"},
            "settle": {"Authorization": f"Bearer {self.create_token('POST', '/settle')}"},
            "supported": {
                "Authorization": f"Bearer {self.create_token('GET', '/supported')}"
            },
        }
