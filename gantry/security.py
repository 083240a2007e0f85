"""Credential helpers used by the built-in guards: HS256 JWT and API keys."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from typing import Any, Dict, Mapping

# token -> its ``exp`` claim (``None`` when the token never expires)
_revoked_tokens: Dict[str, float | None] = {}


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


def _unb64(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def create_jwt(payload: Dict[str, Any], secret: str, *, expires_in: float | None = None) -> str:
    """Encode *payload* as a JWT using HS256."""

    header = {"alg": "HS256", "typ": "JWT"}
    claims = dict(payload)
    if expires_in is not None:
        claims["exp"] = int(time.time() + expires_in)

    def encode(obj: Dict[str, Any]) -> str:
        return _b64(json.dumps(obj, separators=(",", ":")).encode())

    signing_input = f"{encode(header)}.{encode(claims)}".encode()
    signature = hmac.new(secret.encode(), signing_input, hashlib.sha256).digest()
    return f"{signing_input.decode()}.{_b64(signature)}"


def decode_jwt(token: str, secret: str) -> Dict[str, Any] | None:
    """Decode *token* and return payload if valid, unexpired and not revoked."""

    if token in _revoked_tokens:
        return None
    try:
        header_b64, payload_b64, sig_b64 = token.split(".")
        header = json.loads(_unb64(header_b64))
        if header.get("alg") != "HS256":
            return None
        signing_input = f"{header_b64}.{payload_b64}".encode()
        expected = hmac.new(secret.encode(), signing_input, hashlib.sha256).digest()
        if not hmac.compare_digest(expected, _unb64(sig_b64)):
            return None
        payload = json.loads(_unb64(payload_b64))
    except (ValueError, TypeError, AttributeError):
        # malformed tokens are rejected without detail
        return None
    if not isinstance(payload, dict):
        return None
    exp = payload.get("exp")
    if exp is not None and float(exp) <= time.time():
        return None
    return payload


def _unverified_exp(token: str) -> float | None:
    try:
        payload = json.loads(_unb64(token.split(".")[1]))
        return float(payload["exp"])
    except (IndexError, KeyError, ValueError, TypeError):
        return None


def _prune_revoked(now: float) -> None:
    expired = [t for t, exp in _revoked_tokens.items() if exp is not None and exp <= now]
    for token in expired:
        del _revoked_tokens[token]


def revoke_jwt(token: str) -> None:
    """Reject *token* on every later :func:`decode_jwt` call.

    Entries whose ``exp`` has passed are dropped, since decoding rejects
    them anyway.
    """

    _prune_revoked(time.time())
    _revoked_tokens[token] = _unverified_exp(token)


def get_bearer_token(header: str | None) -> str | None:
    """Return Bearer token from Authorization *header* if present."""

    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def get_api_key(
    headers: Mapping[str, str],
    query: Mapping[str, Any],
    cookies: Mapping[str, str],
    name: str = "api_key",
) -> str | None:
    """Fetch API key named *name* from headers, query, or cookies."""

    key = headers.get("x-api-key")
    if not key:
        auth = headers.get("authorization", "")
        if auth.startswith("Key "):
            key = auth[4:]
    if not key:
        value = query.get(name)
        key = value if isinstance(value, str) else None
    if not key:
        key = cookies.get(name)
    return key


__all__ = [
    "create_jwt",
    "decode_jwt",
    "get_api_key",
    "get_bearer_token",
    "revoke_jwt",
]
