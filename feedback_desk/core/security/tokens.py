from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from typing import Any, Dict


class TokenError(ValueError):
    """Raised when a session token cannot be trusted."""


# -------- HS256 session tokens --------
def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("utf-8")


def _b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _sign(secret: str, signing_input: bytes) -> str:
    return _b64url(hmac.new(secret.encode("utf-8"), signing_input, hashlib.sha256).digest())


def issue_token(user_id: str, username: str, role: str, ttl_min: int, *, secret: str) -> str:
    now = int(time.time())
    header = {"alg": "HS256", "typ": "JWT"}
    payload: Dict[str, Any] = {
        "sub": str(user_id),
        "username": username,
        "role": role,
        "iat": now,
        "exp": now + max(1, int(ttl_min)) * 60,
    }
    header_b = _b64url(json.dumps(header, separators=(",", ":")).encode("utf-8"))
    payload_b = _b64url(json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8"))
    sig = _sign(secret, f"{header_b}.{payload_b}".encode("utf-8"))
    return f"{header_b}.{payload_b}.{sig}"


def decode_token(token: str, *, secret: str) -> Dict[str, Any]:
    parts = token.split(".")
    if len(parts) != 3:
        raise TokenError("invalid_token")
    header_b64, payload_b64, sig_b64 = parts
    expected_sig = _sign(secret, f"{header_b64}.{payload_b64}".encode("utf-8"))
    if not hmac.compare_digest(expected_sig.encode("ascii"), sig_b64.encode("utf-8")):
        raise TokenError("invalid_signature")
    try:
        header = json.loads(_b64url_decode(header_b64).decode("utf-8"))
        payload = json.loads(_b64url_decode(payload_b64).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as exc:
        raise TokenError("invalid_payload") from exc
    if not isinstance(header, dict) or header.get("alg") != "HS256":
        raise TokenError("unsupported_alg")
    if not isinstance(payload, dict) or not payload.get("sub"):
        raise TokenError("invalid_payload")
    exp = payload.get("exp")
    if not isinstance(exp, int) or exp < int(time.time()):
        raise TokenError("token_expired")
    return payload


def bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer ...`` header value."""
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    token = authorization.split(" ", 1)[1].strip()
    return token or None
