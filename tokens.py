"""Signed, time-bounded bearer tokens.

Wire form is ``base64url(payload) + "." + base64url(hmac_sha256(payload))``
where the payload is compact JSON ``{"sub", "exp", "nonce"}`` and ``exp`` is
an absolute expiry in epoch milliseconds. Nothing is stored server-side, so
logging out is just the client discarding its token.
"""
import base64
import binascii
import hashlib
import hmac
import json
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Optional


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    expires_at: int


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(segment: str) -> bytes:
    padding = "=" * (-len(segment) % 4)
    return base64.b64decode(segment + padding, altchars=b"-_", validate=True)


class TokenService:
    def __init__(
        self,
        secret: str,
        ttl_seconds: int,
        clock: Callable[[], float] = time.time,
    ):
        self._key = secret.encode("utf-8")
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def _sign(self, payload: bytes) -> bytes:
        return hmac.new(self._key, payload, hashlib.sha256).digest()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def issue(self, user_id: str) -> str:
        payload = json.dumps(
            {
                "sub": user_id,
                "exp": self._now_ms() + self.ttl_seconds * 1000,
                "nonce": secrets.token_urlsafe(12),
            },
            separators=(",", ":"),
        ).encode("utf-8")
        return f"{_b64url_encode(payload)}.{_b64url_encode(self._sign(payload))}"

    def verify(self, token: Optional[str]) -> Optional[TokenClaims]:
        """Return the claims of a valid token, or None for any failure."""
        if not token:
            return None
        parts = token.split(".")
        if len(parts) != 2 or not all(parts):
            return None
        payload_b64, signature_b64 = parts
        try:
            payload = _b64url_decode(payload_b64)
            signature = _b64url_decode(signature_b64)
        except (binascii.Error, ValueError):
            return None
        # Reject non-canonical encodings that decode to the same bytes
        if _b64url_encode(signature) != signature_b64:
            return None

        expected = self._sign(payload)
        if len(signature) != len(expected):
            return None
        if not hmac.compare_digest(signature, expected):
            return None

        try:
            claims = json.loads(payload)
            user_id = claims["sub"]
            expires_at = int(claims["exp"])
        except (ValueError, KeyError, TypeError):
            return None
        if not isinstance(user_id, str) or not user_id:
            return None
        if self._now_ms() >= expires_at:
            return None
        return TokenClaims(user_id=user_id, expires_at=expires_at)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Pull the token out of an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    scheme, _, value = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return value.strip() or None
