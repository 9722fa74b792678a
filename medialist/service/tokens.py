from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
import uuid
from typing import Any, Optional

from medialist.config import (
    ACCESS_TOKEN_TTL_SECONDS,
    REFRESH_TOKEN_TTL_SECONDS,
    Settings,
)
from medialist.logging import get_logger
from medialist.service.errors import InvalidTokenError, SigningError

logger = get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


class TokenService:
    """Issues and verifies HS256 access and refresh tokens.

    Access and refresh tokens are signed with separate secrets, so one kind
    can never be replayed as the other. Payloads carry only the user id
    (``sub``) plus registered claims. Any verification failure (malformed,
    bad signature, wrong kind, expired) surfaces as ``InvalidTokenError``
    without saying which.
    """

    def __init__(self, settings: Settings, *, clock=time.time) -> None:
        self.settings = settings
        self._clock = clock

    def _secret(self, kind: str) -> str:
        secret = (
            self.settings.jwt_access_secret
            if kind == ACCESS
            else self.settings.jwt_refresh_secret
        )
        if not secret:
            logger.error("jwt_secret_unavailable", kind=kind)
            raise SigningError("Unable to sign token")
        return secret

    def _sign(self, signing_input: str, secret: str) -> str:
        digest = hmac.new(secret.encode(), signing_input.encode(), hashlib.sha256).digest()
        return _encode_segment(digest)

    def _encode(self, user_id: str, kind: str, ttl_seconds: int) -> str:
        secret = self._secret(kind)
        now = int(self._clock())
        payload = {
            "iss": self.settings.jwt_issuer,
            "aud": self.settings.jwt_audience,
            "sub": user_id,
            "kind": kind,
            "jti": str(uuid.uuid4()),
            "iat": now,
            "exp": now + ttl_seconds,
        }
        header_enc = _encode_segment(
            json.dumps({"alg": "HS256", "typ": "JWT"}, separators=(",", ":")).encode()
        )
        payload_enc = _encode_segment(json.dumps(payload, separators=(",", ":")).encode())
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input, secret)}"

    def _decode(self, token: str, kind: str) -> dict[str, Any]:
        payload = self._decode_or_none(token, kind)
        if payload is None:
            raise InvalidTokenError("Invalid token")
        return payload

    def _decode_or_none(self, token: str, kind: str) -> Optional[dict[str, Any]]:
        secret = self._secret(kind)
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except (AttributeError, ValueError):
            return None
        try:
            header = json.loads(_decode_segment(header_b64))
        except (ValueError, TypeError):
            logger.warning("jwt_header_decode_failed")
            return None
        # Reject anything but HS256 to rule out algorithm confusion
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning("jwt_invalid_algorithm")
            return None
        expected = self._sign(f"{header_b64}.{payload_b64}", secret)
        if not sig_b64.isascii() or not hmac.compare_digest(expected, sig_b64):
            return None
        try:
            payload = json.loads(_decode_segment(payload_b64))
        except (ValueError, TypeError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            return None
        if not isinstance(payload, dict):
            return None
        if payload.get("iss") != self.settings.jwt_issuer:
            return None
        if payload.get("aud") != self.settings.jwt_audience:
            return None
        if payload.get("kind") != kind or not payload.get("sub"):
            return None
        try:
            exp_ts = float(payload.get("exp"))
        except (TypeError, ValueError):
            return None
        if exp_ts <= self._clock():
            return None
        return payload

    def issue_access_token(self, user_id: str) -> str:
        return self._encode(user_id, ACCESS, ACCESS_TOKEN_TTL_SECONDS)

    def issue_refresh_token(self, user_id: str) -> str:
        return self._encode(user_id, REFRESH, REFRESH_TOKEN_TTL_SECONDS)

    def verify_access_token(self, token: str) -> dict[str, Any]:
        return self._decode(token, ACCESS)

    def verify_refresh_token(self, token: str) -> dict[str, Any]:
        return self._decode(token, REFRESH)
