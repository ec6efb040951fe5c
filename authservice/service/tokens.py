from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
import uuid
from typing import Any, Callable, Optional

from authservice.config import Settings
from authservice.logging import get_logger
from authservice.service.errors import InvalidTokenError, UnexpectedError
from authservice.storage.common import BannedTokenStore
from authservice.storage.errors import StoreError
from authservice.storage.models import Email, TokenClaims

logger = get_logger(__name__)

DEFAULT_TOKEN_TTL_SECONDS = 600


class TokenService:
    """Issues and checks compact HS256 session tokens.

    Tokens carry ``sub`` (the email), ``iat``, ``exp`` and a random ``jti`` so
    two tokens minted for the same user in the same second still differ.
    """

    def __init__(
        self,
        secret: str,
        *,
        ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ValueError("token secret must not be empty")
        self._secret = secret.encode()
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenService":
        return cls(settings.jwt_secret or "", ttl_seconds=settings.token_ttl_seconds)

    def _now(self) -> int:
        return int(self._clock())

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        return self._encode_segment(
            hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def _encode_jwt(self, payload: dict[str, Any]) -> str:
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def _decode_jwt(self, token: str) -> Optional[dict[str, Any]]:
        # Compact JWTs are base64url ASCII; anything else cannot be signed input
        if not token.isascii():
            logger.warning("jwt_non_ascii_rejected")
            return None
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            return None

        try:
            header = json.loads(self._decode_segment(header_b64))
        except (ValueError, TypeError):
            logger.warning("jwt_header_decode_failed")
            return None
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning(
                "jwt_invalid_algorithm",
                alg=header.get("alg") if isinstance(header, dict) else None,
            )
            return None

        expected_sig = self._sign(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig, sig_b64):
            return None
        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (ValueError, TypeError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            return None
        if not isinstance(payload, dict):
            return None
        return payload

    def issue(self, email: Email) -> str:
        now = self._now()
        return self._encode_jwt(
            {
                "sub": email.value,
                "iat": now,
                "exp": now + self.ttl_seconds,
                "jti": str(uuid.uuid4()),
            }
        )

    def decode(self, token: str) -> TokenClaims:
        """Verify signature and expiry and return the claims.

        Raises InvalidTokenError for anything that is not a live token signed
        with this service's secret.
        """
        payload = self._decode_jwt(token) if isinstance(token, str) else None
        if payload is None:
            raise InvalidTokenError("invalid token")
        sub, iat, exp, jti = (
            payload.get("sub"),
            payload.get("iat"),
            payload.get("exp"),
            payload.get("jti"),
        )
        if (
            not isinstance(sub, str)
            or not isinstance(iat, int)
            or not isinstance(exp, int)
            or not isinstance(jti, str)
        ):
            raise InvalidTokenError("invalid token claims")
        if exp <= self._now():
            raise InvalidTokenError("token expired")
        return TokenClaims(sub=sub, iat=iat, exp=exp, jti=jti)

    async def validate(self, token: str, banned_store: BannedTokenStore) -> TokenClaims:
        claims = self.decode(token)
        try:
            banned = await banned_store.contains_token(token)
        except StoreError as exc:
            logger.error("ban_lookup_failed", error=exc.message, detail=exc.detail)
            raise UnexpectedError("ban lookup failed") from exc
        if banned:
            raise InvalidTokenError("token has been revoked")
        return claims

    def remaining_ttl(self, claims: TokenClaims) -> int:
        return max(1, claims.exp - self._now())


__all__ = ["TokenService", "DEFAULT_TOKEN_TTL_SECONDS"]
