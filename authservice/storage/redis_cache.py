from __future__ import annotations

import json
import random
from typing import Optional, Tuple

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from authservice.logging import get_logger
from authservice.storage.common import (
    BANNED_TOKEN_KEY_PREFIX,
    DEFAULT_CHALLENGE_TTL_SECONDS,
    TWO_FA_CODE_KEY_PREFIX,
    ChallengeLifecycle,
)
from authservice.storage.errors import (
    BackendUnavailable,
    ChallengeNotFound,
    TokenAlreadyBanned,
    TokenNotFound,
)
from authservice.storage.models import Email, LoginAttemptId, TwoFACode

logger = get_logger(__name__)


class RedisCache:
    """Thin Redis wrapper shared by the revocation and challenge stores."""

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    @staticmethod
    def _ttl_seconds(ttl_seconds: Optional[int], ceiling: int) -> int:
        """Clamp a TTL into ``[1, ceiling]``; ``None`` means the ceiling."""

        if ttl_seconds is None:
            return ceiling
        return max(1, min(int(ttl_seconds), ceiling))

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving requests."""

        # Short-lived sync client so the async one is not bound to a startup loop
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def close(self) -> None:
        await self.client.aclose()


def _backend_error(operation: str, exc: Exception) -> BackendUnavailable:
    logger.error("redis_operation_failed", operation=operation, error=str(exc))
    return BackendUnavailable(f"redis {operation} failed", {"error": str(exc)})


class RedisBannedTokenStore:
    """Deny-list in Redis; every entry expires with the token it bans."""

    def __init__(self, cache: RedisCache, *, token_ttl_seconds: int = 600) -> None:
        self.cache = cache
        self.token_ttl_seconds = token_ttl_seconds

    @staticmethod
    def _key(token: str) -> str:
        return f"{BANNED_TOKEN_KEY_PREFIX}{token}"

    async def add_token(self, token: str, ttl_seconds: Optional[int] = None) -> None:
        ttl = self.cache._ttl_seconds(ttl_seconds, self.token_ttl_seconds)
        try:
            created = await self.cache.client.set(self._key(token), "1", ex=ttl, nx=True)
        except RedisError as exc:
            raise _backend_error("ban", exc) from exc
        if not created:
            raise TokenAlreadyBanned("token already banned")

    async def contains_token(self, token: str) -> bool:
        try:
            return bool(await self.cache.client.exists(self._key(token)))
        except RedisError as exc:
            raise _backend_error("ban_lookup", exc) from exc

    async def remove_token(self, token: str) -> None:
        try:
            removed = await self.cache.client.delete(self._key(token))
        except RedisError as exc:
            raise _backend_error("unban", exc) from exc
        if not removed:
            raise TokenNotFound("token not banned")


class RedisChallengeStore(ChallengeLifecycle):
    """Pending 2FA challenges stored as ``[attempt_id, code]`` JSON with a TTL."""

    def __init__(
        self,
        cache: RedisCache,
        *,
        ttl_seconds: int = DEFAULT_CHALLENGE_TTL_SECONDS,
        rng: Optional[random.Random] = None,
    ) -> None:
        super().__init__(ttl_seconds=ttl_seconds, rng=rng)
        self.cache = cache

    @staticmethod
    def _key(email: Email) -> str:
        return f"{TWO_FA_CODE_KEY_PREFIX}{email.value}"

    async def add_code(
        self, email: Email, login_attempt_id: LoginAttemptId, code: TwoFACode
    ) -> None:
        payload = json.dumps([login_attempt_id.value, code.value])
        try:
            await self.cache.client.set(self._key(email), payload, ex=self.ttl_seconds)
        except RedisError as exc:
            raise _backend_error("challenge_store", exc) from exc

    async def get_code(self, email: Email) -> Tuple[LoginAttemptId, TwoFACode]:
        try:
            cached = await self.cache.client.get(self._key(email))
        except RedisError as exc:
            raise _backend_error("challenge_lookup", exc) from exc
        if cached is None:
            raise ChallengeNotFound("no pending challenge", {"email": email.value})
        try:
            raw_id, raw_code = json.loads(cached)
            return LoginAttemptId.parse(raw_id), TwoFACode.parse(raw_code)
        except (json.JSONDecodeError, TypeError, ValueError) as exc:
            logger.error("challenge_payload_corrupt", error=str(exc))
            raise BackendUnavailable(
                "stored challenge is unreadable", {"error": str(exc)}
            ) from exc

    async def remove_code(self, email: Email) -> bool:
        try:
            removed = await self.cache.client.delete(self._key(email))
        except RedisError as exc:
            raise _backend_error("challenge_remove", exc) from exc
        return bool(removed)


__all__ = ["RedisCache", "RedisBannedTokenStore", "RedisChallengeStore"]
