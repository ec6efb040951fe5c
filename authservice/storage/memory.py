from __future__ import annotations

import random
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Set, Tuple

from authservice.service.passwords import CredentialHasher
from authservice.storage.common import (
    DEFAULT_CHALLENGE_TTL_SECONDS,
    ChallengeLifecycle,
    RWLock,
)
from authservice.storage.errors import (
    ChallengeNotFound,
    InvalidCredentials,
    TokenAlreadyBanned,
    TokenNotFound,
    UserAlreadyExists,
    UserNotFound,
)
from authservice.storage.models import (
    Challenge,
    Email,
    LoginAttemptId,
    Password,
    TwoFACode,
    User,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryUserStore:
    """Non-durable user records keyed by email, for development and tests."""

    def __init__(self, hasher: CredentialHasher) -> None:
        self.hasher = hasher
        self.users: Dict[Email, User] = {}
        self._lock = RWLock()

    async def add_user(self, user: User) -> None:
        async with self._lock.write():
            if user.email in self.users:
                raise UserAlreadyExists("email already exists", {"field": "email"})
            self.users[user.email] = user

    async def get_user(self, email: Email) -> User:
        async with self._lock.read():
            user = self.users.get(email)
        if user is None:
            raise UserNotFound("user not found", {"email": email.value})
        return user

    async def validate_user(self, email: Email, password: Password) -> None:
        user = await self.get_user(email)
        # Lock is released before hashing; records are immutable after signup
        if not await self.hasher.verify_password(user.password_hash, password):
            raise InvalidCredentials("password mismatch", {"email": email.value})


class MemoryBannedTokenStore:
    """Process-lifetime deny-list of raw token strings."""

    def __init__(self) -> None:
        self.banned_tokens: Set[str] = set()
        self._lock = RWLock()

    async def add_token(self, token: str, ttl_seconds: Optional[int] = None) -> None:
        async with self._lock.write():
            if token in self.banned_tokens:
                raise TokenAlreadyBanned("token already banned")
            self.banned_tokens.add(token)

    async def contains_token(self, token: str) -> bool:
        async with self._lock.read():
            return token in self.banned_tokens

    async def remove_token(self, token: str) -> None:
        async with self._lock.write():
            if token not in self.banned_tokens:
                raise TokenNotFound("token not banned")
            self.banned_tokens.discard(token)


class MemoryChallengeStore(ChallengeLifecycle):
    """Pending 2FA challenges keyed by email, TTL checked on read."""

    def __init__(
        self,
        *,
        ttl_seconds: int = DEFAULT_CHALLENGE_TTL_SECONDS,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        super().__init__(ttl_seconds=ttl_seconds, rng=rng)
        self.codes: Dict[Email, Challenge] = {}
        self._clock = clock
        self._lock = RWLock()

    async def add_code(
        self, email: Email, login_attempt_id: LoginAttemptId, code: TwoFACode
    ) -> None:
        challenge = Challenge(
            email=email,
            login_attempt_id=login_attempt_id,
            code=code,
            created_at=self._clock(),
            ttl_seconds=self.ttl_seconds,
        )
        async with self._lock.write():
            self.codes[email] = challenge

    async def get_code(self, email: Email) -> Tuple[LoginAttemptId, TwoFACode]:
        async with self._lock.read():
            challenge = self.codes.get(email)
        if challenge is None:
            raise ChallengeNotFound("no pending challenge", {"email": email.value})
        if challenge.is_expired(self._clock()):
            async with self._lock.write():
                # Only drop the entry we saw; a newer challenge may have landed
                if self.codes.get(email) is challenge:
                    del self.codes[email]
            raise ChallengeNotFound("challenge expired", {"email": email.value})
        return challenge.login_attempt_id, challenge.code

    async def remove_code(self, email: Email) -> bool:
        async with self._lock.write():
            return self.codes.pop(email, None) is not None


__all__ = ["MemoryUserStore", "MemoryBannedTokenStore", "MemoryChallengeStore"]
