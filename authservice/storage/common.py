"""Shared pieces of the credential, revocation and challenge stores.

Defines the store capabilities every backend implements, the asyncio
reader-writer lock that guards the in-process backends, and the challenge
lifecycle that the memory and Redis challenge stores share.
"""

from __future__ import annotations

import asyncio
import hmac
import random
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Protocol, Tuple

from authservice.storage.errors import ChallengeNotFound
from authservice.storage.models import (
    Email,
    LoginAttemptId,
    Password,
    TwoFACode,
    User,
)

BANNED_TOKEN_KEY_PREFIX = "banned_token:"
TWO_FA_CODE_KEY_PREFIX = "two_fa_code:"
DEFAULT_CHALLENGE_TTL_SECONDS = 600


class UserStore(Protocol):
    async def add_user(self, user: User) -> None: ...

    async def get_user(self, email: Email) -> User: ...

    async def validate_user(self, email: Email, password: Password) -> None: ...


class BannedTokenStore(Protocol):
    async def add_token(self, token: str, ttl_seconds: Optional[int] = None) -> None: ...

    async def contains_token(self, token: str) -> bool: ...

    async def remove_token(self, token: str) -> None: ...


class TwoFACodeStore(Protocol):
    async def add_code(
        self, email: Email, login_attempt_id: LoginAttemptId, code: TwoFACode
    ) -> None: ...

    async def get_code(self, email: Email) -> Tuple[LoginAttemptId, TwoFACode]: ...

    async def remove_code(self, email: Email) -> bool: ...

    async def issue(self, email: Email) -> Tuple[LoginAttemptId, TwoFACode]: ...

    async def verify(
        self, email: Email, login_attempt_id: LoginAttemptId, code: TwoFACode
    ) -> None: ...

    async def clear(self, email: Email) -> bool: ...

    async def peek(self, email: Email) -> Tuple[LoginAttemptId, TwoFACode]: ...


class RWLock:
    """Asyncio reader-writer lock with writer preference.

    Any number of readers may hold the lock together; a writer holds it alone.
    Once a writer is waiting, new readers queue behind it.
    """

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def write_locked(self) -> bool:
        return self._writer

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(
                lambda: not self._writer and self._waiting_writers == 0
            )
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            self._waiting_writers += 1
            try:
                await self._cond.wait_for(
                    lambda: not self._writer and self._readers == 0
                )
            finally:
                self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


class ChallengeLifecycle:
    """issue/verify/clear/peek built on a backend's add/get/remove primitives.

    Subclasses provide ``add_code``, ``get_code`` and ``remove_code``. The RNG
    is created once per store and reused for every challenge.
    """

    def __init__(
        self,
        *,
        ttl_seconds: int = DEFAULT_CHALLENGE_TTL_SECONDS,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._rng = rng or random.SystemRandom()

    async def issue(self, email: Email) -> Tuple[LoginAttemptId, TwoFACode]:
        login_attempt_id = LoginAttemptId.new(self._rng)
        code = TwoFACode.new(self._rng)
        # Overwrites any previous challenge for this email
        await self.add_code(email, login_attempt_id, code)  # type: ignore[attr-defined]
        return login_attempt_id, code

    async def verify(
        self, email: Email, login_attempt_id: LoginAttemptId, code: TwoFACode
    ) -> None:
        stored_id, stored_code = await self.get_code(email)  # type: ignore[attr-defined]
        id_ok = hmac.compare_digest(stored_id.value, login_attempt_id.value)
        code_ok = hmac.compare_digest(stored_code.value, code.value)
        if not (id_ok and code_ok):
            raise ChallengeNotFound("2FA challenge mismatch", {"email": email.value})

    async def clear(self, email: Email) -> bool:
        """Remove the challenge; False when another caller removed it first."""
        return await self.remove_code(email)  # type: ignore[attr-defined]

    async def peek(self, email: Email) -> Tuple[LoginAttemptId, TwoFACode]:
        return await self.get_code(email)  # type: ignore[attr-defined]


__all__ = [
    "BANNED_TOKEN_KEY_PREFIX",
    "TWO_FA_CODE_KEY_PREFIX",
    "DEFAULT_CHALLENGE_TTL_SECONDS",
    "UserStore",
    "BannedTokenStore",
    "TwoFACodeStore",
    "RWLock",
    "ChallengeLifecycle",
]
