from __future__ import annotations

import asyncio

from argon2 import PasswordHasher, Type
from argon2.exceptions import (
    HashingError,
    InvalidHash,
    VerificationError,
    VerifyMismatchError,
)

from authservice.config import Settings
from authservice.logging import get_logger
from authservice.storage.errors import BackendUnavailable
from authservice.storage.models import Password

logger = get_logger(__name__)


class CredentialHasher:
    """Argon2id hashing that never runs on the event loop.

    Every hash carries its own random salt; cost parameters are tunable so
    tests can run with cheap settings.
    """

    ALGO = "argon2id"

    def __init__(
        self,
        *,
        time_cost: int = 2,
        memory_cost: int = 15000,
        parallelism: int = 1,
    ) -> None:
        self._pwd_hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=Type.ID,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "CredentialHasher":
        return cls(
            time_cost=settings.argon2_time_cost,
            memory_cost=settings.argon2_memory_cost,
            parallelism=settings.argon2_parallelism,
        )

    async def hash_password(self, password: Password) -> str:
        try:
            return await asyncio.to_thread(self._pwd_hasher.hash, password.value)
        except HashingError as exc:
            logger.error("password_hash_failed", error=str(exc))
            raise BackendUnavailable("password hashing failed", {"error": str(exc)}) from exc

    async def verify_password(self, stored_hash: str, password: Password) -> bool:
        """Return True on match, False on mismatch.

        A stored hash that argon2 cannot parse, or any other verification
        failure, raises BackendUnavailable.
        """
        try:
            return await asyncio.to_thread(
                self._pwd_hasher.verify, stored_hash, password.value
            )
        except VerifyMismatchError:
            return False
        except (InvalidHash, VerificationError) as exc:
            logger.error("password_verify_failed", error=str(exc))
            raise BackendUnavailable(
                "password verification failed", {"error": str(exc)}
            ) from exc


__all__ = ["CredentialHasher"]
