from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse, urlunparse

from authservice.config import get_settings, reset_settings_cache
from authservice.logging import get_logger
from authservice.service.auth import AuthService
from authservice.service.email import EmailClient, MockEmailClient, SMTPEmailClient
from authservice.service.passwords import CredentialHasher
from authservice.service.tokens import TokenService
from authservice.storage.common import BannedTokenStore, TwoFACodeStore, UserStore
from authservice.storage.memory import (
    MemoryBannedTokenStore,
    MemoryChallengeStore,
    MemoryUserStore,
)
from authservice.storage.postgres import PostgresUserStore
from authservice.storage.redis_cache import (
    RedisBannedTokenStore,
    RedisCache,
    RedisChallengeStore,
)

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a URL for safe logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    if parsed.username:
        netloc = f"{parsed.username}:***@{netloc}"
    else:
        netloc = f":***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


@dataclass
class AppState:
    """One instance of each store plus the notification client."""

    user_store: UserStore
    banned_token_store: BannedTokenStore
    two_fa_code_store: TwoFACodeStore
    email_client: EmailClient


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )
        self.hasher = CredentialHasher.from_settings(self.settings)
        self.tokens = TokenService.from_settings(self.settings)
        self.cache: Optional[RedisCache] = None
        self.postgres: Optional[PostgresUserStore] = None

        email_client: EmailClient = (
            MockEmailClient()
            if self.settings.test_mode
            else SMTPEmailClient.from_settings(self.settings)
        )

        if self.settings.use_memory_store:
            self.state = AppState(
                user_store=MemoryUserStore(self.hasher),
                banned_token_store=MemoryBannedTokenStore(),
                two_fa_code_store=MemoryChallengeStore(
                    ttl_seconds=self.settings.two_fa_ttl_seconds
                ),
                email_client=email_client,
            )
        else:
            self.state = self._build_networked_state(email_client)
        logger.info(
            "runtime_store_initialized",
            store_type="memory" if self.settings.use_memory_store else "postgres+redis",
        )

        self.auth = AuthService(
            self.state.user_store,
            self.state.banned_token_store,
            self.state.two_fa_code_store,
            self.state.email_client,
            self.tokens,
            self.hasher,
        )

    def _build_networked_state(self, email_client: EmailClient) -> AppState:
        try:
            self.postgres = PostgresUserStore(
                self.settings.database_url,
                self.hasher,
                min_size=self.settings.db_pool_min_size,
                max_size=self.settings.db_pool_max_size,
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type="postgres",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        cache = RedisCache(
            self.settings.redis_url, socket_timeout=self.settings.redis_socket_timeout
        )
        try:
            cache.verify_connection()
        except Exception as exc:
            logger.error(
                "redis_unavailable",
                redis_url=_mask_url_password(self.settings.redis_url),
                error=str(exc),
            )
            self.postgres.close()
            raise RuntimeError(
                "Redis is required for the revocation and 2FA stores; "
                "start Redis or set USE_MEMORY_STORE=true for local development."
            ) from exc
        self.cache = cache

        return AppState(
            user_store=self.postgres,
            banned_token_store=RedisBannedTokenStore(
                cache, token_ttl_seconds=self.settings.token_ttl_seconds
            ),
            two_fa_code_store=RedisChallengeStore(
                cache, ttl_seconds=self.settings.two_fa_ttl_seconds
            ),
            email_client=email_client,
        )

    async def close(self) -> None:
        if self.cache is not None:
            await self.cache.close()
            self.cache = None
        if self.postgres is not None:
            await asyncio.to_thread(self.postgres.close)
            self.postgres = None


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Double-checked locking: the fast path skips the lock once the runtime
    exists; the slow path re-checks under the lock before creating it.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""

    global runtime

    with _runtime_lock:
        if runtime is not None and (runtime.cache is not None or runtime.postgres is not None):
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                asyncio.run(runtime.close())
            else:
                logger.warning("runtime_close_skipped", reason="event_loop_running")

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime


__all__ = ["AppState", "Runtime", "get_runtime", "reset_runtime_for_tests"]
