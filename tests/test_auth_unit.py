import asyncio
import random

import pytest

from authservice.service.auth import TWO_FA_SUBJECT, AuthService
from authservice.service.email import MockEmailClient
from authservice.service.errors import (
    IncorrectCredentialsError,
    InvalidCredentialsError,
    InvalidTokenError,
    MissingTokenError,
    UnexpectedError,
    UserAlreadyExistsError,
)
from authservice.service.tokens import TokenService
from authservice.storage.errors import BackendUnavailable
from authservice.storage.memory import (
    MemoryBannedTokenStore,
    MemoryChallengeStore,
    MemoryUserStore,
)
from authservice.storage.models import Email
from authservice.storage.redis_cache import RedisCache, RedisChallengeStore

SECRET = "unit-test-secret-with-enough-length-0123456789"


@pytest.fixture
def email_client():
    return MockEmailClient()


@pytest.fixture
def auth(hasher, email_client):
    return AuthService(
        MemoryUserStore(hasher),
        MemoryBannedTokenStore(),
        MemoryChallengeStore(rng=random.Random(42)),
        email_client,
        TokenService(SECRET),
        hasher,
    )


async def test_signup_then_login_issues_token(auth):
    await auth.signup("a@b.com", "password123", False)
    result = await auth.login("a@b.com", "password123")
    assert result.token
    assert not result.requires_2fa
    claims = await auth.verify_token(result.token)
    assert claims.sub == "a@b.com"


async def test_signup_validation_and_duplicates(auth):
    with pytest.raises(InvalidCredentialsError):
        await auth.signup("not-an-email", "password123", False)
    with pytest.raises(InvalidCredentialsError):
        await auth.signup("a@b.com", "short", False)
    await auth.signup("a@b.com", "password123", False)
    with pytest.raises(UserAlreadyExistsError):
        await auth.signup("a@b.com", "password123", True)


async def test_login_error_mapping(auth):
    with pytest.raises(InvalidCredentialsError):
        await auth.login("nobody@b.com", "password123")
    await auth.signup("a@b.com", "password123", False)
    with pytest.raises(IncorrectCredentialsError):
        await auth.login("a@b.com", "wrongpassword")


async def test_two_factor_flow(auth, email_client):
    await auth.signup("c@d.com", "password123", True)
    result = await auth.login("c@d.com", "password123")
    assert result.requires_2fa
    assert result.token is None

    recipient, subject, content = email_client.last_for(Email("c@d.com"))
    assert subject == TWO_FA_SUBJECT
    attempt_id, code = await auth.two_fa_code_store.peek(Email("c@d.com"))
    assert attempt_id == result.login_attempt_id
    assert content == code.value

    token = await auth.verify_2fa("c@d.com", attempt_id.value, code.value)
    assert (await auth.verify_token(token)).sub == "c@d.com"
    # Single use
    with pytest.raises(IncorrectCredentialsError):
        await auth.verify_2fa("c@d.com", attempt_id.value, code.value)


async def test_relogin_invalidates_previous_code(auth):
    await auth.signup("c@d.com", "password123", True)
    await auth.login("c@d.com", "password123")
    old_id, old_code = await auth.two_fa_code_store.peek(Email("c@d.com"))
    await auth.login("c@d.com", "password123")
    with pytest.raises(IncorrectCredentialsError):
        await auth.verify_2fa("c@d.com", old_id.value, old_code.value)


async def test_verify_2fa_rejects_malformed_input(auth):
    with pytest.raises(InvalidCredentialsError):
        await auth.verify_2fa("c@d.com", "not-a-uuid", "123456")
    with pytest.raises(InvalidCredentialsError):
        await auth.verify_2fa("c@d.com", "2b1c5d0a-7f7b-4d8e-9f0a-2f1e3d4c5b6a", "12ab56")


async def test_notification_failure_fails_login(auth, email_client):
    await auth.signup("c@d.com", "password123", True)
    email_client.fail = True
    with pytest.raises(UnexpectedError):
        await auth.login("c@d.com", "password123")


async def test_logout_bans_token(auth):
    await auth.signup("a@b.com", "password123", False)
    token = (await auth.login("a@b.com", "password123")).token
    await auth.logout(token)
    assert await auth.banned_token_store.contains_token(token)
    with pytest.raises(InvalidTokenError):
        await auth.verify_token(token)
    with pytest.raises(InvalidTokenError):
        await auth.logout(token)


async def test_logout_requires_token(auth):
    with pytest.raises(MissingTokenError):
        await auth.logout(None)
    with pytest.raises(MissingTokenError):
        await auth.logout("")
    with pytest.raises(InvalidTokenError):
        await auth.logout("garbage")


async def test_concurrent_duplicate_ban_is_not_fatal(auth):
    await auth.signup("a@b.com", "password123", False)
    token = (await auth.login("a@b.com", "password123")).token
    original = auth.banned_token_store.add_token

    async def racing_add(tok, ttl_seconds=None):
        # Another logout bans the token between our validate and our ban
        await original(tok, ttl_seconds)
        await original(tok, ttl_seconds)

    auth.banned_token_store.add_token = racing_add
    await auth.logout(token)
    assert await auth.banned_token_store.contains_token(token)


async def test_backend_failure_surfaces_unexpected(auth):
    class BrokenUserStore:
        async def add_user(self, user):
            raise BackendUnavailable("db down", {"error": "connection refused"})

    auth.user_store = BrokenUserStore()
    with pytest.raises(UnexpectedError) as excinfo:
        await auth.signup("a@b.com", "password123", False)
    assert "connection refused" not in excinfo.value.message


class YieldingRedis:
    """Redis double whose commands yield to the loop, so calls interleave."""

    def __init__(self):
        self.data = {}

    async def set(self, key, value, ex=None, nx=False):
        await asyncio.sleep(0)
        if nx and key in self.data:
            return None
        self.data[key] = value
        return True

    async def get(self, key):
        await asyncio.sleep(0)
        return self.data.get(key)

    async def delete(self, key):
        await asyncio.sleep(0)
        return 1 if self.data.pop(key, None) is not None else 0


def _redis_challenge_store():
    cache = RedisCache.__new__(RedisCache)
    cache.redis_url = "redis://fake"
    cache.client = YieldingRedis()
    return RedisChallengeStore(cache, rng=random.Random(7))


@pytest.mark.parametrize("backend", ["memory", "redis"])
async def test_concurrent_verify_consumes_challenge_once(auth, backend):
    if backend == "redis":
        auth.two_fa_code_store = _redis_challenge_store()
    await auth.signup("c@d.com", "password123", True)
    await auth.login("c@d.com", "password123")
    attempt_id, code = await auth.two_fa_code_store.peek(Email("c@d.com"))

    results = await asyncio.gather(
        auth.verify_2fa("c@d.com", attempt_id.value, code.value),
        auth.verify_2fa("c@d.com", attempt_id.value, code.value),
        return_exceptions=True,
    )
    tokens = [r for r in results if isinstance(r, str)]
    rejected = [r for r in results if isinstance(r, IncorrectCredentialsError)]
    assert len(tokens) == 1
    assert len(rejected) == 1
