import pytest

from authservice.service.passwords import CredentialHasher
from authservice.storage.errors import BackendUnavailable
from authservice.storage.models import Password


async def test_hash_is_argon2id_and_salted(hasher):
    first = await hasher.hash_password(Password("password123"))
    second = await hasher.hash_password(Password("password123"))
    assert first.startswith("$argon2id$")
    assert first != second


async def test_verify_match_and_mismatch(hasher):
    stored = await hasher.hash_password(Password("password123"))
    assert await hasher.verify_password(stored, Password("password123")) is True
    assert await hasher.verify_password(stored, Password("password124")) is False


async def test_unparseable_hash_is_backend_failure(hasher):
    with pytest.raises(BackendUnavailable):
        await hasher.verify_password("not-a-hash", Password("password123"))


def test_from_settings_uses_cost_parameters():
    from authservice.config import get_settings

    settings = get_settings()
    hasher = CredentialHasher.from_settings(settings)
    assert hasher._pwd_hasher.time_cost == settings.argon2_time_cost
    assert hasher._pwd_hasher.memory_cost == settings.argon2_memory_cost
