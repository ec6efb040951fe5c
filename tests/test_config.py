import pytest
from pydantic import ValidationError

from authservice.config import Settings, get_settings, reset_settings_cache


def test_env_overrides_defaults(monkeypatch):
    monkeypatch.setenv("TOKEN_TTL_SECONDS", "120")
    monkeypatch.setenv("JWT_COOKIE_NAME", "session")
    settings = Settings.from_env()
    assert settings.token_ttl_seconds == 120
    assert settings.jwt_cookie_name == "session"
    assert settings.two_fa_ttl_seconds == 600


def test_secret_generated_in_test_mode():
    settings = Settings(test_mode=True, jwt_secret=None)
    assert settings.jwt_secret and len(settings.jwt_secret) >= 32


def test_secret_required_outside_test_mode():
    with pytest.raises(ValidationError):
        Settings(test_mode=False, jwt_secret=None)
    with pytest.raises(ValidationError):
        Settings(test_mode=False, jwt_secret="too-short")
    assert Settings(test_mode=False, jwt_secret="x" * 32).jwt_secret == "x" * 32


def test_pool_bounds_and_cookie_name():
    with pytest.raises(ValidationError):
        Settings(test_mode=True, db_pool_min_size=5, db_pool_max_size=2)
    with pytest.raises(ValidationError):
        Settings(test_mode=True, jwt_cookie_name="  ")


def test_settings_cache_reset(monkeypatch):
    first = get_settings()
    assert get_settings() is first
    monkeypatch.setenv("TWO_FA_TTL_SECONDS", "30")
    reset_settings_cache()
    assert get_settings().two_fa_ttl_seconds == 30
    reset_settings_cache()
