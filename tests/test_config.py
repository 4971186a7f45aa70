"""
tests/test_config.py -- Settings validation.

Settings(...) is constructed directly with keyword overrides so the cached
get_settings() singleton used by the rest of the suite is never disturbed.

Covers:
  - SECRET_KEY: generated in debug mode, required in production, >= 32 chars
  - token lifetimes: refresh must outlive access; skew below access lifetime
  - only HMAC algorithms; bcrypt rounds within bcrypt's range
  - registration status restricted to active/pending
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings, get_settings

_KEY = "s" * 40


def test_debug_mode_generates_secret_key():
    settings = Settings(debug=True, secret_key="")
    assert len(settings.secret_key) >= 32


def test_production_requires_secret_key(monkeypatch):
    monkeypatch.delenv("SECRET_KEY", raising=False)
    with pytest.raises(ValidationError, match="SECRET_KEY is required"):
        Settings(debug=False, secret_key="")


def test_short_secret_key_rejected():
    with pytest.raises(ValidationError, match="at least 32"):
        Settings(debug=True, secret_key="too-short")


def test_defaults_are_valid():
    settings = Settings(secret_key=_KEY, password_hash_rounds=12)
    assert settings.access_token_expire_seconds == 900
    assert settings.refresh_token_expire_seconds > settings.access_token_expire_seconds
    assert settings.jwt_algorithm == "HS256"


@pytest.mark.parametrize(
    "overrides,message",
    [
        ({"access_token_expire_seconds": 0}, "ACCESS_TOKEN_EXPIRE_SECONDS"),
        ({"access_token_expire_seconds": 3600, "refresh_token_expire_seconds": 3600}, "REFRESH_TOKEN_EXPIRE_SECONDS"),
        ({"token_clock_skew_seconds": -1}, "TOKEN_CLOCK_SKEW_SECONDS"),
        ({"token_clock_skew_seconds": 900}, "TOKEN_CLOCK_SKEW_SECONDS"),
        ({"jwt_algorithm": "none"}, "JWT_ALGORITHM"),
        ({"jwt_algorithm": "RS256"}, "JWT_ALGORITHM"),
        ({"password_hash_rounds": 3}, "PASSWORD_HASH_ROUNDS"),
        ({"password_hash_rounds": 32}, "PASSWORD_HASH_ROUNDS"),
        ({"registration_default_status": "suspended"}, "REGISTRATION_DEFAULT_STATUS"),
    ],
)
def test_token_policy_rejects_weak_settings(overrides, message):
    with pytest.raises(ValidationError, match=message):
        Settings(secret_key=_KEY, **overrides)


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("SECRET_KEY", _KEY)
    monkeypatch.setenv("ACCESS_TOKEN_EXPIRE_SECONDS", "300")
    monkeypatch.setenv("REGISTRATION_DEFAULT_STATUS", "pending")
    settings = Settings()
    assert settings.access_token_expire_seconds == 300
    assert settings.registration_default_status == "pending"


def test_get_settings_is_cached():
    assert get_settings() is get_settings()
