"""
tests/test_config.py -- Unit tests for core/config.py Settings validation.

Covers:
  - production mode refuses to start without SECRET_KEY
  - dev mode generates a key
  - short current or retired keys are rejected
  - TTL and threshold sanity checks
  - JSON env vars for list/dict fields
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings
from tests.helpers import TEST_SECRET


def test_production_requires_secret_key():
    with pytest.raises(ValidationError, match="SECRET_KEY is required"):
        Settings(debug=False, secret_key="")


def test_dev_mode_generates_key():
    settings = Settings(debug=True, secret_key="")
    assert len(settings.secret_key) >= 32


def test_short_secret_key_rejected():
    with pytest.raises(ValidationError, match="at least 32"):
        Settings(debug=True, secret_key="too-short")


def test_short_previous_key_rejected():
    with pytest.raises(ValidationError, match="PREVIOUS_SECRET_KEYS"):
        Settings(secret_key=TEST_SECRET, previous_secret_keys=["short"])


def test_access_ttl_must_be_shorter_than_refresh():
    with pytest.raises(ValidationError, match="shorter than"):
        Settings(secret_key=TEST_SECRET, access_token_ttl_seconds=3600, refresh_token_ttl_seconds=3600)


@pytest.mark.parametrize("rounds", [3, 32])
def test_bcrypt_rounds_bounds(rounds):
    with pytest.raises(ValidationError, match="BCRYPT_ROUNDS"):
        Settings(secret_key=TEST_SECRET, bcrypt_rounds=rounds)


def test_defaults():
    settings = Settings(secret_key=TEST_SECRET)
    assert settings.access_token_ttl_seconds == 900
    assert settings.max_login_attempts == 5
    assert settings.lockout_duration_seconds == 900
    assert settings.role_rate_limits["user"] < settings.role_rate_limits["super_admin"]


def test_env_vars_parsed(monkeypatch):
    monkeypatch.setenv("SECRET_KEY", TEST_SECRET)
    monkeypatch.setenv("MAX_LOGIN_ATTEMPTS", "3")
    monkeypatch.setenv("PREVIOUS_SECRET_KEYS", f'["{"r" * 40}"]')
    monkeypatch.setenv("ROLE_RATE_LIMITS", '{"user": 5, "admin": 50}')
    settings = Settings()
    assert settings.secret_key == TEST_SECRET
    assert settings.max_login_attempts == 3
    assert settings.previous_secret_keys == ["r" * 40]
    assert settings.role_rate_limits == {"user": 5, "admin": 50}
