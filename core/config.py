"""
core/config.py -- Centralized configuration for Warden via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
or os.environ.get() directly -- import get_settings() instead, or accept a
Settings instance as a constructor argument (the auth components do this so
tests can build them with tuned values).

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Field names map to env var names
      (e.g. access_token_ttl_seconds -> ACCESS_TOKEN_TTL_SECONDS). Complex
      fields (previous_secret_keys, role_rate_limits) are read as JSON.

  @model_validator(mode="after"): cross-field validation after all values
      are resolved. Enforces the SECRET_KEY policy and sanity-checks TTLs.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. Every key in
       PREVIOUS_SECRET_KEYS is held to the same rule -- a retired key still
       verifies live refresh tokens until they expire.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

  The JWT algorithm is deliberately NOT configurable. See auth/tokens.py.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("warden.config")

_DEFAULT_ROLE_RATE_LIMITS = {
    "user": 60,
    "moderator": 120,
    "admin": 300,
    "super_admin": 600,
}


class Settings(BaseSettings):
    """Warden settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    # Retired signing keys, newest first. Verification only -- never used to sign.
    previous_secret_keys: list[str] = Field(default_factory=list)

    # ------------------------------------------------------------------
    # Tokens and sessions
    # ------------------------------------------------------------------

    access_token_ttl_seconds: int = 15 * 60
    refresh_token_ttl_seconds: int = 14 * 24 * 3600
    mfa_challenge_ttl_seconds: int = 5 * 60
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    password_min_length: int = 12
    # 12 rounds is ~250ms on a current server core. Raise as hardware improves.
    bcrypt_rounds: int = 12
    totp_issuer: str = "Warden"
    require_email_verification: bool = False

    # ------------------------------------------------------------------
    # Lockout
    # ------------------------------------------------------------------

    max_login_attempts: int = 5
    lockout_duration_seconds: int = 15 * 60

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit_attempts: int = 10
    login_rate_limit_window_seconds: int = 15 * 60
    # Requests per API_RATE_LIMIT_WINDOW_SECONDS, keyed by role value.
    role_rate_limits: dict[str, int] = Field(default_factory=lambda: dict(_DEFAULT_ROLE_RATE_LIMITS))
    api_rate_limit_window_seconds: int = 60
    # Applies to financial / audit_log_export scopes regardless of role.
    sensitive_rate_limit: int = 10
    anonymous_rate_limit: int = 30
    # Coarse per-IP limit on public auth routes (slowapi syntax).
    ip_rate_limit: str = "20/minute"

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///warden.db"
    store_timeout_seconds: float = 5.0
    purge_interval_seconds: int = 10 * 60

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if any(len(k) < 32 for k in self.previous_secret_keys):
            raise ValueError("Every PREVIOUS_SECRET_KEYS entry must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_lifetimes(self) -> "Settings":
        """Access tokens must be short-lived relative to the refresh window."""
        if self.access_token_ttl_seconds <= 0 or self.refresh_token_ttl_seconds <= 0:
            raise ValueError("Token TTLs must be positive.")
        if self.access_token_ttl_seconds >= self.refresh_token_ttl_seconds:
            raise ValueError("ACCESS_TOKEN_TTL_SECONDS must be shorter than REFRESH_TOKEN_TTL_SECONDS.")
        if self.max_login_attempts < 1:
            raise ValueError("MAX_LOGIN_ATTEMPTS must be at least 1.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
