"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for stocktrack-auth happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, password_hash_rounds -> PASSWORD_HASH_ROUNDS).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Token lifetimes, hash cost and SECRET_KEY are checked together
      so a misconfigured deployment refuses to start.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing
       relies on key entropy -- a short key weakens every issued token.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

  [T1] The refresh-token lifetime must strictly exceed the access-token
       lifetime, and the clock-skew leeway must stay below the access lifetime.
       Access tokens cannot be revoked before expiry, so
       ACCESS_TOKEN_EXPIRE_SECONDS is the exposure window of a leaked token.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("stocktrack.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'stocktrack_auth.db'}"

_HMAC_ALGORITHMS = {"HS256", "HS384", "HS512"}


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields except SECRET_KEY have defaults so Settings() can be
    instantiated in test environments with only DEBUG=true set.
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
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    jwt_algorithm: str = "HS256"
    access_token_expire_seconds: int = 900
    refresh_token_expire_seconds: int = 7 * 24 * 3600
    token_clock_skew_seconds: int = 5

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    # bcrypt cost factor. 12 lands around 100-250ms per verification on
    # commodity hardware; tests lower it to 4 via the environment.
    password_hash_rounds: int = 12

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    # "active" lets a self-registered principal sign in immediately;
    # "pending" requires an admin to activate the account first.
    registration_default_status: str = "active"
    revoke_sessions_on_password_change: bool = False

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    register_rate_limit: str = "5/minute"
    refresh_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M6][M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
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
        return self

    @model_validator(mode="after")
    def validate_token_policy(self) -> "Settings":
        """Reject token and hashing parameters that would weaken the auth core [T1]."""
        if self.jwt_algorithm not in _HMAC_ALGORITHMS:
            raise ValueError(f"JWT_ALGORITHM must be one of {sorted(_HMAC_ALGORITHMS)}.")
        if self.access_token_expire_seconds <= 0:
            raise ValueError("ACCESS_TOKEN_EXPIRE_SECONDS must be positive.")
        if self.refresh_token_expire_seconds <= self.access_token_expire_seconds:
            raise ValueError("REFRESH_TOKEN_EXPIRE_SECONDS must exceed ACCESS_TOKEN_EXPIRE_SECONDS.")
        if not 0 <= self.token_clock_skew_seconds < self.access_token_expire_seconds:
            raise ValueError("TOKEN_CLOCK_SKEW_SECONDS must be >= 0 and below the access-token lifetime.")
        if not 4 <= self.password_hash_rounds <= 31:
            raise ValueError("PASSWORD_HASH_ROUNDS must be between 4 and 31.")
        if self.registration_default_status not in ("active", "pending"):
            raise ValueError("REGISTRATION_DEFAULT_STATUS must be 'active' or 'pending'.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
