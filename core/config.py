"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for SessionGuard happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, redis_url -> REDIS_URL).

  Explicit injection: the signing secret is read here exactly once and handed
      to TokenIssuer's constructor by auth.service.build_auth_service(). The
      auth components never reach back into this module for it.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. HS256 signing relies
  on key entropy -- a short key makes offline brute force of issued tokens
  practical.

  In production mode (DEBUG not set or false), a missing SECRET_KEY is a
  hard startup failure. A random per-process key would silently invalidate
  every issued token on restart.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or cache/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("sessionguard.config")

_ONE_YEAR = 365 * 24 * 60 * 60


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
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

    # ------------------------------------------------------------------
    # Tokens and passwords
    # ------------------------------------------------------------------

    # Long-lived by default: a device stays signed in until it is revoked,
    # logged out, or the window elapses. Shorten for stricter deployments.
    token_expire_seconds: int = Field(default=_ONE_YEAR, gt=0)
    jwt_algorithm: str = "HS256"
    # bcrypt cost factor. 4 is the library minimum and is only sensible in tests.
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Backing stores
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///sessionguard.db"
    db_timeout_seconds: float = Field(default=5.0, gt=0)
    redis_url: str = "redis://localhost:6379/0"
    redis_timeout_seconds: float = Field(default=2.0, gt=0)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Issued tokens will not survive a restart.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
