"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for SchoolGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. Only the
      application assembly (api/main.py, main.py) calls it; every component
      receives the values it needs as constructor arguments.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. max_login_attempts -> MAX_LOGIN_ATTEMPTS).

  @model_validator(mode="after"): Cross-field validation of the two signing
      secrets. Dev mode generates them with a warning, production mode refuses
      to start without them.

Security notes:
  [M6] Secrets shorter than 32 chars are rejected outright. HS256 signing
       relies on key entropy -- a short key weakens every credential.

  [M7] In production mode (DEBUG not set or false), a missing secret is a
       hard startup failure.

  [M8] LONG_TOKEN_SECRET and SHORT_TOKEN_SECRET must differ. A shared secret
       would let a stolen short credential pass long-credential verification.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or cache/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("schoolgate.config")

_ONE_YEAR = 365 * 24 * 60 * 60


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (with DEBUG=true). The
    model_validator enforces production-safety rules at startup.
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
    database_url: str = "sqlite:///schoolgate_auth.db"
    # JSON lists in the environment, e.g. ALLOWED_HOSTS='["api.example.org"]'
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev secret or raises, so callers never see "".
    long_token_secret: str = ""
    short_token_secret: str = ""
    long_token_expire_seconds: int = 3 * _ONE_YEAR
    short_token_expire_seconds: int = _ONE_YEAR

    # ------------------------------------------------------------------
    # Lockout
    # ------------------------------------------------------------------

    max_login_attempts: int = 5
    lockout_duration_ms: int = 15 * 60 * 1000

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_window_ms: int = 15 * 60 * 1000
    rate_limit_global: int = 100
    rate_limit_auth: int = 5
    # Honour X-Forwarded-For only when running behind a trusted proxy.
    trust_forwarded_for: bool = False

    # ------------------------------------------------------------------
    # Shared cache
    # ------------------------------------------------------------------

    # Empty string selects the in-process MemoryCache (single instance only).
    redis_url: str = ""
    cache_prefix: str = "schoolgate"
    # Upper bound for the whole auth chain of one request.
    auth_timeout_ms: int = 2000

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_token_secrets(self) -> "Settings":
        """Enforce the signing-secret policy [M6][M7][M8].

        Dev mode (DEBUG=true): auto-generate missing secrets with a warning.
            Credentials will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.
        """
        for field_name in ("long_token_secret", "short_token_secret"):
            value = getattr(self, field_name)
            if not value:
                if self.debug:
                    setattr(self, field_name, secrets.token_hex(32))
                    logger.warning(
                        "WARNING: Using auto-generated %s. Credentials will not persist across restarts.",
                        field_name.upper(),
                    )
                else:
                    raise ValueError(
                        f"{field_name.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
            elif len(value) < 32:
                raise ValueError(f"{field_name.upper()} must be at least 32 characters.")
        if self.long_token_secret == self.short_token_secret:
            raise ValueError("LONG_TOKEN_SECRET and SHORT_TOKEN_SECRET must differ.")
        return self

    @model_validator(mode="after")
    def validate_limits(self) -> "Settings":
        """Reject non-positive thresholds, durations and budgets."""
        positive = (
            "max_login_attempts",
            "lockout_duration_ms",
            "rate_limit_window_ms",
            "rate_limit_global",
            "rate_limit_auth",
            "auth_timeout_ms",
            "long_token_expire_seconds",
            "short_token_expire_seconds",
        )
        for field_name in positive:
            if getattr(self, field_name) <= 0:
                raise ValueError(f"{field_name.upper()} must be a positive integer.")
        if self.short_token_expire_seconds > self.long_token_expire_seconds:
            raise ValueError("SHORT_TOKEN_EXPIRE_SECONDS must not exceed LONG_TOKEN_EXPIRE_SECONDS.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
