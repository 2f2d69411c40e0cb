"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for EventDesk happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET). Type coercion and validation are built in.

  @model_validator(mode="after"): Cross-field validation of the two JWT
      secrets. Dev mode generates missing secrets with a warning, production
      mode refuses to start without them.

Security notes:
  Secrets shorter than 32 chars are rejected outright. HS256 signing relies on
  key entropy -- a short key weakens every token issued with it.

  JWT_SECRET and JWT_REFRESH_SECRET must differ. Access tokens are verified on
  every request and the secret is more exposed; a leaked access secret must
  not be able to mint 30-day refresh tokens.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, events/, or cache/.
"""

import logging
import secrets
from datetime import datetime, timezone
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("eventdesk.config")


def now_iso() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (with DEBUG=true for the secrets).
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
    # below either generates a dev secret or raises, so callers never see "".
    jwt_secret: str = ""
    jwt_refresh_secret: str = ""

    # ------------------------------------------------------------------
    # Token lifetimes (seconds)
    # ------------------------------------------------------------------

    access_token_ttl_seconds: int = 24 * 60 * 60
    refresh_token_ttl_seconds: int = 30 * 24 * 60 * 60
    verification_token_ttl_seconds: int = 24 * 60 * 60

    # Resend deletes the previous verification link from the cache so only the
    # most recent email works. False keeps older links valid until their TTL.
    revoke_superseded_verification_tokens: bool = True

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    # Empty string means "use the default SQLite file next to the store".
    database_url: str = ""
    # Empty string selects the in-process cache (single worker, dev only).
    redis_url: str = ""
    redis_socket_timeout: float = 5.0

    # Read-through event cache TTLs, on the token cache backend.
    event_list_cache_ttl_seconds: int = 5 * 60
    event_cache_ttl_seconds: int = 10 * 60

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------

    app_url: str = "http://localhost:3000"
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    email_from: str = ""

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_jwt_secrets(self) -> "Settings":
        """Enforce the signing-secret policy.

        Dev mode (DEBUG=true): auto-generate missing secrets with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.

        Both modes: reject secrets shorter than 32 characters and reject a
            refresh secret equal to the access secret.
        """
        for field in ("jwt_secret", "jwt_refresh_secret"):
            if getattr(self, field):
                continue
            if self.debug:
                setattr(self, field, secrets.token_hex(32))
                logger.warning(
                    "WARNING: Using auto-generated %s. Tokens will not persist across restarts.",
                    field.upper(),
                )
            else:
                raise ValueError(
                    f"{field.upper()} is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.jwt_secret) < 32 or len(self.jwt_refresh_secret) < 32:
            raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must be at least 32 characters.")
        if self.jwt_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_REFRESH_SECRET must differ from JWT_SECRET.")
        for field in (
            "access_token_ttl_seconds",
            "refresh_token_ttl_seconds",
            "verification_token_ttl_seconds",
            "event_list_cache_ttl_seconds",
            "event_cache_ttl_seconds",
        ):
            if getattr(self, field) <= 0:
                raise ValueError(f"{field.upper()} must be a positive number of seconds.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
