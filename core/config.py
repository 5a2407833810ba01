"""
core/config.py -- Centralized service configuration via pydantic-settings.

All environment variable reads for the identity service happen here. No module
should call os.getenv() or os.environ.get() directly.

Two ways to obtain a Settings instance:

  get_settings()   lru_cache singleton. Used ONLY by the assembly points
                   (api/main.py, api/limiter.py and the main.py CLI).

  Settings(...)    explicit construction. Every component (TokenService,
                   IdentityEngine, AccountStore, notifiers) receives its
                   settings through its constructor, so tests build a fresh
                   Settings per case with the values they need (e.g. a
                   lockout threshold of 3) without touching the environment.

Security notes:
  - SECRET_KEY shorter than 32 chars is rejected outright. JWT HMAC signing
    relies on key entropy -- a short key weakens every access token.

  - In production mode (DEBUG not set or false), a missing SECRET_KEY is a
    hard startup failure. In debug mode a random key is generated with a
    warning; access tokens will not survive a restart.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("identity.config")


class Settings(BaseSettings):
    """Service settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (given DEBUG=true or an explicit
    secret_key). Field names map to upper-cased env var names.
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
    # Access / refresh tokens
    # ------------------------------------------------------------------

    jwt_issuer: str = "identity-service"
    jwt_audience: str = "identity-clients"
    access_token_expire_minutes: int = Field(default=15, gt=0)
    refresh_token_expire_days: int = Field(default=7, gt=0)
    refresh_cookie_name: str = "refreshToken"
    secure_cookies: bool = True

    # ------------------------------------------------------------------
    # One-time passcodes and lockout policy
    # ------------------------------------------------------------------

    # bcrypt cost factor. Tests drop this to the minimum (4).
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    otp_length: int = Field(default=6, ge=4, le=10)
    otp_expire_minutes: int = Field(default=15, gt=0)
    lockout_threshold: int = Field(default=5, gt=0)
    lockout_minutes: int = Field(default=15, gt=0)

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///identity.db"
    db_timeout_seconds: float = Field(default=5.0, gt=0)

    # ------------------------------------------------------------------
    # Outbound email (empty smtp_host = log-only dispatcher)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_from_email: str = ""
    smtp_from_name: str = "Identity Service"
    smtp_timeout_seconds: float = Field(default=10.0, gt=0)

    # ------------------------------------------------------------------
    # HTTP edge
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/minute"
    otp_rate_limit: str = "5/minute"
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]
    allowed_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
        Production mode: refuse to start if SECRET_KEY is missing.
        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Access tokens will not survive a restart."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and (self.smtp_from_email or self.smtp_user))


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings singleton.

    Only assembly code calls this. Components take a Settings argument instead.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
