"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for BidBuy Auth happen here. No module should
call os.getenv() or os.environ.get() directly.

Unlike a module-level settings singleton read at import time, every component
(store, hasher, signer, flows) receives a Settings instance through its
constructor. get_settings() exists for the application assembly only
(api/main.py, api/limiter.py, main.py); tests construct Settings(...)
directly with the values they need.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. JWT signing relies
  on key entropy -- a short key weakens every issued session token.

  In production mode (DEBUG not set or false), a missing SECRET_KEY is a
  hard startup failure. Dev mode generates a random key with a warning.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or notify/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("bidbuy.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'bidbuy_auth.db'}"


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
    # Empty string is the sentinel for "not configured".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Credential lifecycle
    # ------------------------------------------------------------------

    otp_ttl_seconds: int = Field(default=300, ge=30)
    reset_otp_ttl_seconds: int = Field(default=600, ge=30)
    reset_token_ttl_seconds: int = Field(default=900, ge=30)
    token_expire_seconds: int = Field(default=24 * 3600, ge=60)
    # 4 is the bcrypt floor and is only sensible in tests.
    bcrypt_rounds: int = Field(default=12, ge=4, le=16)

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------

    app_name: str = "BidBuy"
    base_url: str = "http://localhost:3000"
    # Empty gateway URL means emails are logged, not delivered (dev only).
    email_gateway_url: str = ""
    email_gateway_api_key: str = ""
    email_gateway_hmac_secret: str = ""
    email_timeout_seconds: int = 10

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    otp_rate_limit: str = "5/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Session tokens will not survive restart.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Session tokens will not persist across restarts.")
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
    def email_gateway_configured(self) -> bool:
        return bool(self.email_gateway_url and self.email_gateway_api_key and self.email_gateway_hmac_secret)


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Only the application assembly calls this. Components take Settings as a
    constructor argument. In tests: call get_settings.cache_clear() if you
    need to inject different environment variables.
    """
    return Settings()
