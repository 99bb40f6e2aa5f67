"""
core/config.py -- ClubGate settings, read from the environment and .env.

This is the only module that looks at environment variables; everything else
calls get_settings(). Field names map one-to-one onto upper-case variables
(secret_key -> SECRET_KEY, bcrypt_rounds -> BCRYPT_ROUNDS). List fields such
as ALLOWED_HOSTS take JSON: ALLOWED_HOSTS='["auth.club.org"]'.

get_settings() is lru_cached, so the first call fixes the configuration for
the life of the process. Modules that read it at import time (auth/tokens.py,
api/limiter.py) therefore see whatever the environment held at first import;
the test suite sets its variables before importing anything from the app.

SECRET_KEY signs every access token. A missing key is fatal unless DEBUG is
on, and a key under 32 characters is always fatal.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("clubgate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'clubgate_auth.db'}"
_MIN_KEY_LENGTH = 32


class Settings(BaseSettings):
    """Every field has a default, so a bare Settings() works with DEBUG=true."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False
    # "" means unset; validate_secret_key() replaces or rejects it.
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # Token lifetime, and the window of the session created alongside it.
    token_expire_seconds: int = Field(default=7 * 24 * 3600, gt=0)
    # Tests run with 4; never go below 12 in production.
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    session_sweep_interval_seconds: int = Field(default=3600, gt=0)

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # slowapi limit strings, applied per client IP.
    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/minute"
    signup_rate_limit: str = "5/minute"
    reset_rate_limit: str = "5/minute"

    # Reset tokens are single use and short lived. With "log" the raw token is
    # written to the clubgate.delivery logger for an operator or mail relay to
    # pick up; with "none" only the CLI (main.py issue-reset) can hand one out.
    password_reset_expire_seconds: int = Field(default=3600, gt=0)
    reset_delivery: Literal["log", "none"] = "log"

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        if not self.secret_key:
            if not self.debug:
                raise ValueError("SECRET_KEY must be set (or run with DEBUG=true for a throwaway dev key).")
            # Fresh per process: every token is invalidated by a restart.
            self.secret_key = secrets.token_hex(_MIN_KEY_LENGTH)
            logger.warning("DEBUG is on and SECRET_KEY is unset; generated a temporary signing key.")
        if len(self.secret_key) < _MIN_KEY_LENGTH:
            raise ValueError(f"SECRET_KEY must be at least {_MIN_KEY_LENGTH} characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
