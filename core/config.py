"""
core/config.py -- idgate settings, read from the environment via pydantic-settings.

get_settings() is the only place the process environment is consulted; other
modules receive values from it. Challenge parameters (verification mode and
expiry windows) reach auth.challenges.TokenPolicy through AuthService.from_settings,
so the token codec itself never reads configuration.

Field names map one-to-one onto upper-case variables (secret_key <- SECRET_KEY,
smtp_host <- SMTP_HOST, ...). A .env file in the working directory is read
too, with real environment variables taking precedence.

Startup refuses to proceed on an unusable configuration:
  - SECRET_KEY missing outside DEBUG, or shorter than 32 characters
    (every session JWT is signed with it)
  - MAIL_DRIVER=smtp without SMTP_HOST or SMTP_EMAIL
  - a non-positive challenge expiry window

Layer rule: core/ does not import from api/, auth/, or mail/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("idgate.config")


class Settings(BaseSettings):
    """Every setting idgate reads. All fields default, so Settings() works with no .env present."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    log_level: str = "INFO"
    # "" means unset; validate_secret_key replaces it or refuses to start.
    secret_key: str = ""

    # Externally reachable base URL. Verification and reset links are built
    # as {app_url}/verify-email?token=... and {app_url}/reset-password?token=...
    app_url: str = "http://localhost:3000"

    allowed_hosts: list[str] = ["*"]
    cors_origins: list[str] = ["http://localhost:3000"]

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///idgate.db"
    database_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    # 7 days
    token_expire_seconds: int = 7 * 24 * 3600

    # ------------------------------------------------------------------
    # Email challenges
    # ------------------------------------------------------------------

    email_verification_mode: Literal["otp", "token"] = "otp"
    email_verification_expiry_minutes: int = 15
    password_reset_expiry_minutes: int = 15

    # ------------------------------------------------------------------
    # Mail transport
    # ------------------------------------------------------------------

    mail_driver: Literal["console", "smtp"] = "console"
    smtp_host: str = ""
    smtp_port: int = 587
    # True = implicit TLS (SMTP_SSL, usually port 465); False = STARTTLS.
    smtp_secure: bool = False
    smtp_name: str = "idgate"
    smtp_user: str = ""
    smtp_pass: str = ""
    smtp_email: str = ""
    smtp_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Fill in or reject SECRET_KEY.

        With DEBUG on, a missing key is replaced by a random one; issued
        sessions then die with the process. Without DEBUG a missing key stops
        startup. A key under 32 characters is refused either way.
        """
        if not self.secret_key:
            if not self.debug:
                raise ValueError(
                    "SECRET_KEY is not set. Provide it via the environment or .env, "
                    "or set DEBUG=true for a throwaway development key."
                )
            self.secret_key = secrets.token_hex(32)
            logger.warning("SECRET_KEY not set; generated a temporary key. Sessions end at restart.")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_mail_driver(self) -> "Settings":
        """Require a host and sender address when MAIL_DRIVER=smtp."""
        if self.mail_driver == "smtp":
            missing = [name for name in ("smtp_host", "smtp_email") if not getattr(self, name)]
            if missing:
                raise ValueError(f"MAIL_DRIVER=smtp requires {', '.join(m.upper() for m in missing)}.")
        if self.email_verification_expiry_minutes <= 0 or self.password_reset_expiry_minutes <= 0:
            raise ValueError("Challenge expiry must be a positive number of minutes.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, built on first call.

    Tests that change the environment must call get_settings.cache_clear().
    """
    return Settings()
