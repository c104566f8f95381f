"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for LMS Bridge happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. moodle_url -> MOODLE_URL).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Enforces the startup contract: no remote directory URL or
      administrative token means the process refuses to start.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. Session JWTs are
  HMAC-signed with it.

  In production mode (DEBUG not set or false), a missing SECRET_KEY is a hard
  startup failure. Dev mode generates a throwaway key with a warning.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or directory/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("lmsbridge.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'lmsbridge_users.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Everything except MOODLE_URL and MOODLE_TOKEN has a default. Those two
    describe the system of record and the process cannot do anything useful
    without them.
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
    # Session tokens
    # ------------------------------------------------------------------

    token_expire_seconds: int = 8 * 3600

    # ------------------------------------------------------------------
    # Remote directory (Moodle web services)
    # ------------------------------------------------------------------

    moodle_url: str = ""
    moodle_token: str = ""
    moodle_service: str = "moodle_mobile_app"
    moodle_timeout: float = 10.0
    # 3 = editingteacher, 4 = teacher (non-editing) on a stock Moodle install.
    teacher_role_id: int = 3
    system_context_id: int = 1

    # ------------------------------------------------------------------
    # Local user cache
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_remote_directory(self) -> "Settings":
        """Refuse to start without the remote directory URL and admin token."""
        missing = [name for name in ("moodle_url", "moodle_token") if not getattr(self, name)]
        if missing:
            raise ValueError(
                f"Remote directory is not configured: {', '.join(n.upper() for n in missing)} must be set."
            )
        self.moodle_url = self.moodle_url.rstrip("/")
        if self.teacher_role_id not in (3, 4):
            raise ValueError("TEACHER_ROLE_ID must be 3 (editing teacher) or 4 (non-editing teacher).")
        return self

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
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

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
