"""
core/config.py -- Settings for the ITAM access service.

Every environment read goes through get_settings(); nothing else touches
os.environ. Values come from the environment or a .env file, with names
mapped case-insensitively (secret_key <- SECRET_KEY).

SECRET_KEY handling: in DEBUG a random key is generated and a warning is
logged; otherwise a missing key is a startup error. Keys under 32 characters
are always rejected.

IDENTITY_CACHE_TTL_SECONDS: 0 (default) reads the user store on every
authorization check. A positive value turns on the reconciler's per-user
cache, which user-store writes invalidate before they return.

core/ imports nothing from api/, auth/, activity/ or rbac/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("itam.config")


class Settings(BaseSettings):
    """Every field has a default; only SECRET_KEY (outside DEBUG) must be set."""

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
    # Storage
    # ------------------------------------------------------------------

    # Empty string means "use the store's default SQLite file".
    user_db_url: str = ""
    activity_db_url: str = ""

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    token_expire_seconds: int = 3600
    identity_cache_ttl_seconds: float = Field(default=0.0, ge=0.0)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Generate a key in DEBUG, require one otherwise, and refuse short keys."""
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


@lru_cache
def get_settings() -> Settings:
    """Cached Settings. Tests that change the environment call get_settings.cache_clear()."""
    return Settings()
