"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the access-control service happen here. No
module should call os.getenv() or os.environ.get() directly.

Design patterns used:
  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Used for the ENVIRONMENT-conditional SECRET_KEY policy:
      a production-flagged process refuses to start without a key, every other
      environment generates a random key held only in memory.

  Explicit object, not a hidden global: the app factory (api/main.py) and the
      CLI (main.py) construct one Settings and pass it down. TokenService gets
      the signing key from the instance it is handed, never from module state.
      get_settings() exists only for those two entry points.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. JWT HS256 signing
  relies on key entropy -- a short key weakens every issued token.

  With a generated key, every token issued before a restart becomes
  unverifiable after it. Expected for development.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or audit/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("netinv.config")

_DEFAULT_DB_URL = f"sqlite+aiosqlite:///{Path(__file__).resolve().parent.parent / 'netinv.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces the
    signing-key policy at construction time.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    # "production" flags a production deployment. Anything else is treated
    # as a non-production environment (development, test, staging...).
    environment: str = "development"
    log_level: str = "INFO"
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a key or raises, so callers never see "".
    secret_key: str = ""
    token_expire_seconds: int = 24 * 60 * 60
    bcrypt_rounds: int = 10

    # When set and the users table is empty at startup, an "admin" account
    # with the administrator role is created with this password.
    bootstrap_admin_password: str = ""

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Production (ENVIRONMENT=production): refuse to start if SECRET_KEY is
            missing.

        Any other environment: generate a random key with a warning. The key
            lives only in this Settings instance for the process lifetime.

        Both: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.is_production:
                raise ValueError(
                    "SECRET_KEY is required when ENVIRONMENT=production. "
                    "Set SECRET_KEY in your environment or .env file."
                )
            self.secret_key = secrets.token_hex(32)
            logger.warning(
                "Using auto-generated SECRET_KEY. Issued tokens will not survive a restart."
            )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.bcrypt_rounds < 4 or self.bcrypt_rounds > 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        if self.token_expire_seconds <= 0:
            raise ValueError("TOKEN_EXPIRE_SECONDS must be positive.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process Settings, constructed on first call.

    Only asgi.py and the CLI call this. Library code receives Settings as an
    argument. In tests, build Settings(...) directly instead.
    """
    return Settings()
