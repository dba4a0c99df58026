"""
core/config.py -- Centralized configuration via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
directly -- import get_settings() instead, or accept a Settings instance.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance afterwards.

  BaseSettings (pydantic-settings): field names map to env var names
      (e.g. secret_key -> SECRET_KEY, ldap_server -> LDAP_SERVER).

  @model_validator(mode="after"): DEBUG-conditional SECRET_KEY policy. Dev
      mode generates a key with a warning; production refuses to start.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected. It is the HMAC key for
       every access token this service signs.

  [M7] Outside DEBUG, a missing SECRET_KEY is a hard startup failure.

  The signing key and any directory password are never logged. Settings is
  not printed anywhere; the validator only logs that a key was generated.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tenantauth.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be built in tests without a
    .env file (DEBUG=true supplies a throwaway key).
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
    database_url: str = "sqlite:///tenantauth.db"

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    token_expiration_minutes: int = 60
    refresh_token_expiration_days: int = 7

    # ------------------------------------------------------------------
    # Accounts and tenants
    # ------------------------------------------------------------------

    require_confirmed_account: bool = False
    root_tenant_id: str = "root"

    # ------------------------------------------------------------------
    # Directory (LDAP / Active Directory). Empty server = disabled.
    # ------------------------------------------------------------------

    ldap_server: str = ""
    ldap_port: int = 389
    ldap_domain: str = ""
    ldap_query_base: str = ""
    ldap_timeout_seconds: int = 10

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Issued tokens will not survive a restart.

        Production mode: refuse to start without SECRET_KEY.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Tokens will not survive a restart.")
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
    def ldap_enabled(self) -> bool:
        return bool(self.ldap_server and self.ldap_query_base)


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() if you need to inject different
    environment variables, or construct Settings(...) directly.
    """
    return Settings()
