"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the login & consent provider happen here.
No module should call os.getenv() or os.environ.get() directly -- import
get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. hydra_base_admin_url -> HYDRA_BASE_ADMIN_URL).

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Rejects throttling settings that would
      silently disable the guard.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("consentgate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'consentgate.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
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
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Authorization server (Hydra admin API)
    # ------------------------------------------------------------------

    hydra_base_admin_url: str = "http://localhost:4445"
    hydra_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Request context
    # ------------------------------------------------------------------

    # Set by the reverse proxy in front of us. The socket peer is only used
    # when the header is missing (local development).
    real_ip_header: str = "X-Real-Ip"

    # ------------------------------------------------------------------
    # Links surfaced to the login / consent pages
    # ------------------------------------------------------------------

    password_reset_url: str = "https://faforever.com/account/password/reset"
    register_account_url: str = "https://faforever.com/account/register"
    account_link_url: str = "https://www.faforever.com/account/link"

    # Scope that requires a linked Steam or GOG account.
    lobby_scope: str = "lobby"

    # ------------------------------------------------------------------
    # Failed-login throttling
    # ------------------------------------------------------------------

    failed_login_account_threshold: int = 5
    failed_login_attempt_threshold: int = 10
    failed_login_throttling_minutes: int = 5
    failed_login_days_to_check: int = 1

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    login_rate_limit: str = "30/minute"
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_throttling(self) -> "Settings":
        """Refuse settings that would turn the failed-login guard into a no-op.

        Negative thresholds would throttle everybody; a zero cooldown or a
        zero lookback would throttle nobody. Both are configuration mistakes,
        so startup fails instead of running with a broken guard.
        """
        if self.failed_login_account_threshold < 0 or self.failed_login_attempt_threshold < 0:
            raise ValueError("FAILED_LOGIN_*_THRESHOLD values must not be negative.")
        if self.failed_login_throttling_minutes <= 0:
            raise ValueError("FAILED_LOGIN_THROTTLING_MINUTES must be positive.")
        if self.failed_login_days_to_check <= 0:
            raise ValueError("FAILED_LOGIN_DAYS_TO_CHECK must be positive.")
        self.hydra_base_admin_url = self.hydra_base_admin_url.rstrip("/")
        if self.debug:
            logger.warning("DEBUG is enabled -- do not run this configuration in production.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
