"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Doorman happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. database_url -> DATABASE_URL). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Used to refuse weak password hashing
      outside dev mode and nonsensical session lifetimes.

Security notes:
  [M6] PASSWORD_KDF_ROUNDS below 50 is rejected unless DEBUG=true. The test
       suite lowers the cost to keep hashing fast; production must not.

  [M7] SECURE_COOKIES defaults to true. Session and OAuth state cookies are
       only sent over HTTPS unless a developer explicitly opts out.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
or auth/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("doorman.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'doorman.db'}"

# bcrypt.kdf rounds below this are only acceptable for local development.
_MIN_KDF_ROUNDS = 50


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
    database_url: str = _DEFAULT_DB_URL
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Sessions and cookies
    # ------------------------------------------------------------------

    secure_cookies: bool = True
    session_cookie_name: str = "session"
    state_cookie_name: str = "oauth_state"
    session_ttl_days: int = 7
    # "Keep me logged in" on the password form.
    session_ttl_days_extended: int = 30
    social_session_ttl_days: int = 30
    oauth_state_ttl_seconds: int = 600

    # ------------------------------------------------------------------
    # Password hashing
    # ------------------------------------------------------------------

    password_kdf_rounds: int = 100

    # ------------------------------------------------------------------
    # Redirect targets for the browser OAuth flow
    # ------------------------------------------------------------------

    login_page_url: str = "/index.html"
    post_login_url: str = "/main.html"

    # ------------------------------------------------------------------
    # OAuth providers (optional -- empty string means provider is disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""
    kakao_client_id: str = ""
    kakao_client_secret: str = ""
    naver_client_id: str = ""
    naver_client_secret: str = ""

    # Seconds before an outbound provider call is abandoned.
    oauth_http_timeout: float = 10.0

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_security_settings(self) -> "Settings":
        """Enforce hashing cost and session lifetime policy [M6].

        Dev mode (DEBUG=true): a low KDF round count is accepted with a
            warning so tests and local runs stay fast.

        Production mode: fewer than 50 rounds is a hard startup failure.

        Both modes: every session TTL and the state cookie TTL must be positive.
        """
        if self.password_kdf_rounds < 1:
            raise ValueError("PASSWORD_KDF_ROUNDS must be a positive integer.")
        if self.password_kdf_rounds < _MIN_KDF_ROUNDS:
            if self.debug:
                logger.warning(
                    "WARNING: PASSWORD_KDF_ROUNDS=%d is below the production minimum of %d.",
                    self.password_kdf_rounds,
                    _MIN_KDF_ROUNDS,
                )
            else:
                raise ValueError(
                    f"PASSWORD_KDF_ROUNDS must be at least {_MIN_KDF_ROUNDS} in production mode. "
                    "To run with a lower cost, set DEBUG=true."
                )
        ttls = (
            self.session_ttl_days,
            self.session_ttl_days_extended,
            self.social_session_ttl_days,
            self.oauth_state_ttl_seconds,
        )
        if min(ttls) <= 0:
            raise ValueError("Session and OAuth state lifetimes must be positive.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
