"""
core/config.py -- Centralized configuration via pydantic-settings.

All environment variable reads for tokenward happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead,
or build a Settings() explicitly and pass it down (tests do this).

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. issuer -> ISSUER, bcrypt_rounds -> BCRYPT_ROUNDS).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Bad values fail at startup, not on the first login.

Key sources:
  PUBLIC_KEY / PRIVATE_KEY hold either literal PEM content or a file path.
  Empty means the default paths under ./rsa_keys/. auth/keys.py decides which
  interpretation applies; this module only carries the strings.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tokenward.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'tokenward_auth.db'}"

DEFAULT_PUBLIC_KEY_PATH = "rsa_keys/pubkey.pem"
DEFAULT_PRIVATE_KEY_PATH = "rsa_keys/privkey.pem"


class Settings(BaseSettings):
    """Settings loaded from environment variables and .env file.

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

    # Development mode: tokenward loggers at DEBUG and incident detail echoed
    # in API error bodies. Never enable in production.
    debug: bool = False
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Signing keys (literal PEM or file path; "" = default path)
    # ------------------------------------------------------------------

    public_key: str = ""
    private_key: str = ""

    # ------------------------------------------------------------------
    # Credentials and sessions
    # ------------------------------------------------------------------

    issuer: str = "tokenward"
    identifier_field: Literal["email", "username"] = "email"
    bcrypt_rounds: int = 12
    # 12 hours. Every authenticated request rotates the session, so this only
    # bounds how long an idle client can hold an unused token.
    token_expire_seconds: int = 12 * 60 * 60

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_auth_settings(self) -> "Settings":
        """Reject settings that would produce unusable or weak credentials.

        bcrypt accepts cost factors 4..31; anything outside that range raises
        deep inside bcrypt.gensalt() on the first registration, so we fail here
        instead. The issuer is embedded in and checked against every token, so
        an empty value would make issuance and verification disagree silently.
        """
        if not self.issuer.strip():
            raise ValueError("ISSUER must not be empty.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        if self.token_expire_seconds <= 0:
            raise ValueError("TOKEN_EXPIRE_SECONDS must be positive.")
        if self.bcrypt_rounds < 10 and not self.debug:
            logger.warning("Running with BCRYPT_ROUNDS=%d. Do not use this outside development.", self.bcrypt_rounds)
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
