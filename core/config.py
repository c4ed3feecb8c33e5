"""
core/config.py -- Centralized configuration for the identity core via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. bcrypt_rounds -> BCRYPT_ROUNDS). Type coercion is built in.

  @model_validator(mode="after"): Cross-field validation once every field is
      resolved. Refuses impossible password policies and token lifetimes, and
      warns about half-configured OAuth providers.

Token expiry policy:
  The verify-email and password-reset checks are routed through a single
  policy knob. "strict" rejects a token whose expiration has passed. "legacy"
  reproduces the historical behaviour, which rejected tokens whose expiration
  was still in the future. "disabled" never rejects. The legacy semantics are
  awaiting product clarification and log a warning at startup.

Layer rule: core/ is the kernel. This module may not import from identity/.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("identity.config")

DEFAULT_DATABASE_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'identity.db'}"

# (client id field, client secret field) per provider name
PROVIDER_CREDENTIAL_FIELDS: dict[str, tuple[str, str]] = {
    "github": ("github_client_id", "github_client_secret"),
    "google": ("google_client_id", "google_client_secret"),
    "facebook": ("facebook_client_id", "facebook_client_secret"),
    "live": ("microsoft_client_id", "microsoft_client_secret"),
}


class Settings(BaseSettings):
    """Identity core settings loaded from environment variables and .env file.

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
    database_url: str = DEFAULT_DATABASE_URL

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    # bcrypt cost factor for newly generated salts. Existing salts keep
    # the cost they were created with.
    bcrypt_rounds: int = 12
    password_min_length: int = 6
    password_max_length: int = 100

    # ------------------------------------------------------------------
    # Single-use tokens
    # ------------------------------------------------------------------

    verify_email_token_hours: int = 24
    password_reset_token_hours: int = 24
    token_expiry_policy: Literal["strict", "legacy", "disabled"] = "strict"
    # When True, reset_password checks the verify-email expiration instead of
    # the reset expiration (historical behaviour).
    reset_checks_verify_expiration: bool = False

    # ------------------------------------------------------------------
    # OAuth providers (optional -- empty string means provider is disabled)
    # ------------------------------------------------------------------

    github_client_id: str = ""
    github_client_secret: str = ""
    google_client_id: str = ""
    google_client_secret: str = ""
    facebook_client_id: str = ""
    facebook_client_secret: str = ""
    microsoft_client_id: str = ""
    microsoft_client_secret: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_policies(self) -> "Settings":
        """Reject settings that would make every password or token unusable.

        Half-configured providers are not an error: the provider is simply
        not registered. We warn so the operator notices the typo.
        """
        if self.password_min_length < 1:
            raise ValueError("PASSWORD_MIN_LENGTH must be at least 1.")
        if self.password_min_length > self.password_max_length:
            raise ValueError("PASSWORD_MIN_LENGTH cannot exceed PASSWORD_MAX_LENGTH.")
        if self.verify_email_token_hours <= 0 or self.password_reset_token_hours <= 0:
            raise ValueError("Token lifetimes must be positive.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")

        for provider, (id_field, secret_field) in PROVIDER_CREDENTIAL_FIELDS.items():
            if bool(getattr(self, id_field)) != bool(getattr(self, secret_field)):
                logger.warning("%s OAuth is half-configured; the provider will stay disabled", provider)

        if self.token_expiry_policy == "legacy":
            logger.warning(
                "TOKEN_EXPIRY_POLICY=legacy rejects tokens that have NOT yet expired. "
                "Use only to reproduce historical behaviour."
            )
        return self

    def provider_credentials(self, provider: str) -> tuple[str, str]:
        """Return (client_id, client_secret) for a provider name; empty strings if unknown."""
        fields = PROVIDER_CREDENTIAL_FIELDS.get(provider)
        if fields is None:
            return "", ""
        return getattr(self, fields[0]), getattr(self, fields[1])


@lru_cache
def get_settings() -> Settings:
    """Return the Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
