"""
═══════════════════════════════════════════════════════════════════════════════
Rijig Portal: Application Configuration
═══════════════════════════════════════════════════════════════════════════════

Settings class of the portal backend. Groups:
    • API server (host, port, CORS)
    • Session cookie (name, secrets for rotation, lifetime)
    • Onboarding timings (OTP expiry, login context abandonment timeout)
    • Identity provider (base URL, API key, timeout)
    • In-memory provider (demo OTP, demo administrator, JWT minting)
    • NATS (event publishing)
"""

from __future__ import annotations

import json
from functools import lru_cache
from typing import List

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

UNSAFE_SECRETS = {"CHANGE_ME_IN_PRODUCTION", "secret", "s3cr3t", "changeme", ""}


class PortalSettings(BaseSettings):
    """
    Portal backend settings.

    Every value is read from environment variables or the ``.env`` file.
    No prefix is used (``SESSION_SECRETS``, ``PROVIDER_BASE_URL`` etc.).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Runtime environment ───────────────────────────────────────────────
    app_env: str = Field(
        default="development",
        description="Application environment: development | staging | production",
    )

    # ── API server ────────────────────────────────────────────────────────
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8300, ge=1, le=65535)
    log_level: str = Field(default="INFO")
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"]
    )

    @field_validator("cors_origins", "session_secrets", mode="before")
    @classmethod
    def parse_json_list(cls, v: str | List[str]) -> List[str]:
        """Parses list settings given as a JSON string."""
        if isinstance(v, str):
            return json.loads(v)
        return v

    # ── Session cookie ────────────────────────────────────────────────────
    session_cookie_name: str = Field(default="__rijig_session")
    session_secrets: List[str] = Field(
        default=["CHANGE_ME_IN_PRODUCTION"],
        description="First secret encrypts new cookies, all of them are accepted on read",
    )
    session_max_age_seconds: int = Field(default=7 * 24 * 3600, ge=60)

    # ── Onboarding timings ────────────────────────────────────────────────
    otp_expiry_minutes: int = Field(default=5, ge=1)
    login_context_ttl_seconds: int = Field(
        default=600,
        ge=30,
        description="Abandoned login (OTP verified, PIN not yet) is dropped after this",
    )

    # ── Identity provider ─────────────────────────────────────────────────
    provider_base_url: str = Field(
        default="",
        description="Base URL of the identity API; empty activates the in-memory provider",
    )
    provider_api_key: str = Field(default="")
    provider_timeout_seconds: float = Field(default=30.0, gt=0)

    # ── In-memory provider (development only) ─────────────────────────────
    demo_otp_code: str = Field(default="1234", pattern=r"^(\d{4})?$")
    demo_admin_email: str = Field(default="admin@wastemanagement.com")
    demo_admin_password: str = Field(default="admin123")
    jwt_secret_key: str = Field(default="CHANGE_ME_IN_PRODUCTION")
    jwt_algorithm: str = Field(default="HS256")
    jwt_access_token_expire_minutes: int = Field(default=60)

    # ── NATS (event publishing) ───────────────────────────────────────────
    nats_url: str = Field(default="", description="Empty disables event publishing")

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def uses_memory_provider(self) -> bool:
        return not self.provider_base_url

    # ── Production guard rails ────────────────────────────────────────────
    @model_validator(mode="after")
    def _validate_production(self) -> "PortalSettings":
        """
        Production must run with a real session secret and a real provider.

        The in-memory provider mints its own tokens and accepts a fixed demo
        OTP, so it is refused outside development and staging.
        """
        if not self.session_secrets:
            raise ValueError("SESSION_SECRETS must contain at least one secret")
        if self.is_production:
            if self.session_secrets[0] in UNSAFE_SECRETS:
                raise ValueError(
                    "SESSION_SECRETS must be changed for production! "
                    'Generate one: python -c "import secrets; print(secrets.token_hex(32))"'
                )
            if self.uses_memory_provider:
                raise ValueError("PROVIDER_BASE_URL is required in production")
        return self


@lru_cache
def get_settings() -> PortalSettings:
    """
    Returns the single PortalSettings instance.

    ``@lru_cache`` guarantees the object is built on the first call only.
    """
    return PortalSettings()


__all__ = ["PortalSettings", "get_settings"]
