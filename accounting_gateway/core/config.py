"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI app, the maintenance hooks and
the operator scripts share a consistent configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Optional

import os

from pydantic import AnyHttpUrl, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


class XeroSettings(BaseSettings):
    """Configuration required for interacting with the accounting platform."""

    client_id: str = Field(..., validation_alias="XERO_CLIENT_ID")
    client_secret: str = Field(..., validation_alias="XERO_CLIENT_SECRET")
    redirect_uri: AnyHttpUrl = Field(..., validation_alias="XERO_REDIRECT_URI")
    webhook_key: str = Field(
        ...,
        validation_alias="XERO_WEBHOOK_KEY",
        description="Shared secret used to sign webhook deliveries.",
    )
    authorize_url: str = Field(
        "https://login.xero.com/identity/connect/authorize",
        validation_alias="XERO_AUTHORIZE_URL",
    )
    token_url: str = Field(
        "https://identity.xero.com/connect/token",
        validation_alias="XERO_TOKEN_URL",
    )
    api_base_url: str = Field(
        "https://api.xero.com/api.xro/2.0",
        validation_alias="XERO_API_BASE_URL",
    )
    connections_url: str = Field(
        "https://api.xero.com/connections",
        validation_alias="XERO_CONNECTIONS_URL",
    )

    @field_validator("webhook_key")
    @classmethod
    def _require_webhook_key(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("XERO_WEBHOOK_KEY must not be blank.")
        return value


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    encryption_key: str = Field(
        ...,
        validation_alias="ENCRYPTION_KEY",
        description=(
            "32-byte key for encrypting stored tokens, as 64 hex characters or "
            "urlsafe base64."
        ),
    )
    maintenance_token: Optional[str] = Field(
        None,
        validation_alias="MAINTENANCE_TOKEN",
        description="Bearer token required by the maintenance hooks when set.",
    )


class OAuthSettings(BaseSettings):
    """OAuth flow configuration."""

    state_ttl_seconds: int = Field(600, validation_alias="OAUTH_STATE_TTL")
    http_timeout_seconds: float = Field(10.0, validation_alias="OAUTH_HTTP_TIMEOUT")
    scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        (
            "openid",
            "profile",
            "email",
            "offline_access",
            "accounting.transactions",
            "accounting.contacts",
            "accounting.settings",
        ),
        validation_alias="OAUTH_SCOPES",
    )

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scopes(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        """Support providing scopes as a comma-separated string."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(value)
        return tuple(scope.strip() for scope in value.split(",") if scope.strip())


class SessionSettings(BaseSettings):
    """Lifetimes for sessions and stored credentials."""

    session_ttl_seconds: int = Field(86400, validation_alias="SESSION_TTL")
    refresh_window_seconds: int = Field(300, validation_alias="TOKEN_REFRESH_WINDOW")
    proactive_refresh_window_seconds: int = Field(
        3600, validation_alias="PROACTIVE_REFRESH_WINDOW"
    )


class WebhookSettings(BaseSettings):
    """Webhook ingestion tuning."""

    retention_seconds: int = Field(86400, validation_alias="WEBHOOK_RETENTION")
    ledger_high_water: int = Field(1000, validation_alias="WEBHOOK_LEDGER_HIGH_WATER")
    event_timeout_seconds: float = Field(10.0, validation_alias="WEBHOOK_EVENT_TIMEOUT")
    claim_timeout_seconds: int = Field(300, validation_alias="WEBHOOK_CLAIM_TIMEOUT")


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    app_base_url: HttpUrl = Field(
        "http://localhost:3000",
        validation_alias="APP_BASE_URL",
        description="Application root that OAuth callbacks redirect back to.",
    )
    state_db_path: str = Field("data/gateway_state.db", validation_alias="STATE_DB_PATH")
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    xero: XeroSettings = Field(default_factory=XeroSettings)
    sessions: SessionSettings = Field(default_factory=SessionSettings)
    webhooks: WebhookSettings = Field(default_factory=WebhookSettings)


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "OAuthSettings",
    "SecuritySettings",
    "SessionSettings",
    "WebhookSettings",
    "XeroSettings",
    "get_settings",
]
