"""
Configuration-backed dependencies: settings access and operator authentication.
"""

import hmac
from functools import lru_cache
from typing import Annotated, Optional

from fastapi import Depends, Header

from accounting_gateway.core.config import AppSettings, get_settings
from accounting_gateway.core.errors import AuthenticationError


@lru_cache()
def _settings_singleton() -> AppSettings:
    """Ensure configuration is created once per process."""
    return get_settings()


def get_app_settings() -> AppSettings:
    """FastAPI dependency returning application settings."""
    return _settings_singleton()


def require_maintenance_token(
    settings: Annotated[AppSettings, Depends(get_app_settings)],
    authorization: Annotated[Optional[str], Header()] = None,
) -> None:
    """Guard the maintenance hooks when ``MAINTENANCE_TOKEN`` is configured."""
    expected = settings.security.maintenance_token
    if not expected:
        return
    scheme, _, supplied = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(
        supplied.strip().encode("utf-8"), expected.encode("utf-8")
    ):
        raise AuthenticationError("Maintenance token required", code="maintenance_unauthorized")


SettingsDependency = Depends(get_app_settings)

__all__ = ["SettingsDependency", "get_app_settings", "require_maintenance_token"]
