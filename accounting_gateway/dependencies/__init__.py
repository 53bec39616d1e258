"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_accounting_client,
    get_maintenance_service,
    get_pkce_orchestrator,
    get_protocol_dispatcher,
    get_session_manager,
    get_state_store,
    get_token_cipher_service,
    get_token_vault,
    get_tool_registry,
    get_webhook_ingestor,
    get_xero_oauth_client,
)
from .config import SettingsDependency, get_app_settings, require_maintenance_token

__all__ = [
    "SettingsDependency",
    "get_accounting_client",
    "get_app_settings",
    "get_maintenance_service",
    "get_pkce_orchestrator",
    "get_protocol_dispatcher",
    "get_session_manager",
    "get_state_store",
    "get_token_cipher_service",
    "get_token_vault",
    "get_tool_registry",
    "get_webhook_ingestor",
    "get_xero_oauth_client",
    "require_maintenance_token",
]
