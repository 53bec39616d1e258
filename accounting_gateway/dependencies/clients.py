"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from functools import lru_cache

from accounting_gateway.clients import (
    SQLiteStateStore,
    XeroAccountingClient,
    XeroOAuthClient,
)
from accounting_gateway.core.config import get_settings
from accounting_gateway.services import (
    MaintenanceService,
    PKCEOrchestrator,
    ProtocolDispatcher,
    SessionManager,
    TokenCipherService,
    TokenVault,
    ToolRegistry,
    WebhookIngestor,
)


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_state_store() -> SQLiteStateStore:
    """Provide the shared durable state store."""
    return SQLiteStateStore(_settings().state_db_path)


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    return TokenCipherService.from_secret(_settings().security.encryption_key)


@lru_cache()
def get_xero_oauth_client() -> XeroOAuthClient:
    """Create a singleton authorization-server client."""
    settings = _settings()
    return XeroOAuthClient(settings.xero, settings.oauth)


@lru_cache()
def get_accounting_client() -> XeroAccountingClient:
    """Provide the accounting API client."""
    settings = _settings()
    return XeroAccountingClient(settings.xero, settings.oauth)


@lru_cache()
def get_pkce_orchestrator() -> PKCEOrchestrator:
    return PKCEOrchestrator(
        get_state_store(),
        get_xero_oauth_client(),
        state_ttl_seconds=_settings().oauth.state_ttl_seconds,
    )


@lru_cache()
def get_token_vault() -> TokenVault:
    """Provide the vault; a single instance keeps refresh locks process-wide."""
    return TokenVault(
        get_state_store(),
        get_xero_oauth_client(),
        get_token_cipher_service(),
        refresh_window_seconds=_settings().sessions.refresh_window_seconds,
    )


@lru_cache()
def get_session_manager() -> SessionManager:
    return SessionManager(
        get_state_store(),
        session_ttl_seconds=_settings().sessions.session_ttl_seconds,
    )


@lru_cache()
def get_webhook_ingestor() -> WebhookIngestor:
    """Provide the webhook ingestor with the default recording handlers."""
    settings = _settings()
    return WebhookIngestor(
        get_state_store(),
        secret=settings.xero.webhook_key,
        retention_seconds=settings.webhooks.retention_seconds,
        ledger_high_water=settings.webhooks.ledger_high_water,
        event_timeout_seconds=settings.webhooks.event_timeout_seconds,
        claim_timeout_seconds=settings.webhooks.claim_timeout_seconds,
    )


@lru_cache()
def get_tool_registry() -> ToolRegistry:
    return ToolRegistry(get_token_vault(), get_accounting_client())


@lru_cache()
def get_protocol_dispatcher() -> ProtocolDispatcher:
    """Provide the JSON-RPC dispatcher for the protocol endpoint."""
    return ProtocolDispatcher(get_session_manager(), get_tool_registry())


@lru_cache()
def get_maintenance_service() -> MaintenanceService:
    return MaintenanceService(
        get_state_store(),
        get_session_manager(),
        get_token_vault(),
        get_webhook_ingestor(),
        proactive_refresh_seconds=_settings().sessions.proactive_refresh_window_seconds,
    )


__all__ = [
    "get_accounting_client",
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
]
