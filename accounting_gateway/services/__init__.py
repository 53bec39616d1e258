"""Service layer exports."""

from .dispatcher import ProtocolDispatcher
from .maintenance import CleanupSummary, MaintenanceService
from .pkce import PKCEOrchestrator, generate_pkce_pair
from .sessions import SessionManager
from .token_cipher import TokenCipherService
from .token_vault import RefreshSummary, TokenVault
from .tools import ToolRegistry
from .webhooks import IngestResult, WebhookEventRouter, WebhookIngestor

__all__ = [
    "CleanupSummary",
    "IngestResult",
    "MaintenanceService",
    "PKCEOrchestrator",
    "ProtocolDispatcher",
    "RefreshSummary",
    "SessionManager",
    "TokenCipherService",
    "TokenVault",
    "ToolRegistry",
    "WebhookEventRouter",
    "WebhookIngestor",
    "generate_pkce_pair",
]
