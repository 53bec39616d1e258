"""Persistent record types owned by the state store."""

from .records import (
    EPOCH,
    Account,
    EncryptedToken,
    MCPSession,
    OAuthState,
    PKCEVerifier,
    TenantConnection,
    WebhookEventRecord,
    WebhookLedgerEntry,
    utc_now,
)

__all__ = [
    "EPOCH",
    "Account",
    "EncryptedToken",
    "MCPSession",
    "OAuthState",
    "PKCEVerifier",
    "TenantConnection",
    "WebhookEventRecord",
    "WebhookLedgerEntry",
    "utc_now",
]
