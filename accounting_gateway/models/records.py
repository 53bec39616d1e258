"""
Domain records persisted by the state store.

The store is the only authority for these records; instances held in memory
are snapshots and must be re-read before being trusted for security decisions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def to_epoch(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


@dataclass(slots=True)
class Account:
    id: str
    email: str
    name: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class TenantConnection:
    """An accounting-platform organization connected to an account."""

    tenant_id: str
    account_id: str
    tenant_name: Optional[str] = None
    tenant_type: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class OAuthState:
    """Single-use CSRF token issued when an authorization request starts."""

    state: str
    account_id: str
    created_at: datetime
    expires_at: datetime


@dataclass(slots=True)
class PKCEVerifier:
    state: str
    verifier: str
    expires_at: datetime


@dataclass(slots=True)
class EncryptedToken:
    """Credential row; both token fields hold ciphertext only."""

    id: str
    account_id: str
    tenant_id: Optional[str]
    access_token_cipher: str
    refresh_token_cipher: str
    token_type: str
    scope: Optional[str]
    expires_at: datetime
    created_at: datetime
    updated_at: datetime

    def is_soft_invalidated(self) -> bool:
        return self.expires_at <= EPOCH


@dataclass(slots=True)
class MCPSession:
    """Binds a protocol client to one account and at most one tenant."""

    session_id: str
    account_id: str
    tenant_id: Optional[str]
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass(slots=True)
class WebhookLedgerEntry:
    event_key: str
    status: str
    first_seen_at: datetime


@dataclass(slots=True)
class WebhookEventRecord:
    """Audit row for an accepted webhook event."""

    id: int
    request_id: str
    event_key: str
    resource_id: str
    resource_type: str
    event_type: str
    tenant_id: Optional[str]
    payload: Dict[str, Any]
    received_at: datetime


__all__ = [
    "Account",
    "EPOCH",
    "EncryptedToken",
    "MCPSession",
    "OAuthState",
    "PKCEVerifier",
    "TenantConnection",
    "WebhookEventRecord",
    "WebhookLedgerEntry",
    "from_epoch",
    "to_epoch",
    "utc_now",
]
