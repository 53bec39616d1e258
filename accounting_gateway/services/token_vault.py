"""
Encrypted credential vault keyed by (account, tenant).

Tokens are encrypted at rest and transparently refreshed when a caller asks for
an access token inside the refresh window.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from accounting_gateway.clients.state_store import SQLiteStateStore, new_record_id
from accounting_gateway.clients.xero_auth import OAuthTokenExchangeError, XeroOAuthClient
from accounting_gateway.core.errors import CryptoError, TokenNotFoundError, TokenRefreshError
from accounting_gateway.models.records import EncryptedToken, utc_now
from accounting_gateway.schemas.auth import TokenSet
from accounting_gateway.services.token_cipher import TokenCipherService

logger = logging.getLogger(__name__)

TokenKey = tuple[str, Optional[str]]


@dataclass(slots=True)
class RefreshSummary:
    refreshed: int = 0
    failed: int = 0
    total: int = 0


class TokenVault:
    """Stores encrypted OAuth tokens and hands out valid access tokens."""

    def __init__(
        self,
        store: SQLiteStateStore,
        oauth_client: XeroOAuthClient,
        token_cipher: TokenCipherService,
        *,
        refresh_window_seconds: int = 300,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._oauth = oauth_client
        self._cipher = token_cipher
        self._refresh_window = timedelta(seconds=refresh_window_seconds)
        self._clock = clock
        self._locks: dict[TokenKey, asyncio.Lock] = {}

    def _lock_for(self, key: TokenKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks.setdefault(key, asyncio.Lock())
        return lock

    def store(
        self, account_id: str, tenant_id: Optional[str], tokens: TokenSet
    ) -> EncryptedToken:
        """Encrypt and persist a freshly issued token set as a new row."""
        if not tokens.refresh_token:
            raise ValueError("A refresh token is required to store credentials.")
        now = self._clock()
        record = EncryptedToken(
            id=new_record_id(),
            account_id=account_id,
            tenant_id=tenant_id,
            access_token_cipher=self._cipher.encrypt(tokens.access_token),
            refresh_token_cipher=self._cipher.encrypt(tokens.refresh_token),
            token_type=tokens.token_type,
            scope=tokens.scope,
            expires_at=now + timedelta(seconds=tokens.expires_in),
            created_at=now,
            updated_at=now,
        )
        self._store.insert_token(record)
        logger.info(
            "Stored credentials for account %s tenant %s", account_id, tenant_id or "-"
        )
        return record

    async def get_valid_access_token(
        self, account_id: str, tenant_id: Optional[str] = None
    ) -> str:
        """Return a usable access token, refreshing it when close to expiry."""
        record = self._store.find_authoritative_token(account_id, tenant_id, self._clock())
        if record is None:
            raise TokenNotFoundError("No stored credentials; re-authentication required")

        if not self._needs_refresh(record):
            return self._cipher.decrypt(record.access_token_cipher)

        async with self._lock_for((account_id, tenant_id)):
            # Another caller may have refreshed while this one waited.
            current = self._store.get_token(record.id)
            if current is None or current.is_soft_invalidated():
                raise TokenRefreshError("Stored credentials were invalidated; re-authenticate")
            if not self._needs_refresh(current):
                return self._cipher.decrypt(current.access_token_cipher)
            return await self._refresh(current)

    async def refresh_expiring(self, within: timedelta) -> RefreshSummary:
        """Refresh every live credential that expires inside ``within``."""
        now = self._clock()
        candidates = self._store.list_tokens_expiring(after=now, before=now + within)
        summary = RefreshSummary(total=len(candidates))
        for candidate in candidates:
            async with self._lock_for((candidate.account_id, candidate.tenant_id)):
                current = self._store.get_token(candidate.id)
                if current is None or current.is_soft_invalidated():
                    summary.failed += 1
                    continue
                if current.expires_at >= self._clock() + within:
                    summary.refreshed += 1
                    continue
                try:
                    await self._refresh(current)
                except (TokenRefreshError, CryptoError):
                    summary.failed += 1
                else:
                    summary.refreshed += 1
        logger.info(
            "Proactive refresh finished: %s refreshed, %s failed, %s total",
            summary.refreshed,
            summary.failed,
            summary.total,
        )
        return summary

    def _needs_refresh(self, record: EncryptedToken) -> bool:
        return record.expires_at <= self._clock() + self._refresh_window

    async def _refresh(self, record: EncryptedToken) -> str:
        """Refresh ``record`` in place; caller holds the lock for its key."""
        refresh_token = self._cipher.decrypt(record.refresh_token_cipher)
        try:
            tokens = await self._oauth.refresh_token(refresh_token)
        except OAuthTokenExchangeError as exc:
            self._store.soft_invalidate_token(record.id, self._clock())
            logger.error(
                "Token refresh failed for account %s tenant %s; credentials invalidated",
                record.account_id,
                record.tenant_id or "-",
            )
            raise TokenRefreshError("Failed to refresh access token") from exc

        now = self._clock()
        self._store.update_token_credentials(
            record.id,
            access_token_cipher=self._cipher.encrypt(tokens.access_token),
            refresh_token_cipher=self._cipher.encrypt(tokens.refresh_token or refresh_token),
            expires_at=now + timedelta(seconds=tokens.expires_in),
            updated_at=now,
            token_type=tokens.token_type,
            scope=tokens.scope,
        )
        logger.info(
            "Refreshed credentials for account %s tenant %s",
            record.account_id,
            record.tenant_id or "-",
        )
        return tokens.access_token


__all__ = ["RefreshSummary", "TokenVault"]
