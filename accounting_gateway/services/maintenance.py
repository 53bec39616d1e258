"""Scheduled housekeeping: expired-state sweeps and proactive token refresh."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Callable

from accounting_gateway.clients.state_store import SQLiteStateStore
from accounting_gateway.models.records import utc_now
from accounting_gateway.services.sessions import SessionManager
from accounting_gateway.services.token_vault import RefreshSummary, TokenVault
from accounting_gateway.services.webhooks import WebhookIngestor

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CleanupSummary:
    sessions: int = 0
    oauth_states: int = 0
    verifiers: int = 0
    ledger_entries: int = 0

    def to_response(self) -> dict[str, int]:
        return {
            "sessions": self.sessions,
            "oauthStates": self.oauth_states,
            "verifiers": self.verifiers,
            "ledgerEntries": self.ledger_entries,
        }


class MaintenanceService:
    """Idempotent jobs safe to run alongside live traffic."""

    def __init__(
        self,
        store: SQLiteStateStore,
        sessions: SessionManager,
        vault: TokenVault,
        ingestor: WebhookIngestor,
        *,
        proactive_refresh_seconds: int = 3600,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._sessions = sessions
        self._vault = vault
        self._ingestor = ingestor
        self._proactive_window = timedelta(seconds=proactive_refresh_seconds)
        self._clock = clock

    def cleanup(self) -> CleanupSummary:
        now = self._clock()
        summary = CleanupSummary(
            sessions=self._sessions.sweep_expired(),
            oauth_states=self._store.delete_expired_oauth_states(now),
            verifiers=self._store.delete_expired_pkce_verifiers(now),
            ledger_entries=self._ingestor.evict_stale(),
        )
        logger.info("Cleanup finished: %s", asdict(summary))
        return summary

    async def refresh_tokens(self) -> RefreshSummary:
        return await self._vault.refresh_expiring(self._proactive_window)


__all__ = ["CleanupSummary", "MaintenanceService"]
