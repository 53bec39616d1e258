"""
OAuth2 authorization-code flow with PKCE.

Issues authorization requests, persists the single-use state and its verifier,
and redeems them exactly once when the authorization server calls back.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable

from accounting_gateway.clients.state_store import SQLiteStateStore
from accounting_gateway.clients.xero_auth import OAuthTokenExchangeError, XeroOAuthClient
from accounting_gateway.core.errors import (
    AccountNotFoundError,
    InvalidStateError,
    MissingVerifierError,
    TokenExchangeError,
)
from accounting_gateway.core.logging import redact
from accounting_gateway.models.records import OAuthState, PKCEVerifier, utc_now
from accounting_gateway.schemas.auth import AuthorizationResult

logger = logging.getLogger(__name__)

_ENTROPY_BYTES = 32


def generate_pkce_pair() -> tuple[str, str]:
    """Return a ``(verifier, challenge)`` pair for the S256 method."""
    verifier = secrets.token_urlsafe(_ENTROPY_BYTES)
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


class PKCEOrchestrator:
    """Begins and completes authorization requests for accounts."""

    def __init__(
        self,
        store: SQLiteStateStore,
        oauth_client: XeroOAuthClient,
        *,
        state_ttl_seconds: int = 600,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._oauth = oauth_client
        self._state_ttl = timedelta(seconds=state_ttl_seconds)
        self._clock = clock

    def begin_auth(self, account_id: str) -> str:
        """Persist a fresh state and verifier and return the consent URL."""
        if self._store.get_account(account_id) is None:
            raise AccountNotFoundError("Account not found")

        state = secrets.token_urlsafe(_ENTROPY_BYTES)
        verifier, challenge = generate_pkce_pair()
        now = self._clock()
        expires_at = now + self._state_ttl

        self._store.put_oauth_state(
            OAuthState(state=state, account_id=account_id, created_at=now, expires_at=expires_at)
        )
        self._store.put_pkce_verifier(
            PKCEVerifier(state=state, verifier=verifier, expires_at=expires_at)
        )
        logger.info(
            "Authorization started for account %s (state %s)", account_id, redact(state)
        )
        return self._oauth.build_authorization_url(state=state, code_challenge=challenge)

    async def complete_auth(self, code: str, state: str) -> AuthorizationResult:
        """Redeem ``state`` once and exchange ``code`` for tokens.

        The caller persists the returned tokens.
        """
        now = self._clock()
        oauth_state = self._store.consume_oauth_state(state, now)
        if oauth_state is None:
            logger.warning("Rejected unknown or expired OAuth state %s", redact(state))
            raise InvalidStateError("OAuth state is invalid or expired")

        verifier = self._store.consume_pkce_verifier(state, now)
        if verifier is None:
            logger.warning("PKCE verifier missing for state %s", redact(state))
            raise MissingVerifierError("PKCE verifier is missing or expired")

        try:
            tokens = await self._oauth.exchange_authorization_code(code, verifier.verifier)
        except OAuthTokenExchangeError as exc:
            raise TokenExchangeError("Failed to exchange authorization code") from exc

        logger.info("Authorization completed for account %s", oauth_state.account_id)
        return AuthorizationResult(account_id=oauth_state.account_id, tokens=tokens)


__all__ = ["PKCEOrchestrator", "generate_pkce_pair"]
