"""Protocol sessions bound to one account and at most one tenant."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable, Optional

from accounting_gateway.clients.state_store import SQLiteStateStore
from accounting_gateway.core.errors import (
    TenantMismatchError,
    TenantNotConnectedError,
    ValidationError,
)
from accounting_gateway.core.logging import redact
from accounting_gateway.models.records import MCPSession, utc_now

logger = logging.getLogger(__name__)


class SessionManager:
    """Creates, validates, binds and revokes sessions stored in the state store."""

    def __init__(
        self,
        store: SQLiteStateStore,
        *,
        session_ttl_seconds: int = 86400,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._ttl = timedelta(seconds=session_ttl_seconds)
        self._clock = clock

    def create(self, account_id: str, tenant_id: Optional[str] = None) -> MCPSession:
        now = self._clock()
        session = MCPSession(
            session_id=secrets.token_urlsafe(32),
            account_id=account_id,
            tenant_id=tenant_id,
            created_at=now,
            expires_at=now + self._ttl,
        )
        self._store.insert_session(session)
        logger.info(
            "Session %s created for account %s", redact(session.session_id), account_id
        )
        return session

    def validate(self, session_id: str) -> Optional[MCPSession]:
        """Return the live session, or ``None`` when it is missing or expired."""
        if not session_id:
            return None
        session = self._store.get_session(session_id)
        if session is None or session.is_expired(self._clock()):
            return None
        return session

    def bind_tenant(self, session: MCPSession, requested_tenant_id: str) -> MCPSession:
        """Bind ``requested_tenant_id`` to the session; a bound tenant never changes."""
        if session.tenant_id is not None:
            if session.tenant_id != requested_tenant_id:
                logger.warning(
                    "Session %s bound to tenant %s refused tenant %s",
                    redact(session.session_id),
                    session.tenant_id,
                    requested_tenant_id,
                )
                raise TenantMismatchError("Tenant does not match the session's tenant")
            return session

        if not self._store.has_tenant_connection(session.account_id, requested_tenant_id):
            raise TenantNotConnectedError("Tenant is not connected to this account")

        if not self._store.bind_session_tenant(session.session_id, requested_tenant_id):
            # Lost a race with a concurrent binder; the stored binding wins.
            current = self._store.get_session(session.session_id)
            if current is None or current.tenant_id != requested_tenant_id:
                raise TenantMismatchError("Tenant does not match the session's tenant")
            return current

        session.tenant_id = requested_tenant_id
        logger.info(
            "Session %s bound to tenant %s", redact(session.session_id), requested_tenant_id
        )
        return session

    def resolve_tenant(
        self, session: MCPSession, requested_tenant_id: Optional[str]
    ) -> str:
        """Return the effective tenant for a call made within ``session``."""
        if requested_tenant_id:
            return self.bind_tenant(session, requested_tenant_id).tenant_id  # type: ignore[return-value]
        if session.tenant_id:
            return session.tenant_id
        connections = self._store.list_tenant_connections(session.account_id)
        if len(connections) == 1:
            return self.bind_tenant(session, connections[0].tenant_id).tenant_id  # type: ignore[return-value]
        raise ValidationError("tenantId is required", code="tenant_required")

    def revoke(self, session_id: str) -> None:
        self._store.delete_session(session_id)
        logger.info("Session %s revoked", redact(session_id))

    def sweep_expired(self) -> int:
        return self._store.delete_expired_sessions(self._clock())


__all__ = ["SessionManager"]
