"""SQLite-backed state store for OAuth states, credentials, sessions and the
webhook dedup ledger.

Every operation opens its own connection and transaction, so a single database
file can be shared by several worker processes. Operations that must be atomic
(single-use state consumption, ledger claims, tenant binding) are expressed as
one conditional SQL statement or one write transaction.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, Optional
from uuid import uuid4

from accounting_gateway.models.records import (
    EPOCH,
    Account,
    EncryptedToken,
    MCPSession,
    OAuthState,
    PKCEVerifier,
    TenantConnection,
    WebhookEventRecord,
    WebhookLedgerEntry,
    from_epoch,
    to_epoch,
)

LEDGER_PENDING = "pending"
LEDGER_PROCESSED = "processed"

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS accounts (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL UNIQUE,
        name TEXT,
        created_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tenant_connections (
        tenant_id TEXT NOT NULL,
        account_id TEXT NOT NULL,
        tenant_name TEXT,
        tenant_type TEXT,
        created_at REAL NOT NULL,
        PRIMARY KEY (account_id, tenant_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS oauth_states (
        state TEXT PRIMARY KEY,
        account_id TEXT NOT NULL,
        created_at REAL NOT NULL,
        expires_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS pkce_verifiers (
        state TEXT PRIMARY KEY,
        verifier TEXT NOT NULL,
        expires_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS oauth_tokens (
        id TEXT PRIMARY KEY,
        account_id TEXT NOT NULL,
        tenant_id TEXT,
        access_token_cipher TEXT NOT NULL,
        refresh_token_cipher TEXT NOT NULL,
        token_type TEXT NOT NULL,
        scope TEXT,
        expires_at REAL NOT NULL,
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_oauth_tokens_owner
        ON oauth_tokens (account_id, tenant_id, created_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS mcp_sessions (
        session_id TEXT PRIMARY KEY,
        account_id TEXT NOT NULL,
        tenant_id TEXT,
        created_at REAL NOT NULL,
        expires_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS webhook_ledger (
        event_key TEXT PRIMARY KEY,
        status TEXT NOT NULL,
        first_seen_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS webhook_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        request_id TEXT NOT NULL,
        event_key TEXT NOT NULL,
        resource_id TEXT NOT NULL,
        resource_type TEXT NOT NULL,
        event_type TEXT NOT NULL,
        tenant_id TEXT,
        payload TEXT NOT NULL,
        received_at REAL NOT NULL
    )
    """,
)


class SQLiteStateStore:
    """Typed persistence for the security and session control plane."""

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False, timeout=10.0)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._transaction() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    def ping(self) -> bool:
        with self._transaction() as conn:
            row = conn.execute("SELECT 1").fetchone()
        return bool(row)

    # Accounts and tenant connections

    def upsert_account(self, account: Account) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO accounts (id, email, name, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET email = excluded.email, name = excluded.name
                """,
                (account.id, account.email, account.name, to_epoch(account.created_at)),
            )

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM accounts WHERE id = ?", (account_id,)
            ).fetchone()
        if not row:
            return None
        return Account(
            id=row["id"],
            email=row["email"],
            name=row["name"],
            created_at=from_epoch(row["created_at"]),
        )

    def upsert_tenant_connection(self, connection: TenantConnection) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO tenant_connections
                    (tenant_id, account_id, tenant_name, tenant_type, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(account_id, tenant_id) DO UPDATE SET
                    tenant_name = excluded.tenant_name,
                    tenant_type = excluded.tenant_type
                """,
                (
                    connection.tenant_id,
                    connection.account_id,
                    connection.tenant_name,
                    connection.tenant_type,
                    to_epoch(connection.created_at),
                ),
            )

    def list_tenant_connections(self, account_id: str) -> list[TenantConnection]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM tenant_connections WHERE account_id = ? ORDER BY created_at",
                (account_id,),
            ).fetchall()
        return [
            TenantConnection(
                tenant_id=row["tenant_id"],
                account_id=row["account_id"],
                tenant_name=row["tenant_name"],
                tenant_type=row["tenant_type"],
                created_at=from_epoch(row["created_at"]),
            )
            for row in rows
        ]

    def has_tenant_connection(self, account_id: str, tenant_id: str) -> bool:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT 1 FROM tenant_connections WHERE account_id = ? AND tenant_id = ?",
                (account_id, tenant_id),
            ).fetchone()
        return row is not None

    # OAuth states and PKCE verifiers

    def put_oauth_state(self, record: OAuthState) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO oauth_states (state, account_id, created_at, expires_at)
                VALUES (?, ?, ?, ?)
                """,
                (
                    record.state,
                    record.account_id,
                    to_epoch(record.created_at),
                    to_epoch(record.expires_at),
                ),
            )

    def consume_oauth_state(self, state: str, now: datetime) -> Optional[OAuthState]:
        """Delete and return a live state; at most one caller receives it."""
        with self._transaction() as conn:
            rows = conn.execute(
                "DELETE FROM oauth_states WHERE state = ? AND expires_at > ? RETURNING *",
                (state, to_epoch(now)),
            ).fetchall()
        if not rows:
            return None
        row = rows[0]
        return OAuthState(
            state=row["state"],
            account_id=row["account_id"],
            created_at=from_epoch(row["created_at"]),
            expires_at=from_epoch(row["expires_at"]),
        )

    def put_pkce_verifier(self, record: PKCEVerifier) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO pkce_verifiers (state, verifier, expires_at) VALUES (?, ?, ?)",
                (record.state, record.verifier, to_epoch(record.expires_at)),
            )

    def consume_pkce_verifier(self, state: str, now: datetime) -> Optional[PKCEVerifier]:
        with self._transaction() as conn:
            rows = conn.execute(
                "DELETE FROM pkce_verifiers WHERE state = ? AND expires_at > ? RETURNING *",
                (state, to_epoch(now)),
            ).fetchall()
        if not rows:
            return None
        row = rows[0]
        return PKCEVerifier(
            state=row["state"],
            verifier=row["verifier"],
            expires_at=from_epoch(row["expires_at"]),
        )

    def delete_expired_oauth_states(self, now: datetime) -> int:
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM oauth_states WHERE expires_at <= ?", (to_epoch(now),)
            )
        return cursor.rowcount

    def delete_expired_pkce_verifiers(self, now: datetime) -> int:
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM pkce_verifiers WHERE expires_at <= ?", (to_epoch(now),)
            )
        return cursor.rowcount

    # Encrypted tokens

    def insert_token(self, record: EncryptedToken) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO oauth_tokens (
                    id, account_id, tenant_id, access_token_cipher,
                    refresh_token_cipher, token_type, scope, expires_at,
                    created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.account_id,
                    record.tenant_id,
                    record.access_token_cipher,
                    record.refresh_token_cipher,
                    record.token_type,
                    record.scope,
                    to_epoch(record.expires_at),
                    to_epoch(record.created_at),
                    to_epoch(record.updated_at),
                ),
            )

    def get_token(self, token_id: str) -> Optional[EncryptedToken]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM oauth_tokens WHERE id = ?", (token_id,)
            ).fetchone()
        return self._row_to_token(row) if row else None

    def find_authoritative_token(
        self, account_id: str, tenant_id: Optional[str], now: datetime
    ) -> Optional[EncryptedToken]:
        """Most recently created non-expired row, else the newest refreshable one.

        Soft-invalidated rows are never returned.
        """
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT * FROM oauth_tokens
                WHERE account_id = ? AND tenant_id IS ? AND expires_at > ?
                ORDER BY (expires_at > ?) DESC, created_at DESC
                LIMIT 1
                """,
                (account_id, tenant_id, to_epoch(EPOCH), to_epoch(now)),
            ).fetchone()
        return self._row_to_token(row) if row else None

    def update_token_credentials(
        self,
        token_id: str,
        *,
        access_token_cipher: str,
        refresh_token_cipher: str,
        expires_at: datetime,
        updated_at: datetime,
        token_type: Optional[str] = None,
        scope: Optional[str] = None,
    ) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE oauth_tokens SET
                    access_token_cipher = ?,
                    refresh_token_cipher = ?,
                    expires_at = ?,
                    updated_at = ?,
                    token_type = COALESCE(?, token_type),
                    scope = COALESCE(?, scope)
                WHERE id = ?
                """,
                (
                    access_token_cipher,
                    refresh_token_cipher,
                    to_epoch(expires_at),
                    to_epoch(updated_at),
                    token_type,
                    scope,
                    token_id,
                ),
            )

    def soft_invalidate_token(self, token_id: str, updated_at: datetime) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE oauth_tokens SET expires_at = ?, updated_at = ? WHERE id = ?",
                (to_epoch(EPOCH), to_epoch(updated_at), token_id),
            )

    def list_tokens_expiring(
        self, *, after: datetime, before: datetime
    ) -> list[EncryptedToken]:
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM oauth_tokens
                WHERE expires_at > ? AND expires_at < ?
                ORDER BY expires_at
                """,
                (to_epoch(after), to_epoch(before)),
            ).fetchall()
        return [self._row_to_token(row) for row in rows]

    @staticmethod
    def _row_to_token(row: sqlite3.Row) -> EncryptedToken:
        return EncryptedToken(
            id=row["id"],
            account_id=row["account_id"],
            tenant_id=row["tenant_id"],
            access_token_cipher=row["access_token_cipher"],
            refresh_token_cipher=row["refresh_token_cipher"],
            token_type=row["token_type"],
            scope=row["scope"],
            expires_at=from_epoch(row["expires_at"]),
            created_at=from_epoch(row["created_at"]),
            updated_at=from_epoch(row["updated_at"]),
        )

    # Sessions

    def insert_session(self, session: MCPSession) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO mcp_sessions (session_id, account_id, tenant_id, created_at, expires_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    session.session_id,
                    session.account_id,
                    session.tenant_id,
                    to_epoch(session.created_at),
                    to_epoch(session.expires_at),
                ),
            )

    def get_session(self, session_id: str) -> Optional[MCPSession]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM mcp_sessions WHERE session_id = ?", (session_id,)
            ).fetchone()
        if not row:
            return None
        return MCPSession(
            session_id=row["session_id"],
            account_id=row["account_id"],
            tenant_id=row["tenant_id"],
            created_at=from_epoch(row["created_at"]),
            expires_at=from_epoch(row["expires_at"]),
        )

    def bind_session_tenant(self, session_id: str, tenant_id: str) -> bool:
        """Set the tenant only if none is bound yet; returns whether it was set."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE mcp_sessions SET tenant_id = ? WHERE session_id = ? AND tenant_id IS NULL",
                (tenant_id, session_id),
            )
        return cursor.rowcount == 1

    def delete_session(self, session_id: str) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM mcp_sessions WHERE session_id = ?", (session_id,))

    def delete_expired_sessions(self, now: datetime) -> int:
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM mcp_sessions WHERE expires_at <= ?", (to_epoch(now),)
            )
        return cursor.rowcount

    # Webhook ledger

    def claim_event(
        self,
        event_key: str,
        *,
        now: datetime,
        processed_before: datetime,
        pending_before: datetime,
    ) -> bool:
        """Atomically claim an event key for processing.

        A processed entry older than ``processed_before`` or an abandoned
        pending claim older than ``pending_before`` is replaced; any other
        existing entry makes the claim fail.
        """
        with self._transaction() as conn:
            conn.execute(
                """
                DELETE FROM webhook_ledger
                WHERE event_key = ? AND (
                    (status = ? AND first_seen_at < ?) OR (status = ? AND first_seen_at < ?)
                )
                """,
                (
                    event_key,
                    LEDGER_PROCESSED,
                    to_epoch(processed_before),
                    LEDGER_PENDING,
                    to_epoch(pending_before),
                ),
            )
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO webhook_ledger (event_key, status, first_seen_at)
                VALUES (?, ?, ?)
                """,
                (event_key, LEDGER_PENDING, to_epoch(now)),
            )
        return cursor.rowcount == 1

    def complete_event(self, event_key: str, now: datetime) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE webhook_ledger SET status = ?, first_seen_at = ? WHERE event_key = ?",
                (LEDGER_PROCESSED, to_epoch(now), event_key),
            )

    def release_event(self, event_key: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                "DELETE FROM webhook_ledger WHERE event_key = ? AND status = ?",
                (event_key, LEDGER_PENDING),
            )

    def get_ledger_entry(self, event_key: str) -> Optional[WebhookLedgerEntry]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM webhook_ledger WHERE event_key = ?", (event_key,)
            ).fetchone()
        if not row:
            return None
        return WebhookLedgerEntry(
            event_key=row["event_key"],
            status=row["status"],
            first_seen_at=from_epoch(row["first_seen_at"]),
        )

    def ledger_size(self) -> int:
        with self._transaction() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM webhook_ledger").fetchone()
        return int(row["total"])

    def evict_ledger(self, *, processed_before: datetime, pending_before: datetime) -> int:
        """Remove entries by age only; live-window entries are never touched."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                DELETE FROM webhook_ledger
                WHERE (status = ? AND first_seen_at < ?) OR (status = ? AND first_seen_at < ?)
                """,
                (
                    LEDGER_PROCESSED,
                    to_epoch(processed_before),
                    LEDGER_PENDING,
                    to_epoch(pending_before),
                ),
            )
        return cursor.rowcount

    def record_webhook_event(
        self,
        *,
        request_id: str,
        event_key: str,
        event: Dict[str, Any],
        received_at: datetime,
    ) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO webhook_events (
                    request_id, event_key, resource_id, resource_type, event_type,
                    tenant_id, payload, received_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    request_id,
                    event_key,
                    event["resourceId"],
                    event["resourceType"],
                    event["eventType"],
                    event.get("tenantId"),
                    json.dumps(event),
                    to_epoch(received_at),
                ),
            )

    def list_webhook_events(self, limit: int = 100) -> list[WebhookEventRecord]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM webhook_events ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        return [
            WebhookEventRecord(
                id=row["id"],
                request_id=row["request_id"],
                event_key=row["event_key"],
                resource_id=row["resource_id"],
                resource_type=row["resource_type"],
                event_type=row["event_type"],
                tenant_id=row["tenant_id"],
                payload=json.loads(row["payload"]),
                received_at=from_epoch(row["received_at"]),
            )
            for row in rows
        ]


def new_record_id() -> str:
    return uuid4().hex


__all__ = ["LEDGER_PENDING", "LEDGER_PROCESSED", "SQLiteStateStore", "new_record_id"]
