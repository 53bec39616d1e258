"""Pytest configuration shared across the suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

try:
    from . import _bootstrap
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore

from accounting_gateway.clients.state_store import SQLiteStateStore
from accounting_gateway.models.records import Account, TenantConnection
from accounting_gateway.services.token_cipher import TokenCipherService


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(tmp_path) -> SQLiteStateStore:
    return SQLiteStateStore(str(tmp_path / "state.db"))


@pytest.fixture
def cipher() -> TokenCipherService:
    return TokenCipherService.from_secret(_bootstrap.TEST_ENCRYPTION_KEY)


@pytest.fixture
def account(store: SQLiteStateStore) -> Account:
    account = Account(id="acct-1", email="owner@example.com", name="Owner")
    store.upsert_account(account)
    for tenant_id, name in (("tenant-a", "Alpha Ltd"), ("tenant-b", "Beta Ltd")):
        store.upsert_tenant_connection(
            TenantConnection(
                tenant_id=tenant_id,
                account_id=account.id,
                tenant_name=name,
                tenant_type="ORGANISATION",
            )
        )
    return account
