try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from pathlib import Path

from accounting_gateway.clients.state_store import SQLiteStateStore
from scripts import seed_account


def test_seed_creates_demo_account_and_tenant(tmp_path: Path) -> None:
    db_path = tmp_path / "seed.db"

    assert seed_account.main(["--db-path", str(db_path)]) == seed_account.EXIT_OK
    assert seed_account.main(["--db-path", str(db_path)]) == seed_account.EXIT_OK

    store = SQLiteStateStore(str(db_path))
    account = store.get_account(seed_account.DEMO_ACCOUNT_ID)
    assert account is not None and account.email == seed_account.DEMO_EMAIL
    tenants = store.list_tenant_connections(seed_account.DEMO_ACCOUNT_ID)
    assert [tenant.tenant_id for tenant in tenants] == [seed_account.DEMO_TENANT_ID]


def test_seed_without_tenant(tmp_path: Path) -> None:
    db_path = tmp_path / "seed.db"

    exit_code = seed_account.main(
        ["--db-path", str(db_path), "--account-id", "acc-9", "--email", "ops@example.com", "--no-tenant"]
    )

    store = SQLiteStateStore(str(db_path))
    assert exit_code == seed_account.EXIT_OK
    assert store.get_account("acc-9") is not None
    assert store.list_tenant_connections("acc-9") == []
