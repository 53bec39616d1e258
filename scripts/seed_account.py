"""Seed the state database with an account (and optionally a tenant) for local runs.

Example::

    # Create the demo account and its demo organization.
    python -m scripts.seed_account --db-path data/gateway_state.db

    # Create a specific account without a tenant.
    python -m scripts.seed_account --account-id acc-1 --email ops@example.com --no-tenant

Afterwards start the connection flow at ``/auth/start?accountId=<account-id>``.
"""

from __future__ import annotations

import argparse
import sqlite3
import sys
from pathlib import Path

from accounting_gateway.clients.state_store import SQLiteStateStore
from accounting_gateway.models.records import Account, TenantConnection

EXIT_OK = 0
EXIT_RUNTIME_ERROR = 5

DEMO_ACCOUNT_ID = "demo-account-id"
DEMO_EMAIL = "demo@example.com"
DEMO_NAME = "Demo User"
DEMO_TENANT_ID = "demo-tenant-id"
DEMO_TENANT_NAME = "Demo Company"


def seed(
    store: SQLiteStateStore,
    *,
    account_id: str,
    email: str,
    name: str | None,
    tenant_id: str | None,
    tenant_name: str | None,
) -> Account:
    """Upsert the account and, when given, a tenant connection for it."""
    account = Account(id=account_id, email=email, name=name)
    store.upsert_account(account)
    if tenant_id:
        store.upsert_tenant_connection(
            TenantConnection(
                tenant_id=tenant_id,
                account_id=account_id,
                tenant_name=tenant_name,
                tenant_type="ORGANISATION",
            )
        )
    return account


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Seed an account into the state database.")
    parser.add_argument(
        "--db-path",
        default="data/gateway_state.db",
        type=Path,
        help="SQLite database path (default: data/gateway_state.db).",
    )
    parser.add_argument("--account-id", default=DEMO_ACCOUNT_ID)
    parser.add_argument("--email", default=DEMO_EMAIL)
    parser.add_argument("--name", default=DEMO_NAME)
    parser.add_argument("--tenant-id", default=DEMO_TENANT_ID)
    parser.add_argument("--tenant-name", default=DEMO_TENANT_NAME)
    parser.add_argument(
        "--no-tenant",
        action="store_true",
        help="Only create the account; tenants are connected by the OAuth callback.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    try:
        store = SQLiteStateStore(str(args.db_path))
        account = seed(
            store,
            account_id=args.account_id,
            email=args.email,
            name=args.name,
            tenant_id=None if args.no_tenant else args.tenant_id,
            tenant_name=args.tenant_name,
        )
    except sqlite3.Error as exc:
        print(f"Failed to seed database {args.db_path}: {exc}", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    print(f"Seeded account {account.id} ({account.email}) into {args.db_path}")
    return EXIT_OK


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
