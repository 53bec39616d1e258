try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from datetime import timedelta

from accounting_gateway.clients.state_store import (
    LEDGER_PENDING,
    LEDGER_PROCESSED,
    SQLiteStateStore,
    new_record_id,
)
from accounting_gateway.models.records import EncryptedToken, OAuthState, PKCEVerifier


def _token(account_id, tenant_id, *, expires_at, created_at, marker="x") -> EncryptedToken:
    return EncryptedToken(
        id=new_record_id(),
        account_id=account_id,
        tenant_id=tenant_id,
        access_token_cipher=f"access-{marker}",
        refresh_token_cipher=f"refresh-{marker}",
        token_type="Bearer",
        scope=None,
        expires_at=expires_at,
        created_at=created_at,
        updated_at=created_at,
    )


def test_oauth_state_is_consumed_once(store: SQLiteStateStore, clock) -> None:
    now = clock()
    store.put_oauth_state(
        OAuthState(state="s1", account_id="acct-1", created_at=now, expires_at=now + timedelta(minutes=10))
    )

    first = store.consume_oauth_state("s1", now)
    second = store.consume_oauth_state("s1", now)

    assert first is not None and first.account_id == "acct-1"
    assert second is None


def test_expired_oauth_state_is_not_returned(store: SQLiteStateStore, clock) -> None:
    now = clock()
    store.put_oauth_state(
        OAuthState(state="s1", account_id="acct-1", created_at=now, expires_at=now + timedelta(minutes=10))
    )
    store.put_pkce_verifier(PKCEVerifier(state="s1", verifier="v", expires_at=now + timedelta(minutes=10)))

    later = now + timedelta(minutes=11)
    assert store.consume_oauth_state("s1", later) is None
    assert store.consume_pkce_verifier("s1", later) is None


def test_expired_states_and_verifiers_are_swept(store: SQLiteStateStore, clock) -> None:
    now = clock()
    for name, ttl in (("old", -1), ("fresh", 10)):
        expires_at = now + timedelta(minutes=ttl)
        store.put_oauth_state(OAuthState(state=name, account_id="a", created_at=now, expires_at=expires_at))
        store.put_pkce_verifier(PKCEVerifier(state=name, verifier="v", expires_at=expires_at))

    assert store.delete_expired_oauth_states(now) == 1
    assert store.delete_expired_pkce_verifiers(now) == 1
    assert store.consume_oauth_state("fresh", now) is not None


def test_authoritative_token_prefers_newest_live_row(store: SQLiteStateStore, clock) -> None:
    now = clock()
    store.insert_token(
        _token("a", "t", expires_at=now + timedelta(hours=1), created_at=now - timedelta(hours=2), marker="old")
    )
    store.insert_token(
        _token("a", "t", expires_at=now + timedelta(hours=1), created_at=now - timedelta(hours=1), marker="new")
    )
    store.insert_token(
        _token("a", "t", expires_at=now - timedelta(minutes=5), created_at=now, marker="expired")
    )

    record = store.find_authoritative_token("a", "t", now)

    assert record is not None
    assert record.access_token_cipher == "access-new"


def test_authoritative_token_falls_back_to_refreshable_row(store: SQLiteStateStore, clock) -> None:
    now = clock()
    store.insert_token(
        _token("a", None, expires_at=now - timedelta(minutes=5), created_at=now, marker="stale")
    )

    record = store.find_authoritative_token("a", None, now)

    assert record is not None
    assert record.tenant_id is None
    assert record.access_token_cipher == "access-stale"


def test_soft_invalidated_token_is_never_authoritative(store: SQLiteStateStore, clock) -> None:
    now = clock()
    record = _token("a", "t", expires_at=now + timedelta(hours=1), created_at=now)
    store.insert_token(record)

    store.soft_invalidate_token(record.id, now)

    assert store.find_authoritative_token("a", "t", now) is None
    reloaded = store.get_token(record.id)
    assert reloaded is not None and reloaded.is_soft_invalidated()


def test_tenant_tokens_are_kept_apart(store: SQLiteStateStore, clock) -> None:
    now = clock()
    store.insert_token(_token("a", "t1", expires_at=now + timedelta(hours=1), created_at=now, marker="t1"))
    store.insert_token(_token("a", None, expires_at=now + timedelta(hours=1), created_at=now, marker="acct"))

    assert store.find_authoritative_token("a", "t1", now).access_token_cipher == "access-t1"
    assert store.find_authoritative_token("a", None, now).access_token_cipher == "access-acct"
    assert store.find_authoritative_token("a", "t2", now) is None


def test_session_tenant_binds_only_once(store: SQLiteStateStore, clock) -> None:
    from accounting_gateway.models.records import MCPSession

    now = clock()
    store.insert_session(
        MCPSession(session_id="sess", account_id="a", tenant_id=None, created_at=now, expires_at=now + timedelta(days=1))
    )

    assert store.bind_session_tenant("sess", "t1") is True
    assert store.bind_session_tenant("sess", "t2") is False
    assert store.get_session("sess").tenant_id == "t1"


def test_ledger_claim_is_exclusive_until_released(store: SQLiteStateStore, clock) -> None:
    now = clock()
    window = dict(now=now, processed_before=now - timedelta(days=1), pending_before=now - timedelta(minutes=5))

    assert store.claim_event("evt", **window) is True
    assert store.claim_event("evt", **window) is False
    assert store.get_ledger_entry("evt").status == LEDGER_PENDING

    store.release_event("evt")
    assert store.get_ledger_entry("evt") is None
    assert store.claim_event("evt", **window) is True

    store.complete_event("evt", now)
    assert store.get_ledger_entry("evt").status == LEDGER_PROCESSED
    store.release_event("evt")
    assert store.get_ledger_entry("evt") is not None


def test_stale_ledger_entries_can_be_reclaimed(store: SQLiteStateStore, clock) -> None:
    start = clock()
    assert store.claim_event(
        "evt", now=start, processed_before=start - timedelta(days=1), pending_before=start - timedelta(minutes=5)
    )
    store.complete_event("evt", start)

    later = start + timedelta(days=1, seconds=1)
    assert store.claim_event(
        "evt", now=later, processed_before=later - timedelta(days=1), pending_before=later - timedelta(minutes=5)
    )


def test_evict_ledger_removes_only_stale_entries(store: SQLiteStateStore, clock) -> None:
    start = clock()
    window = dict(processed_before=start - timedelta(days=1), pending_before=start - timedelta(minutes=5))
    store.claim_event("old", now=start, **window)
    store.complete_event("old", start)

    later = start + timedelta(hours=25)
    store.claim_event(
        "new", now=later, processed_before=later - timedelta(days=1), pending_before=later - timedelta(minutes=5)
    )
    store.complete_event("new", later)

    removed = store.evict_ledger(processed_before=later - timedelta(days=1), pending_before=later - timedelta(minutes=5))

    assert removed == 1
    assert store.get_ledger_entry("old") is None
    assert store.get_ledger_entry("new") is not None
    assert store.ledger_size() == 1
