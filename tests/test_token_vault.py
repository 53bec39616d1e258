try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import asyncio
from datetime import timedelta

import pytest

from accounting_gateway.clients.xero_auth import OAuthTokenExchangeError
from accounting_gateway.core.errors import TokenNotFoundError, TokenRefreshError
from accounting_gateway.schemas.auth import TokenSet
from accounting_gateway.services.token_vault import TokenVault


class DummyOAuthClient:
    def __init__(self, *, fail: bool = False, rotate: bool = True, delay: float = 0.0) -> None:
        self.fail = fail
        self.rotate = rotate
        self.delay = delay
        self.calls: list[str] = []

    async def refresh_token(self, refresh_token: str) -> TokenSet:
        self.calls.append(refresh_token)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise OAuthTokenExchangeError("invalid_grant", status_code=400)
        count = len(self.calls)
        return TokenSet(
            access_token=f"refreshed-access-{count}",
            refresh_token=f"rotated-refresh-{count}" if self.rotate else None,
            expires_in=1800,
        )


def _tokens(access: str = "initial-access", expires_in: int = 1800) -> TokenSet:
    return TokenSet(access_token=access, refresh_token="initial-refresh", expires_in=expires_in)


def test_store_encrypts_tokens_at_rest(store, clock, cipher) -> None:
    vault = TokenVault(store, DummyOAuthClient(), cipher, clock=clock)

    record = vault.store("acct-1", "tenant-a", _tokens())

    reloaded = store.get_token(record.id)
    assert reloaded.access_token_cipher != "initial-access"
    assert reloaded.refresh_token_cipher != "initial-refresh"
    assert cipher.decrypt(reloaded.refresh_token_cipher) == "initial-refresh"
    assert reloaded.expires_at == clock() + timedelta(seconds=1800)


@pytest.mark.asyncio
async def test_valid_token_is_returned_without_refresh(store, clock, cipher) -> None:
    oauth_client = DummyOAuthClient()
    vault = TokenVault(store, oauth_client, cipher, clock=clock)
    vault.store("acct-1", "tenant-a", _tokens())

    token = await vault.get_valid_access_token("acct-1", "tenant-a")

    assert token == "initial-access"
    assert oauth_client.calls == []


@pytest.mark.asyncio
async def test_missing_credentials_require_reauthentication(store, clock, cipher) -> None:
    vault = TokenVault(store, DummyOAuthClient(), cipher, clock=clock)

    with pytest.raises(TokenNotFoundError):
        await vault.get_valid_access_token("acct-1", "tenant-a")


@pytest.mark.asyncio
async def test_token_inside_refresh_window_is_refreshed(store, clock, cipher) -> None:
    oauth_client = DummyOAuthClient()
    vault = TokenVault(store, oauth_client, cipher, refresh_window_seconds=300, clock=clock)
    record = vault.store("acct-1", "tenant-a", _tokens())

    clock.advance(seconds=1800 - 299)
    token = await vault.get_valid_access_token("acct-1", "tenant-a")

    assert token == "refreshed-access-1"
    assert oauth_client.calls == ["initial-refresh"]
    updated = store.get_token(record.id)
    assert cipher.decrypt(updated.refresh_token_cipher) == "rotated-refresh-1"
    assert updated.expires_at == clock() + timedelta(seconds=1800)


@pytest.mark.asyncio
async def test_expired_token_is_refreshed_in_place(store, clock, cipher) -> None:
    oauth_client = DummyOAuthClient(rotate=False)
    vault = TokenVault(store, oauth_client, cipher, clock=clock)
    record = vault.store("acct-1", None, _tokens())

    clock.advance(hours=2)
    token = await vault.get_valid_access_token("acct-1")

    assert token == "refreshed-access-1"
    updated = store.get_token(record.id)
    assert cipher.decrypt(updated.refresh_token_cipher) == "initial-refresh"


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh(store, clock, cipher) -> None:
    oauth_client = DummyOAuthClient(delay=0.05)
    vault = TokenVault(store, oauth_client, cipher, clock=clock)
    vault.store("acct-1", "tenant-a", _tokens())
    clock.advance(hours=1)

    tokens = await asyncio.gather(
        *(vault.get_valid_access_token("acct-1", "tenant-a") for _ in range(5))
    )

    assert len(oauth_client.calls) == 1
    assert set(tokens) == {"refreshed-access-1"}


@pytest.mark.asyncio
async def test_failed_refresh_soft_invalidates_credentials(store, clock, cipher) -> None:
    oauth_client = DummyOAuthClient(fail=True)
    vault = TokenVault(store, oauth_client, cipher, clock=clock)
    record = vault.store("acct-1", "tenant-a", _tokens())
    clock.advance(hours=1)

    with pytest.raises(TokenRefreshError):
        await vault.get_valid_access_token("acct-1", "tenant-a")

    assert store.get_token(record.id).is_soft_invalidated()
    with pytest.raises(TokenNotFoundError):
        await vault.get_valid_access_token("acct-1", "tenant-a")
    assert len(oauth_client.calls) == 1


@pytest.mark.asyncio
async def test_refresh_expiring_counts_outcomes(store, clock, cipher) -> None:
    oauth_client = DummyOAuthClient()
    vault = TokenVault(store, oauth_client, cipher, clock=clock)
    vault.store("acct-1", "tenant-a", _tokens(expires_in=1200))
    vault.store("acct-1", "tenant-b", _tokens(expires_in=7200))
    vault.store("acct-2", None, _tokens(expires_in=600))

    summary = await vault.refresh_expiring(timedelta(hours=1))

    assert (summary.refreshed, summary.failed, summary.total) == (2, 0, 2)
    assert len(oauth_client.calls) == 2


@pytest.mark.asyncio
async def test_refresh_expiring_reports_failures(store, clock, cipher) -> None:
    vault = TokenVault(store, DummyOAuthClient(fail=True), cipher, clock=clock)
    record = vault.store("acct-1", "tenant-a", _tokens(expires_in=1200))

    summary = await vault.refresh_expiring(timedelta(hours=1))

    assert (summary.refreshed, summary.failed, summary.total) == (0, 1, 1)
    assert store.get_token(record.id).is_soft_invalidated()


@pytest.mark.asyncio
async def test_refresh_expiring_skips_undecryptable_rows(store, clock, cipher) -> None:
    oauth_client = DummyOAuthClient()
    vault = TokenVault(store, oauth_client, cipher, clock=clock)
    corrupt = vault.store("acct-1", "tenant-a", _tokens(expires_in=600))
    store.update_token_credentials(
        corrupt.id,
        access_token_cipher=corrupt.access_token_cipher,
        refresh_token_cipher="garbage",
        expires_at=corrupt.expires_at,
        updated_at=clock(),
    )
    healthy = vault.store("acct-1", "tenant-b", _tokens(expires_in=1200))

    summary = await vault.refresh_expiring(timedelta(hours=1))

    assert (summary.refreshed, summary.failed, summary.total) == (1, 1, 2)
    assert oauth_client.calls == ["initial-refresh"]
    untouched = store.get_token(corrupt.id)
    assert untouched.refresh_token_cipher == "garbage"
    assert untouched.expires_at == corrupt.expires_at
    assert cipher.decrypt(store.get_token(healthy.id).access_token_cipher) == "refreshed-access-1"
