try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import base64
import hashlib
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from accounting_gateway.clients.xero_auth import OAuthTokenExchangeError, XeroOAuthClient
from accounting_gateway.core.config import OAuthSettings, XeroSettings
from accounting_gateway.core.errors import (
    AccountNotFoundError,
    InvalidStateError,
    MissingVerifierError,
    TokenExchangeError,
)
from accounting_gateway.schemas.auth import TokenSet
from accounting_gateway.services.pkce import PKCEOrchestrator, generate_pkce_pair


class DummyOAuthClient:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.challenges: list[str] = []
        self.exchanges: list[tuple[str, str]] = []

    def build_authorization_url(self, state: str, code_challenge: str) -> str:
        self.challenges.append(code_challenge)
        return f"https://login.example.com/authorize?state={state}&code_challenge={code_challenge}"

    async def exchange_authorization_code(self, code: str, code_verifier: str) -> TokenSet:
        self.exchanges.append((code, code_verifier))
        if self.fail:
            raise OAuthTokenExchangeError("invalid_grant", status_code=400)
        return TokenSet(access_token="access-1", refresh_token="refresh-1", expires_in=1800)


def _state_from(url: str) -> str:
    return parse_qs(urlparse(url).query)["state"][0]


def test_pkce_pair_uses_s256() -> None:
    verifier, challenge = generate_pkce_pair()

    expected = base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest()).rstrip(b"=")
    assert challenge == expected.decode()
    assert 43 <= len(verifier) <= 128
    assert "=" not in challenge


def test_begin_auth_requires_known_account(store, clock) -> None:
    orchestrator = PKCEOrchestrator(store, DummyOAuthClient(), clock=clock)

    with pytest.raises(AccountNotFoundError):
        orchestrator.begin_auth("missing-account")


def test_begin_auth_issues_unique_states(store, clock, account) -> None:
    oauth_client = DummyOAuthClient()
    orchestrator = PKCEOrchestrator(store, oauth_client, clock=clock)

    first = _state_from(orchestrator.begin_auth(account.id))
    second = _state_from(orchestrator.begin_auth(account.id))

    assert first != second
    assert len(set(oauth_client.challenges)) == 2


@pytest.mark.asyncio
async def test_complete_auth_exchanges_code_with_matching_verifier(store, clock, account) -> None:
    oauth_client = DummyOAuthClient()
    orchestrator = PKCEOrchestrator(store, oauth_client, clock=clock)
    state = _state_from(orchestrator.begin_auth(account.id))

    result = await orchestrator.complete_auth("auth-code", state)

    assert result.account_id == account.id
    assert result.tokens.refresh_token == "refresh-1"
    code, verifier = oauth_client.exchanges[0]
    assert code == "auth-code"
    challenge = base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest()).rstrip(b"=")
    assert oauth_client.challenges[0] == challenge.decode()


@pytest.mark.asyncio
async def test_state_cannot_be_replayed(store, clock, account) -> None:
    orchestrator = PKCEOrchestrator(store, DummyOAuthClient(), clock=clock)
    state = _state_from(orchestrator.begin_auth(account.id))
    await orchestrator.complete_auth("auth-code", state)

    with pytest.raises(InvalidStateError):
        await orchestrator.complete_auth("auth-code", state)


@pytest.mark.asyncio
async def test_expired_state_is_rejected(store, clock, account) -> None:
    orchestrator = PKCEOrchestrator(store, DummyOAuthClient(), state_ttl_seconds=600, clock=clock)
    state = _state_from(orchestrator.begin_auth(account.id))

    clock.advance(seconds=601)

    with pytest.raises(InvalidStateError):
        await orchestrator.complete_auth("auth-code", state)


@pytest.mark.asyncio
async def test_unknown_state_is_rejected(store, clock) -> None:
    orchestrator = PKCEOrchestrator(store, DummyOAuthClient(), clock=clock)

    with pytest.raises(InvalidStateError):
        await orchestrator.complete_auth("auth-code", "forged-state")


@pytest.mark.asyncio
async def test_missing_verifier_is_reported(store, clock, account) -> None:
    orchestrator = PKCEOrchestrator(store, DummyOAuthClient(), clock=clock)
    state = _state_from(orchestrator.begin_auth(account.id))
    store.consume_pkce_verifier(state, clock())

    with pytest.raises(MissingVerifierError):
        await orchestrator.complete_auth("auth-code", state)


@pytest.mark.asyncio
async def test_failed_exchange_still_consumes_state(store, clock, account) -> None:
    orchestrator = PKCEOrchestrator(store, DummyOAuthClient(fail=True), clock=clock)
    state = _state_from(orchestrator.begin_auth(account.id))

    with pytest.raises(TokenExchangeError):
        await orchestrator.complete_auth("auth-code", state)
    with pytest.raises(InvalidStateError):
        await orchestrator.complete_auth("auth-code", state)


def _xero_client(handler) -> XeroOAuthClient:
    xero_settings = XeroSettings(
        XERO_CLIENT_ID="client",
        XERO_CLIENT_SECRET="secret",
        XERO_REDIRECT_URI="https://gateway.example.com/auth/callback",
        XERO_WEBHOOK_KEY="hook",
        XERO_TOKEN_URL="https://identity.example.com/connect/token",
    )
    return XeroOAuthClient(xero_settings, OAuthSettings(), transport=httpx.MockTransport(handler))


def test_authorization_url_carries_pkce_parameters() -> None:
    client = _xero_client(lambda request: httpx.Response(500))

    url = client.build_authorization_url(state="abc", code_challenge="challenge")
    query = parse_qs(urlparse(url).query)

    assert query["code_challenge_method"] == ["S256"]
    assert query["code_challenge"] == ["challenge"]
    assert query["state"] == ["abc"]
    assert "offline_access" in query["scope"][0].split()


@pytest.mark.asyncio
async def test_code_exchange_posts_verifier() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(parse_qs(request.content.decode()))
        return httpx.Response(
            200,
            json={"access_token": "a", "refresh_token": "r", "expires_in": 1800, "token_type": "Bearer"},
        )

    tokens = await _xero_client(handler).exchange_authorization_code("code", "verifier")

    assert tokens.access_token == "a"
    assert seen[0]["grant_type"] == ["authorization_code"]
    assert seen[0]["code_verifier"] == ["verifier"]


@pytest.mark.asyncio
async def test_code_exchange_surfaces_rejections_and_timeouts() -> None:
    rejected = _xero_client(lambda request: httpx.Response(400, json={"error": "invalid_grant"}))
    with pytest.raises(OAuthTokenExchangeError) as excinfo:
        await rejected.exchange_authorization_code("code", "verifier")
    assert excinfo.value.status_code == 400

    def timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(OAuthTokenExchangeError):
        await _xero_client(timeout).exchange_authorization_code("code", "verifier")
