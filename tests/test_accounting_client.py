try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import json

import httpx
import pytest

from accounting_gateway.clients.accounting import XeroAccountingClient
from accounting_gateway.core.config import OAuthSettings, XeroSettings
from accounting_gateway.core.errors import (
    AuthenticationError,
    AuthorizationError,
    RateLimitError,
    UpstreamUnavailableError,
    ValidationError,
)


def _client(handler) -> XeroAccountingClient:
    settings = XeroSettings(
        XERO_CLIENT_ID="client",
        XERO_CLIENT_SECRET="secret",
        XERO_REDIRECT_URI="https://gateway.example.com/auth/callback",
        XERO_WEBHOOK_KEY="hook",
        XERO_API_BASE_URL="https://api.example.com/api.xro/2.0",
        XERO_CONNECTIONS_URL="https://api.example.com/connections",
    )
    return XeroAccountingClient(settings, OAuthSettings(), transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_fetch_sends_tenant_header_and_unwraps_resource() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"Contacts": [{"ContactID": "c-1"}]})

    contacts = await _client(handler).fetch("token", "tenant-a", "Contacts", {"page": 2, "where": None})

    assert contacts == [{"ContactID": "c-1"}]
    request = seen[0]
    assert request.url.path == "/api.xro/2.0/Contacts"
    assert request.url.params.get("page") == "2"
    assert "where" not in request.url.params
    assert request.headers["authorization"] == "Bearer token"
    assert request.headers["xero-tenant-id"] == "tenant-a"


@pytest.mark.asyncio
async def test_create_and_update_wrap_payloads() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=json.loads(request.content))

    client = _client(handler)
    created = await client.create("token", "tenant-a", "Contacts", {"Name": "Acme"})
    updated = await client.update("token", "tenant-a", "Contacts", "c-1", {"Name": "Acme 2"})

    assert created == [{"Name": "Acme"}]
    assert updated == [{"Name": "Acme 2"}]
    assert seen[0].method == "PUT"
    assert seen[1].method == "POST"
    assert seen[1].url.path.endswith("/Contacts/c-1")


@pytest.mark.asyncio
async def test_list_connections_has_no_tenant_header() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"tenantId": "t-1"}])

    connections = await _client(handler).list_connections("token")

    assert connections == [{"tenantId": "t-1"}]
    assert "xero-tenant-id" not in seen[0].headers


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, error",
    [
        (400, ValidationError),
        (401, AuthenticationError),
        (403, AuthorizationError),
        (429, RateLimitError),
        (502, UpstreamUnavailableError),
    ],
)
async def test_upstream_status_codes_are_mapped(status: int, error: type) -> None:
    client = _client(lambda request: httpx.Response(status, json={}))

    with pytest.raises(error):
        await client.fetch("token", "tenant-a", "Invoices")


@pytest.mark.asyncio
async def test_transport_failures_are_retryable_upstream_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(UpstreamUnavailableError) as excinfo:
        await _client(handler).fetch("token", "tenant-a", "Invoices")

    assert excinfo.value.retryable is True


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>maintenance</html>"),
        httpx.Response(200, json={"tenantId": "t-1"}),
        httpx.Response(200, json=["t-1"]),
    ],
)
async def test_malformed_connections_body_is_an_upstream_error(response: httpx.Response) -> None:
    client = _client(lambda request: response)

    with pytest.raises(UpstreamUnavailableError):
        await client.list_connections("token")


@pytest.mark.asyncio
async def test_non_json_resource_body_is_an_upstream_error() -> None:
    client = _client(lambda request: httpx.Response(200, text="not json"))

    with pytest.raises(UpstreamUnavailableError):
        await client.fetch("token", "tenant-a", "Invoices")
