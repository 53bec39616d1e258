"""
Narrow client for the accounting platform's REST API.

Only the calls the gateway needs are exposed: listing the tenants a token can
reach, and fetching, creating or updating resources inside one tenant.
Upstream failures are translated into the gateway error taxonomy.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from accounting_gateway.core.config import OAuthSettings, XeroSettings
from accounting_gateway.core.errors import (
    AuthenticationError,
    AuthorizationError,
    GatewayError,
    RateLimitError,
    UpstreamUnavailableError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class AccountingClient(Protocol):
    async def list_connections(self, access_token: str) -> list[Dict[str, Any]]: ...

    async def fetch(
        self,
        access_token: str,
        tenant_id: str,
        resource: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> list[Dict[str, Any]]: ...

    async def create(
        self, access_token: str, tenant_id: str, resource: str, payload: Dict[str, Any]
    ) -> list[Dict[str, Any]]: ...

    async def update(
        self,
        access_token: str,
        tenant_id: str,
        resource: str,
        resource_id: str,
        payload: Dict[str, Any],
    ) -> list[Dict[str, Any]]: ...


def map_upstream_error(response: httpx.Response) -> GatewayError:
    """Translate a non-2xx API response into a gateway error."""
    status = response.status_code
    if status == 401:
        return AuthenticationError(
            "Accounting API authentication failed", code="upstream_unauthorized"
        )
    if status == 403:
        return AuthorizationError("Accounting API access forbidden", code="upstream_forbidden")
    if status == 429:
        return RateLimitError("Accounting API rate limit exceeded")
    if status == 400:
        return ValidationError("Invalid request to accounting API", code="upstream_bad_request")
    if status >= 500:
        return UpstreamUnavailableError(f"Accounting API error: {status}")
    return GatewayError(f"Accounting API error: {status}", code="upstream_error")


def _json_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise UpstreamUnavailableError("Accounting API returned a non-JSON body") from exc


class XeroAccountingClient:
    """httpx implementation of :class:`AccountingClient`."""

    def __init__(
        self,
        xero_settings: XeroSettings,
        oauth_settings: OAuthSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._xero = xero_settings
        self._timeout = oauth_settings.http_timeout_seconds
        self._transport = transport

    async def list_connections(self, access_token: str) -> list[Dict[str, Any]]:
        """Return the tenants the token is authorized for."""
        response = await self._request(
            "GET", self._xero.connections_url, access_token=access_token
        )
        body = _json_body(response)
        if not isinstance(body, list) or not all(isinstance(item, dict) for item in body):
            logger.warning("Connections endpoint returned an unexpected body")
            raise UpstreamUnavailableError("Malformed connections response")
        return body

    async def fetch(
        self,
        access_token: str,
        tenant_id: str,
        resource: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> list[Dict[str, Any]]:
        response = await self._request(
            "GET",
            self._resource_url(resource),
            access_token=access_token,
            tenant_id=tenant_id,
            params={key: value for key, value in (params or {}).items() if value is not None},
        )
        return self._unwrap(response, resource)

    async def create(
        self, access_token: str, tenant_id: str, resource: str, payload: Dict[str, Any]
    ) -> list[Dict[str, Any]]:
        response = await self._request(
            "PUT",
            self._resource_url(resource),
            access_token=access_token,
            tenant_id=tenant_id,
            json={resource: [payload]},
        )
        return self._unwrap(response, resource)

    async def update(
        self,
        access_token: str,
        tenant_id: str,
        resource: str,
        resource_id: str,
        payload: Dict[str, Any],
    ) -> list[Dict[str, Any]]:
        response = await self._request(
            "POST",
            f"{self._resource_url(resource)}/{resource_id}",
            access_token=access_token,
            tenant_id=tenant_id,
            json={resource: [payload]},
        )
        return self._unwrap(response, resource)

    def _resource_url(self, resource: str) -> str:
        return f"{self._xero.api_base_url.rstrip('/')}/{resource}"

    @staticmethod
    def _unwrap(response: httpx.Response, resource: str) -> list[Dict[str, Any]]:
        body = _json_body(response) or {}
        if not isinstance(body, dict):
            raise UpstreamUnavailableError(f"Malformed {resource} response")
        return list(body.get(resource) or [])

    async def _request(
        self,
        method: str,
        url: str,
        *,
        access_token: str,
        tenant_id: Optional[str] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }
        if tenant_id:
            headers["xero-tenant-id"] = tenant_id
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("Accounting API %s %s failed: %s", method, url, type(exc).__name__)
            raise UpstreamUnavailableError("Failed to connect to accounting API") from exc

        if not response.is_success:
            logger.warning(
                "Accounting API %s %s returned %s", method, url, response.status_code
            )
            raise map_upstream_error(response)
        return response


__all__ = ["AccountingClient", "XeroAccountingClient", "map_upstream_error"]
