"""
Authorization-server utilities.

These helpers build the PKCE authorization URL and perform the code exchange
and refresh-token grants against the accounting platform's identity server.
"""

from __future__ import annotations

import logging
from typing import Any, Dict
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError as PydanticValidationError

from accounting_gateway.core.config import OAuthSettings, XeroSettings
from accounting_gateway.schemas.auth import TokenSet

logger = logging.getLogger(__name__)


class OAuthTokenExchangeError(Exception):
    """Raised when the token endpoint fails, times out or returns an error."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class XeroOAuthClient:
    """Build authorization URLs and exchange authorization codes."""

    def __init__(
        self,
        xero_settings: XeroSettings,
        oauth_settings: OAuthSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._xero = xero_settings
        self._oauth = oauth_settings
        self._transport = transport

    @property
    def scope(self) -> str:
        return " ".join(self._oauth.scopes)

    def build_authorization_url(self, state: str, code_challenge: str) -> str:
        """Construct the consent URL for an S256 PKCE authorization request."""
        params = {
            "response_type": "code",
            "client_id": self._xero.client_id,
            "redirect_uri": str(self._xero.redirect_uri),
            "scope": self.scope,
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        return f"{self._xero.authorize_url}?{urlencode(params)}"

    async def exchange_authorization_code(self, code: str, code_verifier: str) -> TokenSet:
        """Exchange an authorization code and its PKCE verifier for tokens."""
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": str(self._xero.redirect_uri),
            "code_verifier": code_verifier,
            "client_id": self._xero.client_id,
            "client_secret": self._xero.client_secret,
        }
        tokens = await self._post_token_request(payload)
        if not tokens.refresh_token:
            raise OAuthTokenExchangeError("Token response did not include a refresh token.")
        return tokens

    async def refresh_token(self, refresh_token: str) -> TokenSet:
        """Refresh the access token using a stored refresh token."""
        payload = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self._xero.client_id,
            "client_secret": self._xero.client_secret,
        }
        return await self._post_token_request(payload)

    async def _post_token_request(self, payload: Dict[str, Any]) -> TokenSet:
        try:
            async with httpx.AsyncClient(
                timeout=self._oauth.http_timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(self._xero.token_url, data=payload)
        except httpx.HTTPError as exc:
            logger.warning(
                "Token endpoint request failed (%s): %s",
                payload["grant_type"],
                type(exc).__name__,
            )
            raise OAuthTokenExchangeError(
                f"Token endpoint unreachable: {type(exc).__name__}"
            ) from exc

        if not response.is_success:
            logger.warning(
                "Token endpoint rejected %s grant with status %s",
                payload["grant_type"],
                response.status_code,
            )
            raise OAuthTokenExchangeError(
                f"Token endpoint returned {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return TokenSet.model_validate(response.json())
        except (ValueError, PydanticValidationError) as exc:
            raise OAuthTokenExchangeError("Incomplete token payload returned.") from exc


__all__ = ["OAuthTokenExchangeError", "XeroOAuthClient"]
