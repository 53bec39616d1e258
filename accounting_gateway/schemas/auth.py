"""Schemas related to OAuth flows."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TokenSet(BaseModel):
    """Token payload returned by the authorization server."""

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None
    expires_in: int = Field(..., gt=0, description="Access token lifetime in seconds.")
    token_type: str = "Bearer"
    scope: Optional[str] = None
    id_token: Optional[str] = None


class AuthorizationResult(BaseModel):
    """Outcome of a completed authorization-code exchange."""

    account_id: str
    tokens: TokenSet


__all__ = ["AuthorizationResult", "TokenSet"]
