"""
Error taxonomy shared by the services, the HTTP routes and the JSON-RPC
dispatcher.

Each class carries everything needed to render it on either surface: the HTTP
status, a stable machine-readable ``code``, the taxonomy ``error_type``,
whether the caller may retry, and the JSON-RPC error code.
"""

from __future__ import annotations

from typing import Any, Optional


class GatewayError(Exception):
    """Base class for errors that map to a well-formed error envelope."""

    status_code: int = 500
    error_type: str = "internal"
    code: str = "internal_error"
    retryable: bool = False
    rpc_code: int = -32603

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        detail: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.detail = detail or {}

    def to_http_body(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "type": self.error_type,
                "retryable": self.retryable,
            }
        }

    def to_rpc_error(self) -> dict[str, Any]:
        return {
            "code": self.rpc_code,
            "message": self.message,
            "data": {"type": self.error_type, "retryable": self.retryable},
        }


class ValidationError(GatewayError):
    """User input failed validation (400)."""

    status_code = 400
    error_type = "validation"
    code = "validation_error"
    rpc_code = -32602


class NotFoundError(ValidationError):
    """Referenced resource does not exist (404)."""

    status_code = 404
    code = "not_found"


class AuthenticationError(GatewayError):
    """Caller must (re-)authenticate (401)."""

    status_code = 401
    error_type = "authentication"
    code = "unauthorized"
    rpc_code = -32002


class AuthorizationError(GatewayError):
    """Authenticated caller may not access the resource (403)."""

    status_code = 403
    error_type = "authorization"
    code = "forbidden"
    rpc_code = -32003


class RateLimitError(GatewayError):
    """Upstream rate limit hit; retry with backoff (429)."""

    status_code = 429
    error_type = "rate_limit"
    code = "rate_limited"
    retryable = True
    rpc_code = -32004


class UpstreamUnavailableError(GatewayError):
    """Network failure or upstream outage (503)."""

    status_code = 503
    error_type = "network"
    code = "upstream_unavailable"
    retryable = True
    rpc_code = -32005


class CryptoError(GatewayError):
    """Ciphertext could not be processed; configuration or data corruption."""

    status_code = 500
    error_type = "crypto"
    code = "crypto_error"


class InternalError(GatewayError):
    """Unexpected failure inside the gateway."""


# Domain errors


class AccountNotFoundError(NotFoundError):
    code = "account_not_found"


class InvalidStateError(AuthenticationError):
    """OAuth state is unknown, expired, or already consumed."""

    code = "invalid_state"


class MissingVerifierError(AuthenticationError):
    """PKCE verifier for a state is gone."""

    code = "missing_verifier"


class TokenExchangeError(AuthenticationError):
    """Authorization server rejected the code exchange."""

    code = "token_exchange_failed"


class TokenNotFoundError(AuthenticationError):
    """No usable credential is stored for the account and tenant."""

    code = "token_not_found"


class TokenRefreshError(AuthenticationError):
    """Refreshing an access token failed; the credential was invalidated."""

    code = "token_refresh_failed"


class SessionRequiredError(AuthenticationError):
    code = "session_required"
    rpc_code = -32000


class InvalidSessionError(AuthenticationError):
    code = "invalid_session"
    rpc_code = -32001


class TenantMismatchError(AuthorizationError):
    """Request names a tenant other than the one bound to the session."""

    code = "tenant_mismatch"


class TenantNotConnectedError(AuthorizationError):
    code = "tenant_not_connected"


class InvalidPayloadError(ValidationError):
    code = "invalid_payload"


class InvalidSignatureError(AuthenticationError):
    code = "invalid_signature"


__all__ = [
    "AccountNotFoundError",
    "AuthenticationError",
    "AuthorizationError",
    "CryptoError",
    "GatewayError",
    "InternalError",
    "InvalidPayloadError",
    "InvalidSessionError",
    "InvalidSignatureError",
    "InvalidStateError",
    "MissingVerifierError",
    "NotFoundError",
    "RateLimitError",
    "SessionRequiredError",
    "TenantMismatchError",
    "TenantNotConnectedError",
    "TokenExchangeError",
    "TokenNotFoundError",
    "TokenRefreshError",
    "UpstreamUnavailableError",
    "ValidationError",
]
