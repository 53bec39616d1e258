"""Public schema exports."""

from .auth import AuthorizationResult, TokenSet
from .rpc import JsonRpcRequest, ToolCallParams, rpc_error, rpc_result
from .webhooks import WebhookEvent, WebhookIngestResponse, WebhookPayload

__all__ = [
    "AuthorizationResult",
    "JsonRpcRequest",
    "TokenSet",
    "ToolCallParams",
    "WebhookEvent",
    "WebhookIngestResponse",
    "WebhookPayload",
    "rpc_error",
    "rpc_result",
]
