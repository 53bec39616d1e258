"""
JSON-RPC 2.0 dispatcher for the protocol endpoint.

Every outcome, including unexpected failures, is rendered as a well-formed
JSON-RPC response. Handshake and catalog methods are stateless; tool calls
run inside a validated session and a resolved tenant.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from accounting_gateway.core.errors import (
    GatewayError,
    InternalError,
    InvalidSessionError,
    SessionRequiredError,
    ValidationError,
)
from accounting_gateway.core.logging import redact
from accounting_gateway.models.records import MCPSession
from accounting_gateway.schemas.rpc import (
    JsonRpcRequest,
    RequestId,
    ToolCallParams,
    rpc_error,
    rpc_result,
)
from accounting_gateway.services.sessions import SessionManager
from accounting_gateway.services.tools import ToolRegistry

logger = logging.getLogger(__name__)

SERVER_NAME = "xero-mcp-server"
SERVER_VERSION = "1.0.0"
PROTOCOL_VERSION = "2024-11-05"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601

DispatchResult = Tuple[int, Optional[Dict[str, Any]]]
MethodHandler = Callable[[JsonRpcRequest, Optional[str]], Awaitable[Any]]


class MethodNotFoundError(GatewayError):
    error_type = "validation"
    code = "method_not_found"
    rpc_code = METHOD_NOT_FOUND


def _protocol_error(request_id: RequestId, code: int, message: str) -> Dict[str, Any]:
    return rpc_error(
        request_id,
        {"code": code, "message": message, "data": {"type": "validation", "retryable": False}},
    )


class ProtocolDispatcher:
    """Routes JSON-RPC requests to handshake, catalog and tool handlers."""

    def __init__(self, sessions: SessionManager, tools: ToolRegistry) -> None:
        self._sessions = sessions
        self._tools = tools
        self._methods: Dict[str, MethodHandler] = {
            "initialize": self._initialize,
            "notifications/initialized": self._acknowledge,
            "ping": self._acknowledge,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
        }

    @staticmethod
    def server_info() -> Dict[str, Any]:
        return {
            "name": SERVER_NAME,
            "version": SERVER_VERSION,
            "capabilities": {"tools": {}},
        }

    async def handle(self, body: Any, session_id: Optional[str] = None) -> DispatchResult:
        """Dispatch one request and return ``(http_status, response)``.

        ``response`` is ``None`` for notifications, which get no reply.
        """
        if isinstance(body, (bytes, bytearray, str)):
            try:
                body = json.loads(body)
            except (ValueError, UnicodeDecodeError):
                return 200, _protocol_error(None, PARSE_ERROR, "Parse error")

        request_id = body.get("id") if isinstance(body, dict) else None
        if not isinstance(request_id, (str, int)) or isinstance(request_id, bool):
            request_id = None

        try:
            request = JsonRpcRequest.model_validate(body)
        except PydanticValidationError:
            return 200, _protocol_error(request_id, INVALID_REQUEST, "Invalid Request")
        if request.jsonrpc != "2.0":
            return 200, _protocol_error(request_id, INVALID_REQUEST, "Invalid Request")

        status, response = await self._dispatch(request, session_id)
        if "id" not in body:
            return 202, None
        return status, response

    async def _dispatch(self, request: JsonRpcRequest, session_id: Optional[str]) -> DispatchResult:
        try:
            handler = self._methods.get(request.method)
            if handler is None:
                raise MethodNotFoundError(f"Method not found: {request.method}")
            result = await handler(request, session_id)
        except (SessionRequiredError, InvalidSessionError) as exc:
            return 401, rpc_error(request.id, exc.to_rpc_error())
        except GatewayError as exc:
            if exc.rpc_code == InternalError.rpc_code:
                logger.error("Request %s failed: %s", request.method, exc.message)
            else:
                logger.info("Request %s rejected: %s", request.method, exc.code)
            return 200, rpc_error(request.id, exc.to_rpc_error())
        except Exception:
            logger.exception("Unexpected failure handling %s", request.method)
            return 200, rpc_error(request.id, InternalError("Internal error").to_rpc_error())
        return 200, rpc_result(request.id, result)

    async def _initialize(self, request: JsonRpcRequest, session_id: Optional[str]) -> Dict[str, Any]:
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {"listChanged": True}},
            "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
        }

    async def _acknowledge(self, request: JsonRpcRequest, session_id: Optional[str]) -> Dict[str, Any]:
        return {}

    async def _list_tools(self, request: JsonRpcRequest, session_id: Optional[str]) -> Dict[str, Any]:
        return {"tools": self._tools.catalog()}

    def _require_session(self, session_id: Optional[str]) -> MCPSession:
        if not session_id:
            raise SessionRequiredError("Session ID required")
        session = self._sessions.validate(session_id)
        if session is None:
            logger.warning("Rejected invalid or expired session %s", redact(session_id))
            raise InvalidSessionError("Invalid or expired session")
        return session

    async def _call_tool(self, request: JsonRpcRequest, session_id: Optional[str]) -> Dict[str, Any]:
        session = self._require_session(session_id)

        try:
            params = ToolCallParams.model_validate(request.params or {})
        except PydanticValidationError as exc:
            raise ValidationError(
                "Invalid params",
                code="invalid_params",
                detail={"errors": exc.errors(include_url=False, include_input=False, include_context=False)},
            ) from exc

        definition = self._tools.get(params.name)
        if definition is None:
            raise MethodNotFoundError(f"Unknown tool: {params.name}")

        arguments = self._tools.parse_arguments(definition, params.arguments)
        tenant_id = self._sessions.resolve_tenant(session, arguments.tenant_id)
        return await self._tools.call(
            definition, arguments, account_id=session.account_id, tenant_id=tenant_id
        )


__all__ = [
    "MethodNotFoundError",
    "PROTOCOL_VERSION",
    "ProtocolDispatcher",
    "SERVER_NAME",
    "SERVER_VERSION",
]
