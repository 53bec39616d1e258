"""JSON-RPC 2.0 envelopes used by the protocol endpoint."""

from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

RequestId = Union[str, int, None]


class JsonRpcRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    jsonrpc: str
    method: str = Field(..., min_length=1)
    params: Optional[dict[str, Any]] = None
    id: RequestId = None


class ToolCallParams(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., min_length=1)
    arguments: dict[str, Any] = Field(default_factory=dict)


def rpc_result(request_id: RequestId, result: Any) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "result": result, "id": request_id}


def rpc_error(request_id: RequestId, error: dict[str, Any]) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "error": error, "id": request_id}


__all__ = [
    "JsonRpcRequest",
    "RequestId",
    "ToolCallParams",
    "rpc_error",
    "rpc_result",
]
