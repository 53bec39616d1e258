"""Render gateway errors as the HTTP error envelope."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from accounting_gateway.core.errors import GatewayError, InternalError, ValidationError

logger = logging.getLogger(__name__)


def _envelope(exc: GatewayError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_http_body())


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers so every failure leaves as ``{error: {...}}``."""

    @app.exception_handler(GatewayError)
    async def handle_gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.warning
        log("%s %s failed with %s: %s", request.method, request.url.path, exc.code, exc.message)
        return _envelope(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.warning("%s %s rejected: invalid request", request.method, request.url.path)
        return _envelope(ValidationError("Request validation failed"))

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
        error = GatewayError(str(exc.detail), code="http_error")
        error.status_code = exc.status_code
        error.error_type = "validation" if exc.status_code < 500 else "internal"
        return _envelope(error)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("%s %s failed unexpectedly", request.method, request.url.path)
        return _envelope(InternalError("Internal server error"))


__all__ = ["register_exception_handlers"]
