"""
FastAPI application entrypoint for the accounting gateway.
"""

from __future__ import annotations

from fastapi import FastAPI

from accounting_gateway.api.errors import register_exception_handlers
from accounting_gateway.api.routes import router as api_router
from accounting_gateway.core.config import get_settings
from accounting_gateway.core.logging import configure_logging


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Accounting MCP Gateway",
        version="1.0.0",
        description="OAuth, session and webhook control plane for accounting tools.",
    )
    app.include_router(api_router)
    register_exception_handlers(app)
    return app


app = create_app()

__all__ = ["app", "create_app"]
