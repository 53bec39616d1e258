"""
FastAPI routes for the accounting gateway.
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Annotated, Any
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Header, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from accounting_gateway.core.errors import (
    GatewayError,
    InvalidSignatureError,
    InvalidStateError,
    MissingVerifierError,
    TokenExchangeError,
    ValidationError,
)
from accounting_gateway.dependencies import (
    get_accounting_client,
    get_app_settings,
    get_maintenance_service,
    get_pkce_orchestrator,
    get_protocol_dispatcher,
    get_session_manager,
    get_state_store,
    get_token_vault,
    get_webhook_ingestor,
    require_maintenance_token,
)
from accounting_gateway.models.records import TenantConnection
from accounting_gateway.schemas import WebhookIngestResponse

router = APIRouter()
logger = logging.getLogger(__name__)

_PROVIDER_ERROR = re.compile(r"[^a-z0-9_]")


def _app_redirect(settings: Any, **params: Any) -> RedirectResponse:
    target = f"{str(settings.app_base_url)}?{urlencode(params)}"
    return RedirectResponse(url=target, status_code=HTTPStatus.FOUND)


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck(
    store: Annotated[Any, Depends(get_state_store)],
) -> JSONResponse:
    """Report liveness together with database reachability."""
    database_ok = store.ping()
    return JSONResponse(
        status_code=HTTPStatus.OK if database_ok else HTTPStatus.SERVICE_UNAVAILABLE,
        content={
            "status": "ok" if database_ok else "degraded",
            "checks": {"database": "ok" if database_ok else "unavailable"},
        },
    )


@router.get("/auth/start")
async def start_authorization(
    orchestrator: Annotated[Any, Depends(get_pkce_orchestrator)],
    account_id: str | None = Query(
        default=None, alias="accountId", description="Account starting the connection."
    ),
) -> RedirectResponse:
    """Redirect the browser to the authorization server's consent screen."""
    if not account_id:
        raise ValidationError("accountId is required", code="missing_account_id")
    authorization_url = orchestrator.begin_auth(account_id)
    return RedirectResponse(url=authorization_url, status_code=HTTPStatus.FOUND)


@router.get("/auth/callback")
async def handle_authorization_callback(
    orchestrator: Annotated[Any, Depends(get_pkce_orchestrator)],
    vault: Annotated[Any, Depends(get_token_vault)],
    accounting_client: Annotated[Any, Depends(get_accounting_client)],
    sessions: Annotated[Any, Depends(get_session_manager)],
    store: Annotated[Any, Depends(get_state_store)],
    settings: Annotated[Any, Depends(get_app_settings)],
    code: str | None = Query(default=None, description="Authorization code."),
    state: str | None = Query(default=None, description="OAuth state token."),
    error: str | None = Query(default=None, description="Provider error code."),
) -> RedirectResponse:
    """Complete the exchange, store credentials and open a session.

    Every outcome is a redirect back to the application carrying either the new
    session or a machine-readable error code.
    """
    if error:
        logger.warning("Authorization server returned error %r", error[:64])
        reason = _PROVIDER_ERROR.sub("", error.lower())[:64] or "authorization_failed"
        return _app_redirect(settings, error=reason)
    if not code or not state:
        return _app_redirect(settings, error="missing_params")

    try:
        result = await orchestrator.complete_auth(code, state)
    except InvalidStateError:
        return _app_redirect(settings, error="invalid_state")
    except MissingVerifierError:
        return _app_redirect(settings, error="missing_verifier")
    except TokenExchangeError:
        return _app_redirect(settings, error="token_exchange_failed")

    account_id = result.account_id
    tokens = result.tokens
    connected: set[str] = set()
    try:
        vault.store(account_id, None, tokens)
        connections = await accounting_client.list_connections(tokens.access_token)
        for connection in connections:
            tenant_id = connection.get("tenantId")
            if not tenant_id:
                continue
            store.upsert_tenant_connection(
                TenantConnection(
                    tenant_id=tenant_id,
                    account_id=account_id,
                    tenant_name=connection.get("tenantName"),
                    tenant_type=connection.get("tenantType"),
                )
            )
            vault.store(account_id, tenant_id, tokens)
            connected.add(tenant_id)
        session = sessions.create(account_id)
    except GatewayError as exc:
        logger.error("Authorization callback failed for account %s: %s", account_id, exc.code)
        return _app_redirect(settings, error="callback_error")
    except Exception:
        logger.exception("Unexpected failure completing authorization for account %s", account_id)
        return _app_redirect(settings, error="callback_error")

    return _app_redirect(
        settings,
        success="true",
        sessionId=session.session_id,
        tenantCount=len(connected),
    )


@router.get("/mcp", status_code=HTTPStatus.OK)
async def describe_protocol_server(
    dispatcher: Annotated[Any, Depends(get_protocol_dispatcher)],
) -> dict:
    return dispatcher.server_info()


@router.post("/mcp")
async def handle_protocol_request(
    request: Request,
    dispatcher: Annotated[Any, Depends(get_protocol_dispatcher)],
    session_id: str | None = Query(default=None, alias="sessionId"),
    mcp_session_id: Annotated[str | None, Header(alias="Mcp-Session-Id")] = None,
) -> Response:
    """Dispatch one JSON-RPC request; the body is parsed by the dispatcher."""
    raw_body = await request.body()
    status_code, payload = await dispatcher.handle(raw_body, session_id or mcp_session_id)
    if payload is None:
        return Response(status_code=status_code)
    return JSONResponse(status_code=status_code, content=payload)


@router.get("/webhooks/accounting", status_code=HTTPStatus.OK)
async def webhook_liveness() -> dict:
    return {
        "status": "ok",
        "message": "Webhook endpoint is active",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/webhooks/accounting", status_code=HTTPStatus.OK)
async def receive_webhook(
    request: Request,
    ingestor: Annotated[Any, Depends(get_webhook_ingestor)],
) -> dict:
    """Verify, deduplicate and process a signed delivery."""
    raw_body = await request.body()
    signature = request.headers.get("x-signature") or request.headers.get("x-xero-signature")
    if not ingestor.verify(raw_body, signature):
        logger.warning("Rejected webhook delivery with missing or invalid signature")
        raise InvalidSignatureError("Invalid webhook signature")

    payload = ingestor.parse(raw_body)
    request_id = uuid.uuid4().hex
    result = await ingestor.ingest(payload, request_id=request_id)
    return WebhookIngestResponse(
        processed=result.processed_count,
        failed=result.failed_count,
        deduplicated=result.deduplicated_count,
        request_id=request_id,
    ).model_dump(by_alias=True)


@router.post(
    "/maintenance/cleanup-sessions",
    status_code=HTTPStatus.OK,
    dependencies=[Depends(require_maintenance_token)],
)
async def cleanup_expired_state(
    maintenance: Annotated[Any, Depends(get_maintenance_service)],
) -> dict:
    summary = maintenance.cleanup()
    return {"success": True, "cleaned": summary.to_response()}


@router.post(
    "/maintenance/refresh-tokens",
    status_code=HTTPStatus.OK,
    dependencies=[Depends(require_maintenance_token)],
)
async def refresh_expiring_tokens(
    maintenance: Annotated[Any, Depends(get_maintenance_service)],
) -> dict:
    """Proactively refresh credentials that expire within the configured window."""
    summary = await maintenance.refresh_tokens()
    return {
        "success": True,
        "refreshed": summary.refreshed,
        "failed": summary.failed,
        "total": summary.total,
    }


__all__ = ["router"]
