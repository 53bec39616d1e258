"""
Signed webhook ingestion with exactly-once-effective processing.

A delivery moves through ``Received -> SignatureVerified -> [Deduplicated |
Accepted] -> Processed | Failed``. Deduplication relies on an atomic claim in
the shared ledger, so redeliveries are suppressed across processes too. A
failed event leaves no ledger entry behind and will be retried by the
platform's next delivery.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from accounting_gateway.clients.state_store import SQLiteStateStore
from accounting_gateway.core.errors import InvalidPayloadError
from accounting_gateway.models.records import utc_now
from accounting_gateway.schemas.webhooks import WebhookEvent, WebhookPayload

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EventContext:
    request_id: str
    event_key: str
    received_at: datetime


EventHandler = Callable[[WebhookEvent, EventContext], Awaitable[None]]


@dataclass(slots=True)
class IngestResult:
    processed_count: int = 0
    failed_count: int = 0
    deduplicated_count: int = 0
    total_events: int = 0


def compute_event_key(event: WebhookEvent) -> str:
    """Stable identity of a change notification across redeliveries."""
    material = f"{event.resource_id}|{event.event_type}|{event.event_date_utc}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class WebhookEventRouter:
    """Routes events to handlers by resource type and event type.

    A handler registered for ``(resource_type, event_type)`` takes precedence
    over one registered for the event type alone.
    """

    def __init__(self) -> None:
        self._handlers: Dict[tuple[Optional[str], str], EventHandler] = {}

    def register(
        self,
        event_type: str,
        handler: EventHandler,
        *,
        resource_type: Optional[str] = None,
    ) -> None:
        key = (resource_type.upper() if resource_type else None, event_type.upper())
        self._handlers[key] = handler

    def resolve(self, event: WebhookEvent) -> Optional[EventHandler]:
        event_type = event.event_type.upper()
        return self._handlers.get(
            (event.resource_type.upper(), event_type)
        ) or self._handlers.get((None, event_type))


def build_default_router(store: SQLiteStateStore) -> WebhookEventRouter:
    """Router whose handlers record each change for downstream consumers."""

    def _recorder(action: str) -> EventHandler:
        async def _handle(event: WebhookEvent, context: EventContext) -> None:
            store.record_webhook_event(
                request_id=context.request_id,
                event_key=context.event_key,
                event=event.model_dump(by_alias=True),
                received_at=context.received_at,
            )
            logger.info(
                "Resource %s: %s %s (tenant %s)",
                action,
                event.resource_type,
                event.resource_id,
                event.tenant_id or "-",
            )

        return _handle

    router = WebhookEventRouter()
    router.register("CREATE", _recorder("created"))
    router.register("UPDATE", _recorder("updated"))
    router.register("DELETE", _recorder("deleted"))
    return router


class WebhookIngestor:
    """Verifies, deduplicates and dispatches webhook deliveries."""

    def __init__(
        self,
        store: SQLiteStateStore,
        *,
        secret: str,
        router: Optional[WebhookEventRouter] = None,
        retention_seconds: int = 86400,
        ledger_high_water: int = 1000,
        event_timeout_seconds: float = 10.0,
        claim_timeout_seconds: int = 300,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if not secret or not secret.strip():
            raise ValueError("Webhook signing secret must be configured.")
        self._store = store
        self._secret = secret.encode("utf-8")
        self._router = router or build_default_router(store)
        self._retention = timedelta(seconds=retention_seconds)
        self._high_water = ledger_high_water
        self._event_timeout = event_timeout_seconds
        self._claim_timeout = timedelta(seconds=claim_timeout_seconds)
        self._clock = clock

    @property
    def router(self) -> WebhookEventRouter:
        return self._router

    def verify(self, raw_body: bytes, signature: Optional[str]) -> bool:
        """Check the base64 HMAC-SHA256 signature in constant time."""
        if not signature:
            return False
        expected = base64.b64encode(
            hmac.new(self._secret, raw_body, hashlib.sha256).digest()
        ).decode("ascii")
        return hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("ascii", "replace"))

    def parse(self, raw_body: bytes) -> WebhookPayload:
        try:
            data = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError) as exc:
            raise InvalidPayloadError("Invalid JSON in webhook payload") from exc
        return self._validate(data)

    @staticmethod
    def _validate(data: Any) -> WebhookPayload:
        if isinstance(data, WebhookPayload):
            return data
        try:
            return WebhookPayload.model_validate(data)
        except PydanticValidationError as exc:
            raise InvalidPayloadError(
                "Invalid webhook payload structure",
                detail={"errors": exc.errors(include_url=False, include_input=False, include_context=False)},
            ) from exc

    async def ingest(self, payload: Any, *, request_id: str) -> IngestResult:
        """Process every event of a verified delivery with isolated failures."""
        parsed = self._validate(payload)
        result = IngestResult(total_events=len(parsed.events))

        for event in parsed.events:
            event_key = compute_event_key(event)
            now = self._clock()
            claimed = self._store.claim_event(
                event_key,
                now=now,
                processed_before=now - self._retention,
                pending_before=now - self._claim_timeout,
            )
            if not claimed:
                result.deduplicated_count += 1
                logger.info("Duplicate webhook event %s skipped (%s)", event_key[:12], request_id)
                continue

            context = EventContext(request_id=request_id, event_key=event_key, received_at=now)
            try:
                await self._dispatch(event, context)
            except Exception:
                self._store.release_event(event_key)
                result.failed_count += 1
                logger.exception(
                    "Webhook event %s %s/%s failed (%s)",
                    event_key[:12],
                    event.resource_type,
                    event.event_type,
                    request_id,
                )
                continue

            self._store.complete_event(event_key, self._clock())
            result.processed_count += 1

        self._maybe_evict()
        logger.info(
            "Webhook %s: %s processed, %s failed, %s deduplicated of %s",
            request_id,
            result.processed_count,
            result.failed_count,
            result.deduplicated_count,
            result.total_events,
        )
        return result

    async def _dispatch(self, event: WebhookEvent, context: EventContext) -> None:
        handler = self._router.resolve(event)
        if handler is None:
            logger.warning("Unhandled webhook event type: %s", event.event_type)
            return
        try:
            await asyncio.wait_for(handler(event, context), timeout=self._event_timeout)
        except asyncio.TimeoutError:
            logger.error(
                "Webhook handler timed out after %ss for %s", self._event_timeout, context.event_key[:12]
            )
            raise

    def _maybe_evict(self) -> None:
        if self._store.ledger_size() > self._high_water:
            removed = self.evict_stale()
            logger.info("Webhook ledger over high-water mark; evicted %s stale entries", removed)

    def evict_stale(self) -> int:
        """Drop ledger entries older than the retention window."""
        now = self._clock()
        return self._store.evict_ledger(
            processed_before=now - self._retention,
            pending_before=now - self._claim_timeout,
        )


__all__ = [
    "EventContext",
    "EventHandler",
    "IngestResult",
    "WebhookEventRouter",
    "WebhookIngestor",
    "build_default_router",
    "compute_event_key",
]
