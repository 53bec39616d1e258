"""Schemas for signed webhook deliveries from the accounting platform."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class WebhookEvent(BaseModel):
    """A single resource change notification."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    resource_id: str = Field(..., alias="resourceId", min_length=1)
    resource_type: str = Field(..., alias="resourceType", min_length=1)
    event_type: str = Field(..., alias="eventType", min_length=1)
    event_date_utc: str = Field(..., alias="eventDateUtc", min_length=1)
    tenant_id: Optional[str] = Field(None, alias="tenantId")


class WebhookPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    events: list[WebhookEvent]


class WebhookIngestResponse(BaseModel):
    status: str = "ok"
    processed: int
    failed: int
    deduplicated: int
    request_id: str = Field(..., serialization_alias="requestId")


__all__ = ["WebhookEvent", "WebhookIngestResponse", "WebhookPayload"]
