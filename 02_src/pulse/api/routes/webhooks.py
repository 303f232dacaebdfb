"""Webhook configuration and delivery API routes."""

import dataclasses
from typing import Any, Literal

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from ...app import Application
from ...errors import DeliveryStateError, ValidationError
from ...models import AgentWebhookConfig, WebhookPayload


class WebhookConfigRequest(BaseModel):
    """Register or replace an agent webhook."""

    agent_id: str
    agent_name: str
    url: str
    agent_type: str = "generic"
    enabled: bool = True
    event_types: list[str] = Field(default_factory=list)
    secret: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    timeout: float | None = Field(None, gt=0)
    max_attempts: int | None = Field(None, ge=1, le=10)


class TriggerRequest(BaseModel):
    """Send one event to one agent."""

    agent_id: str
    event: str = "task.assigned"
    data: dict[str, Any] = Field(default_factory=dict)
    priority: Literal["low", "medium", "high"] = "medium"


class BroadcastRequest(BaseModel):
    """Send one event to every subscribed agent."""

    event: str
    data: dict[str, Any] = Field(default_factory=dict)
    priority: Literal["low", "medium", "high"] = "medium"


def create_webhooks_router(app: Application) -> APIRouter:
    """Create webhooks router."""
    router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

    @router.get("/configs")
    async def list_configs() -> list[dict]:
        """All registered webhook configs."""
        try:
            configs = await app.storage.get_all_configs()
            return [c.to_dict() for c in configs]
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.post("/configs")
    async def save_config(request: WebhookConfigRequest) -> dict:
        """Register or replace an agent webhook config."""
        if not request.url:
            raise HTTPException(status_code=400, detail="url is required")
        try:
            config = AgentWebhookConfig(
                agent_id=request.agent_id,
                agent_name=request.agent_name,
                url=request.url,
                agent_type=request.agent_type,
                enabled=request.enabled,
                event_types=frozenset(request.event_types),
                secret=request.secret,
                headers=request.headers,
                timeout=request.timeout,
                # Per-agent attempts on top of the app-wide backoff settings
                retry_policy=(
                    dataclasses.replace(
                        app.delivery.retry_policy, max_attempts=request.max_attempts
                    )
                    if request.max_attempts
                    else None
                ),
            )
            await app.storage.save_webhook_config(config)
            return config.to_dict()
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.delete("/configs/{agent_id}")
    async def delete_config(agent_id: str) -> dict:
        """Remove an agent webhook config."""
        deleted = await app.storage.delete_webhook_config(agent_id)
        if not deleted:
            raise HTTPException(status_code=404, detail=f"No webhook for {agent_id}")
        return {"status": "ok"}

    @router.post("/trigger")
    async def trigger_agent(request: TriggerRequest) -> dict:
        """Deliver an event to a single agent's webhook."""
        config = await app.delivery.get_agent_config(request.agent_id)
        if config is None:
            raise HTTPException(
                status_code=404,
                detail=f"No enabled webhook configured for agent: {request.agent_id}",
            )
        try:
            payload = WebhookPayload.build(
                request.event, request.data, priority=request.priority
            )
            record = await app.delivery.send_webhook(config, payload)
            return record.to_dict()
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.post("/broadcast")
    async def broadcast(request: BroadcastRequest) -> dict:
        """Deliver an event to every subscribed agent."""
        if not request.event:
            raise HTTPException(status_code=400, detail="event is required")
        try:
            payload = WebhookPayload.build(
                request.event, request.data, priority=request.priority
            )
            records = await app.delivery.broadcast(payload)
            return {
                "event": request.event,
                "agents_notified": len(records),
                "deliveries": [r.to_dict() for r in records],
            }
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/deliveries")
    async def list_deliveries(
        agent_id: str | None = Query(None, description="Filter by agent"),
        limit: int = Query(50, ge=1, le=1000),
    ) -> list[dict]:
        """Recent deliveries, newest first."""
        if agent_id:
            records = app.delivery.get_agent_deliveries(agent_id, limit)
        else:
            records = app.delivery.get_recent_deliveries(limit)
        return [r.to_dict() for r in records]

    @router.get("/stats")
    async def delivery_stats() -> dict:
        """Delivery counts by status, event and agent."""
        return app.delivery.get_stats()

    @router.post("/deliveries/{delivery_id}/retry")
    async def retry_delivery(delivery_id: str) -> dict:
        """Re-send a finished delivery as a new record."""
        try:
            record = await app.delivery.retry_delivery(delivery_id)
        except DeliveryStateError as e:
            raise HTTPException(status_code=409, detail=str(e))
        if record is None:
            raise HTTPException(
                status_code=404, detail=f"Delivery cannot be retried: {delivery_id}"
            )
        return record.to_dict()

    return router
