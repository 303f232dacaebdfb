"""Event bus API routes."""

from typing import Any, Literal

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from ...app import Application
from ...errors import ValidationError
from ...models import Event


class EventMetadataRequest(BaseModel):
    """Publisher metadata."""

    source: str = "api"
    priority: Literal["low", "medium", "high"] = "medium"


class PublishRequest(BaseModel):
    """Inbound event publish contract."""

    event: str
    data: dict[str, Any] = Field(default_factory=dict)
    metadata: EventMetadataRequest = Field(default_factory=EventMetadataRequest)


class PublishResponse(BaseModel):
    """Outcome of a publish."""

    event_id: str
    event: str
    known: bool
    handlers_executed: int
    errors: list[str]


def create_events_router(app: Application) -> APIRouter:
    """Create events router."""
    router = APIRouter(prefix="/api/events", tags=["events"])

    @router.post("", response_model=PublishResponse)
    async def publish_event(request: PublishRequest) -> dict:
        """Publish an event to the bus."""
        try:
            event = Event.create(
                request.event,
                request.data,
                source=request.metadata.source,
                priority=request.metadata.priority,
            )
            result = await app.event_bus.publish(event)
            return {
                "event_id": event.id,
                "event": event.name,
                "known": event.is_known,
                "handlers_executed": result.record.handlers_executed,
                "errors": result.record.errors,
            }
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/stats")
    async def get_event_stats(
        event: str | None = Query(None, description="Filter by event type"),
        source: str | None = Query(None, description="Filter by source"),
        limit: int = Query(50, ge=1, le=1000),
    ) -> dict:
        """Bus statistics, recent history and handler failures."""
        try:
            bus = app.event_bus
            return {
                "stats": bus.get_stats(),
                "history": [
                    r.to_dict()
                    for r in bus.get_history(event_type=event, source=source, limit=limit)
                ],
                "failed_events": [f.to_dict() for f in bus.get_failed_events(10)],
                "registered_event_types": bus.event_types(),
            }
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    return router
