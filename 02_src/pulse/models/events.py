"""Event-related data models."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from ..errors import ValidationError

WILDCARD = "*"


def freeze_data(value: Any) -> Any:
    """Read-only deep copy: mappings become MappingProxyType, lists become tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze_data(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze_data(v) for v in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(freeze_data(v) for v in value)
    return value


def thaw_data(value: Any) -> Any:
    """Plain mutable copy of frozen data, safe to hand to json.dumps."""
    if isinstance(value, Mapping):
        return {k: thaw_data(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, frozenset)):
        return [thaw_data(v) for v in value]
    return value


class EventType(str, Enum):
    """Known event kinds. Anything else maps to UNKNOWN."""

    TASK_CREATED = "task.created"
    TASK_ASSIGNED = "task.assigned"
    TASK_UPDATED = "task.updated"
    TASK_COMPLETED = "task.completed"
    TASK_FAILED = "task.failed"
    AGENT_REGISTERED = "agent.registered"
    AGENT_WAKE = "agent.wake"
    AGENT_STATUS = "agent.status"
    AGENT_ERROR = "agent.error"
    AGENT_HEALTH_WARNING = "agent.health_warning"
    GITHUB_PUSH = "github.push"
    GITHUB_PULL_REQUEST = "github.pull_request"
    GITHUB_ISSUE = "github.issue"
    PROJECT_CREATED = "project.created"
    SYSTEM_ERROR = "system.error"
    SYSTEM_WARNING = "system.warning"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, name: str) -> "EventType":
        """Map a raw event name to its kind."""
        try:
            kind = cls(name)
        except ValueError:
            return cls.UNKNOWN
        return kind


class Priority(str, Enum):
    """Event priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class EventMetadata:
    """Who published an event, how urgent it is, and when."""

    source: str = "system"
    priority: Priority = Priority.MEDIUM
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class Event:
    """An immutable event published through the EventBus."""

    id: str
    name: str  # raw event type, e.g. "task.assigned"
    type: EventType
    data: Mapping[str, Any]  # read-only, see freeze_data
    metadata: EventMetadata

    @classmethod
    def create(
        cls,
        name: str,
        data: dict[str, Any] | None = None,
        source: str = "system",
        priority: Priority | str = Priority.MEDIUM,
        timestamp: datetime | None = None,
    ) -> "Event":
        """Build an event, rejecting an empty type."""
        if not name or not str(name).strip():
            raise ValidationError("event type is required")
        try:
            prio = Priority(priority)
        except ValueError as e:
            raise ValidationError(f"invalid priority: {priority!r}") from e

        name = str(name).strip()
        return cls(
            id=f"evt-{uuid.uuid4().hex}",
            name=name,
            type=EventType.parse(name),
            data=freeze_data(data or {}),
            metadata=EventMetadata(
                source=source or "system",
                priority=prio,
                timestamp=timestamp or datetime.now(timezone.utc),
            ),
        )

    @property
    def is_known(self) -> bool:
        return self.type is not EventType.UNKNOWN

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "event": self.name,
            "data": thaw_data(self.data),
            "metadata": {
                "source": self.metadata.source,
                "priority": self.metadata.priority.value,
                "timestamp": self.metadata.timestamp.isoformat(),
            },
        }


@dataclass
class EventRecord:
    """History entry written after all handlers for an event have run."""

    event: Event
    handlers_executed: int
    errors: list[str]
    duration_ms: float

    @property
    def failed(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> dict[str, Any]:
        data = self.event.to_dict()
        data.update(
            {
                "handlers_executed": self.handlers_executed,
                "errors": list(self.errors),
                "duration_ms": round(self.duration_ms, 3),
            }
        )
        return data


@dataclass
class FailedEvent:
    """A single handler failure captured during publish."""

    event: Event
    handler_name: str
    error: str
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event.to_dict(),
            "handler": self.handler_name,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class PublishResult:
    """What publish() hands back to the caller instead of raising."""

    record: EventRecord
    failures: list[FailedEvent] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures
