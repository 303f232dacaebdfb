"""Webhook configuration and delivery data models."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..errors import DeliveryStateError
from .events import Event, Priority, thaw_data


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for webhook delivery."""

    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    backoff_multiplier: float = 2.0
    max_delay: float = 30.0
    retry_client_errors: bool = False

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        delay = self.base_delay * (self.backoff_multiplier ** max(attempt - 1, 0))
        return min(delay, self.max_delay)

    def is_retryable_status(self, status_code: int) -> bool:
        """5xx, 408 and 429 are transient; other 4xx are permanent unless configured."""
        if status_code >= 500 or status_code in (408, 429):
            return True
        if 400 <= status_code < 500:
            return self.retry_client_errors
        return True


@dataclass(frozen=True)
class AgentWebhookConfig:
    """Webhook endpoint registered by an agent."""

    agent_id: str
    agent_name: str
    url: str
    agent_type: str = "generic"
    enabled: bool = True
    event_types: frozenset[str] = frozenset()  # empty means every event
    secret: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float | None = None
    retry_policy: RetryPolicy | None = None

    def accepts(self, event_name: str) -> bool:
        """Whether this config subscribes to the given event."""
        return not self.event_types or event_name in self.event_types

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "agent_name": self.agent_name,
            "agent_type": self.agent_type,
            "url": self.url,
            "enabled": self.enabled,
            "event_types": sorted(self.event_types),
            "timeout": self.timeout,
        }


@dataclass(frozen=True)
class WebhookPayload:
    """Body sent to an agent webhook."""

    event: str
    data: dict[str, Any]
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_event(cls, event: Event) -> "WebhookPayload":
        return cls(
            event=event.name,
            data=thaw_data(event.data),
            metadata={
                "source": event.metadata.source,
                "priority": event.metadata.priority.value,
                "event_id": event.id,
            },
            timestamp=event.metadata.timestamp,
        )

    @classmethod
    def build(
        cls,
        event: str,
        data: dict[str, Any],
        source: str = "pulse",
        priority: Priority | str = Priority.MEDIUM,
    ) -> "WebhookPayload":
        return cls(
            event=event,
            data=dict(data),
            metadata={"source": source, "priority": Priority(priority).value},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
            "metadata": self.metadata,
        }


class DeliveryStatus(str, Enum):
    """Delivery lifecycle: pending -> success | failed."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class DeliveryRecord:
    """Bookkeeping for one event delivered to one webhook target."""

    id: str
    agent_id: str
    event_type: str
    target_url: str
    max_attempts: int
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempts: int = 0
    last_error: str | None = None
    response_status: int | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None
    payload: WebhookPayload | None = None

    @classmethod
    def new(
        cls,
        config: AgentWebhookConfig,
        payload: WebhookPayload,
        max_attempts: int,
    ) -> "DeliveryRecord":
        return cls(
            id=f"whd-{uuid.uuid4().hex[:16]}",
            agent_id=config.agent_id,
            event_type=payload.event,
            target_url=config.url,
            max_attempts=max_attempts,
            payload=payload,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status is not DeliveryStatus.PENDING

    def _ensure_pending(self) -> None:
        if self.is_terminal:
            raise DeliveryStateError(
                f"delivery {self.id} already {self.status.value}"
            )

    def begin_attempt(self) -> int:
        """Count a new attempt; refuses to exceed max_attempts."""
        self._ensure_pending()
        if self.attempts >= self.max_attempts:
            raise DeliveryStateError(
                f"delivery {self.id} exhausted {self.max_attempts} attempts"
            )
        self.attempts += 1
        return self.attempts

    def note_error(self, error: str, response_status: int | None = None) -> None:
        self._ensure_pending()
        self.last_error = error
        self.response_status = response_status

    def mark_success(self, response_status: int) -> None:
        self._ensure_pending()
        self.status = DeliveryStatus.SUCCESS
        self.response_status = response_status
        self.last_error = None
        self.completed_at = datetime.now(timezone.utc)

    def mark_failed(self, error: str | None = None) -> None:
        self._ensure_pending()
        if error is not None:
            self.last_error = error
        self.status = DeliveryStatus.FAILED
        self.completed_at = datetime.now(timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "event_type": self.event_type,
            "target_url": self.target_url,
            "status": self.status.value,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "last_error": self.last_error,
            "response_status": self.response_status,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
