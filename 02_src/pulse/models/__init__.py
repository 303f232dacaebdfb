"""Core data models for Agent Pulse."""

from .agents import (
    Agent,
    AgentHealthSnapshot,
    AgentStatus,
    BottleneckFinding,
    HealthCheckReport,
    Severity,
    Task,
    TaskStatus,
)
from .events import (
    WILDCARD,
    Event,
    EventMetadata,
    EventRecord,
    EventType,
    FailedEvent,
    Priority,
    PublishResult,
    freeze_data,
    thaw_data,
)
from .webhooks import (
    AgentWebhookConfig,
    DeliveryRecord,
    DeliveryStatus,
    RetryPolicy,
    WebhookPayload,
)

__all__ = [
    # Events
    "WILDCARD",
    "Event",
    "EventMetadata",
    "EventRecord",
    "EventType",
    "FailedEvent",
    "Priority",
    "PublishResult",
    "freeze_data",
    "thaw_data",
    # Webhooks
    "AgentWebhookConfig",
    "DeliveryRecord",
    "DeliveryStatus",
    "RetryPolicy",
    "WebhookPayload",
    # Agents
    "Agent",
    "AgentHealthSnapshot",
    "AgentStatus",
    "BottleneckFinding",
    "HealthCheckReport",
    "Severity",
    "Task",
    "TaskStatus",
]
