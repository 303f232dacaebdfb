"""Agent Pulse: event bus, webhook delivery and agent health monitoring."""

from .app import Application, IApplication
from .delivery import IWebhookDeliveryService, WebhookDeliveryService, WebhookDispatcher
from .errors import DeliveryStateError, PulseError, ValidationError
from .event_bus import EventBus, IEventBus
from .health import BottleneckDetector, HealthMonitor, IHealthMonitor
from .models import (
    Agent,
    AgentHealthSnapshot,
    AgentStatus,
    AgentWebhookConfig,
    BottleneckFinding,
    DeliveryRecord,
    DeliveryStatus,
    Event,
    EventType,
    HealthCheckReport,
    RetryPolicy,
    Task,
    TaskStatus,
    WebhookPayload,
)
from .storage import IStorage, Storage

__all__ = [
    # Application
    "Application",
    "IApplication",
    # Errors
    "PulseError",
    "ValidationError",
    "DeliveryStateError",
    # Models
    "Event",
    "EventType",
    "AgentWebhookConfig",
    "RetryPolicy",
    "WebhookPayload",
    "DeliveryRecord",
    "DeliveryStatus",
    "Agent",
    "Task",
    "TaskStatus",
    "AgentStatus",
    "AgentHealthSnapshot",
    "HealthCheckReport",
    "BottleneckFinding",
    # Components
    "IStorage",
    "Storage",
    "IEventBus",
    "EventBus",
    "IWebhookDeliveryService",
    "WebhookDeliveryService",
    "WebhookDispatcher",
    "IHealthMonitor",
    "HealthMonitor",
    "BottleneckDetector",
]
