"""Application bootstrap and lifecycle management."""

import os
from datetime import timedelta
from typing import Protocol

import httpx

from .config import Settings, load_settings, resolve_db_path
from .delivery import WebhookDeliveryService, WebhookDispatcher
from .event_bus import EventBus
from .health import BottleneckDetector, HealthMonitor
from .logging_config import get_logger
from .models import WILDCARD, Event, RetryPolicy
from .storage import IStorage, Storage

logger = get_logger(__name__)


class IApplication(Protocol):
    """Bootstrap and lifecycle."""

    async def start(self) -> None:
        """Initialize components in dependency order."""
        ...

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        ...

    async def reset(self) -> None:
        """Reset data between test runs."""
        ...


class Application:
    """Main application bootstrap."""

    def __init__(
        self,
        db_path: str | None = None,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        env_db_path = os.getenv("DATABASE_URL") if db_path is None else db_path
        self._db_path = resolve_db_path(env_db_path)
        self._settings = settings or load_settings()
        self._http_client = http_client

        # Components (will be initialized in start())
        self._storage: IStorage | None = None
        self._event_bus: EventBus | None = None
        self._delivery: WebhookDeliveryService | None = None
        self._dispatcher: WebhookDispatcher | None = None
        self._health_monitor: HealthMonitor | None = None
        self._bottleneck_detector: BottleneckDetector | None = None

    async def start(self) -> None:
        """Initialize components in dependency order."""
        logger.info("Starting application")
        settings = self._settings

        # 1. Storage (agent registry + task store)
        self._storage = Storage(self._db_path)
        await self._storage.init()
        logger.info("Storage initialized")

        # 2. EventBus (no dependencies)
        self._event_bus = EventBus(history_size=settings.history_size)
        self._event_bus.subscribe(WILDCARD, self._log_event)
        logger.info("EventBus initialized")

        # 3. WebhookDeliveryService (depends on Storage as registry)
        self._delivery = WebhookDeliveryService(
            registry=self._storage,
            client=self._http_client,
            retry_policy=RetryPolicy(
                max_attempts=settings.max_attempts,
                base_delay=settings.base_delay,
                backoff_multiplier=settings.backoff_multiplier,
                max_delay=settings.max_delay,
                retry_client_errors=settings.retry_client_errors,
            ),
            timeout=settings.webhook_timeout,
            history_size=settings.history_size,
        )

        # 4. WebhookDispatcher (depends on EventBus + delivery)
        self._dispatcher = WebhookDispatcher(
            self._event_bus, self._delivery, history_size=settings.history_size
        )
        await self._dispatcher.start()
        logger.info("WebhookDispatcher started")

        # 5. HealthMonitor (depends on Storage)
        self._health_monitor = HealthMonitor(
            registry=self._storage,
            task_store=self._storage,
            offline_after=timedelta(seconds=settings.offline_after_seconds),
            stuck_after=timedelta(seconds=settings.stuck_after_seconds),
            critical_score=settings.critical_score,
        )

        # 6. BottleneckDetector (depends on Storage + HealthMonitor)
        self._bottleneck_detector = BottleneckDetector(
            registry=self._storage,
            task_store=self._storage,
            monitor=self._health_monitor,
        )
        logger.info("All components initialized successfully")

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        if self._dispatcher:
            await self._dispatcher.stop()
        if self._delivery:
            await self._delivery.aclose()
        if self._storage:
            await self._storage.close()
            logger.info("Storage closed")

    async def reset(self) -> None:
        """Reset data between test runs."""
        if self._event_bus:
            self._event_bus.clear_history()
        if self._storage:
            await self._storage.clear()
            logger.info("Storage cleared")
        logger.info("Reset complete")

    async def _log_event(self, event: Event) -> None:
        logger.info(
            "Event %s from %s",
            event.name,
            event.metadata.source,
            extra={"context": {"event_id": event.id, "data": event.to_dict()["data"]}},
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def storage(self) -> IStorage:
        """Get storage instance."""
        if not self._storage:
            raise RuntimeError("Application not started")
        return self._storage

    @property
    def event_bus(self) -> EventBus:
        """Get event bus instance."""
        if not self._event_bus:
            raise RuntimeError("Application not started")
        return self._event_bus

    @property
    def delivery(self) -> WebhookDeliveryService:
        """Get webhook delivery service."""
        if not self._delivery:
            raise RuntimeError("Application not started")
        return self._delivery

    @property
    def health_monitor(self) -> HealthMonitor:
        """Get health monitor."""
        if not self._health_monitor:
            raise RuntimeError("Application not started")
        return self._health_monitor

    @property
    def bottleneck_detector(self) -> BottleneckDetector:
        """Get bottleneck detector."""
        if not self._bottleneck_detector:
            raise RuntimeError("Application not started")
        return self._bottleneck_detector
