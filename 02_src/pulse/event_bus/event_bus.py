"""EventBus implementation for pub/sub messaging."""

import inspect
import threading
import time
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Protocol, Union

from ..errors import ValidationError
from ..logging_config import get_logger
from ..models import WILDCARD, Event, EventRecord, FailedEvent, PublishResult
from .history import HistoryBuffer

logger = get_logger(__name__)


EventHandler = Callable[[Event], Union[Awaitable[None], None]]


@dataclass(frozen=True)
class Subscription:
    """A handler registered for an event type (or the wildcard)."""

    event_type: str
    handler: EventHandler

    @property
    def handler_name(self) -> str:
        return getattr(self.handler, "__qualname__", None) or repr(self.handler)

    def matches(self, event_name: str) -> bool:
        return self.event_type == WILDCARD or self.event_type == event_name


class IEventBus(Protocol):
    """In-memory pub/sub for exchanging Events."""

    def subscribe(self, event_type: str, handler: EventHandler) -> Subscription:
        """Subscribe a handler to an event type, or to "*" for every event."""
        ...

    def once(self, event_type: str, handler: EventHandler) -> Subscription:
        """Subscribe a handler for the next matching event only."""
        ...

    def unsubscribe(self, event_type: str, handler: EventHandler) -> bool:
        """Remove a previously registered handler."""
        ...

    async def publish(self, event: Event) -> PublishResult:
        """Publish Event: calls matching handlers in order, records history."""
        ...


class EventBus:
    """In-memory pub/sub event bus with bounded history and statistics."""

    def __init__(self, history_size: int = 100, failed_history_size: int = 50):
        self._subscriptions: list[Subscription] = []
        self._history: HistoryBuffer[EventRecord] = HistoryBuffer(history_size)
        self._failed: HistoryBuffer[FailedEvent] = HistoryBuffer(failed_history_size)
        self._by_type: Counter[str] = Counter()
        self._by_source: Counter[str] = Counter()
        self._total_events = 0
        self._total_failures = 0
        self._unknown_events = 0
        self._handlers_executed = 0
        self._lock = threading.Lock()

    def subscribe(self, event_type: str, handler: EventHandler) -> Subscription:
        """Subscribe a handler to an event type, or to "*" for every event."""
        if not event_type:
            raise ValidationError("event type is required to subscribe")
        if not callable(handler):
            raise ValidationError("handler must be callable")

        subscription = Subscription(event_type=str(event_type), handler=handler)
        with self._lock:
            self._subscriptions.append(subscription)
        logger.debug("Subscribed %s to %s", subscription.handler_name, event_type)
        return subscription

    def once(self, event_type: str, handler: EventHandler) -> Subscription:
        """Subscribe a handler that runs for the next matching event only.

        The registration is removed after the handler finishes, whether it
        succeeded or raised. Concurrent publishes call it at most once.
        """
        if not callable(handler):
            raise ValidationError("handler must be callable")

        fired = False

        async def wrapper(event: Event) -> None:
            nonlocal fired
            with self._lock:
                if fired:
                    return
                fired = True
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            finally:
                self.unsubscribe(event_type, wrapper)

        wrapper.__qualname__ = getattr(handler, "__qualname__", repr(handler))
        return self.subscribe(event_type, wrapper)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> bool:
        """Remove the first matching registration. Returns False if none found."""
        with self._lock:
            for i, sub in enumerate(self._subscriptions):
                if sub.event_type == event_type and sub.handler == handler:
                    del self._subscriptions[i]
                    return True
        return False

    async def publish(self, event: Event) -> PublishResult:
        """Publish Event: calls matching handlers in order, records history."""
        if not event.name:
            raise ValidationError("event type is required")

        with self._lock:
            handlers = [s for s in self._subscriptions if s.matches(event.name)]

        if not event.is_known:
            logger.warning(
                "Unknown event type published: %s",
                event.name,
                extra={"context": {"event_id": event.id, "source": event.metadata.source}},
            )

        started = time.perf_counter()
        failures: list[FailedEvent] = []

        # Handlers run one at a time, in registration order
        for sub in handlers:
            try:
                result = sub.handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                failure = FailedEvent(
                    event=event,
                    handler_name=sub.handler_name,
                    error=str(e) or e.__class__.__name__,
                    timestamp=datetime.now(timezone.utc),
                )
                failures.append(failure)
                logger.exception(
                    "Error in handler %s for %s: %s", sub.handler_name, event.name, e
                )

        duration_ms = (time.perf_counter() - started) * 1000
        record = EventRecord(
            event=event,
            handlers_executed=len(handlers),
            errors=[f.error for f in failures],
            duration_ms=duration_ms,
        )

        with self._lock:
            self._history.append(record)
            for failure in failures:
                self._failed.append(failure)
            self._total_events += 1
            self._total_failures += len(failures)
            self._handlers_executed += len(handlers)
            self._by_type[event.name] += 1
            self._by_source[event.metadata.source] += 1
            if not event.is_known:
                self._unknown_events += 1

        if duration_ms > 1000:
            logger.warning(
                "Event %s took %.0fms to process (%s handlers)",
                event.name,
                duration_ms,
                len(handlers),
            )
        else:
            logger.debug(
                "Event published: %s (%s handlers)", event.name, len(handlers)
            )

        return PublishResult(record=record, failures=failures)

    def get_stats(self) -> dict[str, Any]:
        """Counts of events per type/source and handler failures."""
        with self._lock:
            total = self._total_events
            return {
                "total_events": total,
                "total_listeners": len(self._subscriptions),
                "events_by_type": dict(self._by_type),
                "events_by_source": dict(self._by_source),
                "failed_events": self._total_failures,
                "unknown_events": self._unknown_events,
                "avg_handlers_per_event": (
                    self._handlers_executed / total if total else 0.0
                ),
            }

    def get_history(
        self,
        event_type: str | None = None,
        source: str | None = None,
        limit: int = 50,
    ) -> list[EventRecord]:
        """Most recent matching records, newest first."""

        def matches(record: EventRecord) -> bool:
            if event_type and record.event.name != event_type:
                return False
            if source and record.event.metadata.source != source:
                return False
            return True

        return self._history.recent(limit=max(limit, 0), predicate=matches)

    def get_failed_events(self, limit: int = 20) -> list[FailedEvent]:
        """Most recent handler failures, newest first."""
        return self._failed.recent(limit=max(limit, 0))

    def listener_count(self, event_type: str) -> int:
        with self._lock:
            return sum(1 for s in self._subscriptions if s.event_type == event_type)

    def event_types(self) -> list[str]:
        """Event types that currently have at least one listener."""
        with self._lock:
            return list(dict.fromkeys(s.event_type for s in self._subscriptions))

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()
            self._failed.clear()
            self._by_type.clear()
            self._by_source.clear()
            self._total_events = 0
            self._total_failures = 0
            self._unknown_events = 0
            self._handlers_executed = 0

    def clear_listeners(self) -> None:
        with self._lock:
            self._subscriptions.clear()
