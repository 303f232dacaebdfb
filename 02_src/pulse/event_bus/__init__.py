"""EventBus module."""

from .event_bus import EventBus, EventHandler, IEventBus, Subscription
from .history import HistoryBuffer

__all__ = ["EventBus", "EventHandler", "HistoryBuffer", "IEventBus", "Subscription"]
