"""Routes published events to agent webhooks."""

from collections import OrderedDict

from ..event_bus import IEventBus
from ..logging_config import get_logger
from ..models import WILDCARD, DeliveryRecord, Event, WebhookPayload
from .webhook import IWebhookDeliveryService

logger = get_logger(__name__)


class WebhookDispatcher:
    """EventBus subscriber that pushes every event to subscribed agent webhooks.

    Events whose data names a target agent (``agent_id`` or ``agentId``) that
    has an enabled webhook go to that agent only. Everything else is broadcast
    to every enabled config subscribed to the event type.

    Records are kept per event id for the most recent ``history_size`` events,
    so overlapping publishes never overwrite each other's results.
    """

    def __init__(
        self,
        event_bus: IEventBus,
        delivery: IWebhookDeliveryService,
        history_size: int = 100,
    ):
        if history_size < 1:
            raise ValueError("history_size must be at least 1")
        self._event_bus = event_bus
        self._delivery = delivery
        self._history_size = history_size
        self._by_event: OrderedDict[str, list[DeliveryRecord]] = OrderedDict()

    def deliveries_for(self, event_id: str) -> list[DeliveryRecord]:
        """Records produced for one dispatched event; empty if unknown or evicted."""
        return list(self._by_event.get(event_id, []))

    def dispatched_event_ids(self) -> list[str]:
        """Ids of remembered events, oldest first."""
        return list(self._by_event)

    async def start(self) -> None:
        """Subscribe to all events."""
        self._event_bus.subscribe(WILDCARD, self._handle_event)

    async def stop(self) -> None:
        """Unsubscribe from the EventBus."""
        self._event_bus.unsubscribe(WILDCARD, self._handle_event)

    def _remember(self, event_id: str, records: list[DeliveryRecord]) -> None:
        self._by_event[event_id] = records
        self._by_event.move_to_end(event_id)
        while len(self._by_event) > self._history_size:
            self._by_event.popitem(last=False)

    async def _handle_event(self, event: Event) -> None:
        payload = WebhookPayload.from_event(event)
        target = event.data.get("agent_id") or event.data.get("agentId")

        if target:
            config = await self._delivery.get_agent_config(str(target))
            if config is not None and config.accepts(event.name):
                record = await self._delivery.send_webhook(config, payload)
                self._remember(event.id, [record])
                return
            logger.debug(
                "No enabled webhook for target agent %s, broadcasting %s",
                target,
                event.name,
                extra={"context": {"event_id": event.id, "agent_id": str(target)}},
            )

        self._remember(event.id, await self._delivery.broadcast(payload))
