"""Webhook delivery with bounded retries and delivery bookkeeping."""

import asyncio
import hashlib
import hmac
import json
from collections import Counter
from typing import Any, Awaitable, Callable, Protocol

import httpx

from ..errors import DeliveryStateError, ValidationError
from ..event_bus import HistoryBuffer
from ..logging_config import get_logger
from ..models import (
    AgentWebhookConfig,
    DeliveryRecord,
    DeliveryStatus,
    RetryPolicy,
    WebhookPayload,
)
from ..storage import IAgentRegistry

logger = get_logger(__name__)

USER_AGENT = "Pulse-Webhook/1.0"

SleepFunc = Callable[[float], Awaitable[None]]


class IWebhookDeliveryService(Protocol):
    """Pushes event payloads to agent-owned HTTP endpoints."""

    async def send_webhook(
        self, config: AgentWebhookConfig, payload: WebhookPayload
    ) -> DeliveryRecord:
        """Deliver to one agent, retrying within policy. Never raises on delivery failure."""
        ...

    async def broadcast(self, payload: WebhookPayload) -> list[DeliveryRecord]:
        """Deliver to every enabled, subscribed agent concurrently."""
        ...

    async def get_agent_config(self, agent_id: str) -> AgentWebhookConfig | None:
        """Enabled config for an agent, or None."""
        ...


class WebhookDeliveryService:
    """Sends webhooks to agents with retry logic and tracking."""

    def __init__(
        self,
        registry: IAgentRegistry,
        client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
        timeout: float = 10.0,
        history_size: int = 100,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self._registry = registry
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()
        self._policy = retry_policy or RetryPolicy()
        self._timeout = timeout
        self._sleep = sleep
        self._history: HistoryBuffer[DeliveryRecord] = HistoryBuffer(history_size)

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._policy

    async def aclose(self) -> None:
        """Close the HTTP client if this service created it."""
        if self._owns_client:
            await self._client.aclose()

    # Registry pass-through
    async def get_agent_config(self, agent_id: str) -> AgentWebhookConfig | None:
        """Enabled config for an agent, or None."""
        config = await self._registry.get_config(agent_id)
        if config is None or not config.enabled:
            return None
        return config

    async def get_all_configs(self) -> list[AgentWebhookConfig]:
        """All enabled configs."""
        configs = await self._registry.get_all_configs()
        return [c for c in configs if c.enabled]

    # Delivery
    async def send_webhook(
        self, config: AgentWebhookConfig, payload: WebhookPayload
    ) -> DeliveryRecord:
        """Deliver to one agent, retrying within policy. Never raises on delivery failure."""
        if not config.url:
            raise ValidationError(f"webhook URL missing for agent {config.agent_id}")
        if not payload.event:
            raise ValidationError("payload event is required")

        policy = config.retry_policy or self._policy
        record = DeliveryRecord.new(config, payload, policy.max_attempts)
        self._history.append(record)

        await self._attempt_delivery(record, config, payload, policy)
        return record

    async def broadcast(self, payload: WebhookPayload) -> list[DeliveryRecord]:
        """Deliver to every enabled, subscribed agent concurrently."""
        configs = [c for c in await self.get_all_configs() if c.accepts(payload.event)]

        logger.info(
            "Broadcasting %s to %s agents", payload.event, len(configs)
        )

        records = await asyncio.gather(
            *[self._deliver_or_reject(config, payload) for config in configs]
        )
        return list(records)

    async def retry_delivery(self, delivery_id: str) -> DeliveryRecord | None:
        """Re-send a finished delivery as a fresh record. None if it cannot be retried."""
        previous = self.get_delivery(delivery_id)
        if previous is None or previous.payload is None:
            return None
        if not previous.is_terminal:
            raise DeliveryStateError(f"delivery {delivery_id} is still pending")

        config = await self.get_agent_config(previous.agent_id)
        if config is None:
            return None

        logger.info("Retrying delivery %s to %s", delivery_id, config.agent_name)
        return await self.send_webhook(config, previous.payload)

    async def _deliver_or_reject(
        self, config: AgentWebhookConfig, payload: WebhookPayload
    ) -> DeliveryRecord:
        try:
            return await self.send_webhook(config, payload)
        except ValidationError as e:
            policy = config.retry_policy or self._policy
            record = DeliveryRecord.new(config, payload, policy.max_attempts)
            record.mark_failed(str(e))
            self._history.append(record)
            logger.error("Rejected delivery to %s: %s", config.agent_id, e)
            return record

    async def _attempt_delivery(
        self,
        record: DeliveryRecord,
        config: AgentWebhookConfig,
        payload: WebhookPayload,
        policy: RetryPolicy,
    ) -> None:
        timeout = config.timeout or self._timeout

        try:
            body = json.dumps(payload.to_dict(), default=str)
            headers = self._build_headers(record, config, body)

            while True:
                attempt = record.begin_attempt()
                error, status, retryable = await self._post(
                    config.url, body, headers, timeout, policy
                )

                if error is None:
                    record.mark_success(status)
                    logger.info(
                        "Delivered %s to %s (attempt %s/%s)",
                        record.event_type,
                        config.agent_name,
                        attempt,
                        record.max_attempts,
                        extra={"context": self._log_context(record)},
                    )
                    return

                record.note_error(error, status)

                if not retryable:
                    logger.warning(
                        "Permanent failure delivering %s to %s: %s",
                        record.event_type,
                        config.agent_name,
                        error,
                    )
                    break

                if attempt >= record.max_attempts:
                    break

                delay = policy.delay_for(attempt)
                logger.warning(
                    "Failed (attempt %s/%s) delivering %s to %s: %s, retrying in %.1fs",
                    attempt,
                    record.max_attempts,
                    record.event_type,
                    config.agent_name,
                    error,
                    delay,
                    extra={"context": self._log_context(record)},
                )
                await self._sleep(delay)

            record.mark_failed()
            logger.error(
                "Failed to deliver %s to %s after %s attempts: %s",
                record.event_type,
                config.agent_name,
                record.attempts,
                record.last_error,
                extra={"context": self._log_context(record)},
            )
        except Exception as e:
            logger.exception(
                "Unexpected error delivering %s to %s: %s",
                record.event_type,
                config.agent_name,
                e,
                extra={"context": self._log_context(record)},
            )
            if not record.is_terminal:
                record.note_error(f"{e.__class__.__name__}: {e}")
        finally:
            # Cancellation or an unexpected error must not leave the record pending
            if not record.is_terminal:
                record.mark_failed(record.last_error or "delivery aborted")

    async def _post(
        self,
        url: str,
        body: str,
        headers: dict[str, str],
        timeout: float,
        policy: RetryPolicy,
    ) -> tuple[str | None, int | None, bool]:
        """One HTTP attempt. Returns (error, status_code, retryable)."""
        try:
            response = await self._client.post(
                url, content=body, headers=headers, timeout=timeout
            )
        except httpx.InvalidURL as e:
            return f"invalid URL: {e}", None, False
        except httpx.TimeoutException:
            return f"timeout after {timeout}s", None, True
        except httpx.HTTPError as e:
            return f"{e.__class__.__name__}: {e}", None, True

        if response.is_success:
            return None, response.status_code, False

        return (
            f"HTTP {response.status_code}",
            response.status_code,
            policy.is_retryable_status(response.status_code),
        )

    @staticmethod
    def _log_context(record: DeliveryRecord) -> dict[str, Any]:
        return {
            "delivery_id": record.id,
            "agent_id": record.agent_id,
            "event_type": record.event_type,
            "attempts": record.attempts,
            "status": record.status.value,
        }

    @staticmethod
    def _build_headers(
        record: DeliveryRecord, config: AgentWebhookConfig, body: str
    ) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "X-Pulse-Event": record.event_type,
            "X-Pulse-Delivery-Id": record.id,
            "X-Pulse-Agent-Type": config.agent_type,
        }
        if config.secret:
            digest = hmac.new(
                config.secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256
            ).hexdigest()
            headers["X-Pulse-Signature"] = f"sha256={digest}"
        headers.update(config.headers)
        return headers

    # History
    def get_delivery(self, delivery_id: str) -> DeliveryRecord | None:
        matches = self._history.recent(limit=1, predicate=lambda r: r.id == delivery_id)
        return matches[0] if matches else None

    def get_agent_deliveries(
        self, agent_id: str, limit: int | None = None
    ) -> list[DeliveryRecord]:
        return self._history.recent(limit=limit, predicate=lambda r: r.agent_id == agent_id)

    def get_recent_deliveries(self, limit: int = 50) -> list[DeliveryRecord]:
        return self._history.recent(limit=limit)

    def get_stats(self) -> dict[str, Any]:
        """Delivery counts by status, event and agent."""
        records = list(self._history)
        by_status = Counter(r.status for r in records)
        by_event = Counter(r.event_type for r in records)
        by_agent: dict[str, dict[str, int]] = {}
        for r in records:
            agent = by_agent.setdefault(r.agent_id, {"success": 0, "failed": 0})
            if r.status is DeliveryStatus.SUCCESS:
                agent["success"] += 1
            elif r.status is DeliveryStatus.FAILED:
                agent["failed"] += 1

        total = len(records)
        success = by_status[DeliveryStatus.SUCCESS]
        return {
            "total": total,
            "success": success,
            "failed": by_status[DeliveryStatus.FAILED],
            "pending": by_status[DeliveryStatus.PENDING],
            "success_rate": (success / total) * 100 if total else 0.0,
            "by_event": dict(by_event),
            "by_agent": by_agent,
        }
