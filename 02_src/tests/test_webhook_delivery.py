"""Tests for WebhookDeliveryService."""

import asyncio
import hashlib
import hmac
import json

import httpx
import pytest

from pulse.delivery import WebhookDeliveryService
from pulse.errors import DeliveryStateError, ValidationError
from pulse.models import DeliveryRecord, DeliveryStatus, RetryPolicy, WebhookPayload


def _payload(event="task.assigned", **data):
    return WebhookPayload.build(event, data or {"task_id": "t1"})


class TestSendWebhook:
    """Tests for single-agent delivery."""

    async def test_success_first_attempt(self, delivery, endpoint, make_config):
        """Test a delivery that succeeds immediately."""
        record = await delivery.send_webhook(make_config("a1"), _payload())

        assert record.status is DeliveryStatus.SUCCESS
        assert record.attempts == 1
        assert record.response_status == 200
        assert record.completed_at is not None
        assert len(endpoint.requests) == 1

        body = json.loads(endpoint.requests[0].content)
        assert body["event"] == "task.assigned"
        assert body["data"] == {"task_id": "t1"}
        assert "timestamp" in body

    async def test_times_out_twice_then_succeeds(
        self, delivery, endpoint, sleeps, make_config
    ):
        """Test retry after transient timeouts."""
        endpoint.responses = [httpx.ReadTimeout, httpx.ReadTimeout, 200]

        record = await delivery.send_webhook(make_config("a1"), _payload())

        assert record.status is DeliveryStatus.SUCCESS
        assert record.attempts == 3
        assert record.last_error is None
        assert sleeps.delays == [1.0, 2.0]

    async def test_exhausts_attempts(self, delivery, endpoint, sleeps, make_config):
        """Test that a persistently failing endpoint ends failed after max attempts."""
        endpoint.responses = [503] * 10

        record = await delivery.send_webhook(make_config("a1"), _payload())

        assert record.status is DeliveryStatus.FAILED
        assert record.attempts == 3
        assert record.last_error == "HTTP 503"
        assert record.response_status == 503
        assert len(endpoint.requests) == 3
        # No sleep after the final attempt
        assert len(sleeps.delays) == 2

    async def test_connection_error_is_retried(self, delivery, endpoint, make_config):
        """Test that connection errors count as transient."""
        endpoint.responses = [httpx.ConnectError, 200]

        record = await delivery.send_webhook(make_config("a1"), _payload())

        assert record.status is DeliveryStatus.SUCCESS
        assert record.attempts == 2

    async def test_timeout_error_message(self, delivery, endpoint, make_config):
        """Test the recorded error for timeouts."""
        endpoint.responses = [httpx.ReadTimeout] * 3

        record = await delivery.send_webhook(make_config("a1", timeout=2.5), _payload())

        assert record.status is DeliveryStatus.FAILED
        assert record.last_error == "timeout after 2.5s"

    async def test_client_error_is_permanent(self, delivery, endpoint, sleeps, make_config):
        """Test that a 404 ends the delivery without retrying."""
        endpoint.responses = [404]

        record = await delivery.send_webhook(make_config("a1"), _payload())

        assert record.status is DeliveryStatus.FAILED
        assert record.attempts == 1
        assert record.last_error == "HTTP 404"
        assert sleeps.delays == []

    async def test_rate_limit_is_retried(self, delivery, endpoint, make_config):
        """Test that 429 is treated as transient."""
        endpoint.responses = [429, 200]

        record = await delivery.send_webhook(make_config("a1"), _payload())

        assert record.status is DeliveryStatus.SUCCESS
        assert record.attempts == 2

    async def test_client_errors_retried_when_configured(
        self, storage, http_client, endpoint, sleeps, make_config
    ):
        """Test the legacy retry-everything behaviour."""
        service = WebhookDeliveryService(
            registry=storage,
            client=http_client,
            retry_policy=RetryPolicy(retry_client_errors=True),
            sleep=sleeps,
        )
        endpoint.responses = [404, 404, 404]

        record = await service.send_webhook(make_config("a1"), _payload())

        assert record.status is DeliveryStatus.FAILED
        assert record.attempts == 3

    async def test_per_agent_policy(self, delivery, endpoint, make_config):
        """Test that a config's own retry policy overrides the default."""
        endpoint.responses = [500] * 10
        config = make_config("a1", retry_policy=RetryPolicy(max_attempts=5))

        record = await delivery.send_webhook(config, _payload())

        assert record.attempts == 5
        assert record.max_attempts == 5

    async def test_missing_url_rejected(self, delivery, endpoint, make_config):
        """Test that a config without URL is a validation error."""
        with pytest.raises(ValidationError):
            await delivery.send_webhook(make_config("a1", url=""), _payload())
        assert endpoint.requests == []

    async def test_headers(self, delivery, endpoint, make_config):
        """Test delivery headers and custom headers."""
        config = make_config("a1", agent_type="code", headers={"X-Team": "core"})

        record = await delivery.send_webhook(config, _payload())

        headers = endpoint.requests[0].headers
        assert headers["content-type"] == "application/json"
        assert headers["user-agent"] == "Pulse-Webhook/1.0"
        assert headers["x-pulse-event"] == "task.assigned"
        assert headers["x-pulse-delivery-id"] == record.id
        assert headers["x-pulse-agent-type"] == "code"
        assert headers["x-team"] == "core"
        assert "x-pulse-signature" not in headers

    async def test_signature(self, delivery, endpoint, make_config):
        """Test HMAC signing when a secret is configured."""
        await delivery.send_webhook(make_config("a1", secret="s3cret"), _payload())

        request = endpoint.requests[0]
        expected = hmac.new(b"s3cret", request.content, hashlib.sha256).hexdigest()
        assert request.headers["x-pulse-signature"] == f"sha256={expected}"

    async def test_cancellation_leaves_no_pending_record(
        self, storage, sleeps, make_config
    ):
        """Test that a cancelled delivery is marked failed."""
        started = asyncio.Event()

        async def hang(request):
            started.set()
            await asyncio.sleep(3600)
            return httpx.Response(200)

        async with httpx.AsyncClient(transport=httpx.MockTransport(hang)) as client:
            service = WebhookDeliveryService(registry=storage, client=client, sleep=sleeps)
            task = asyncio.create_task(service.send_webhook(make_config("a1"), _payload()))
            await started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        record = service.get_recent_deliveries(1)[0]
        assert record.status is DeliveryStatus.FAILED
        assert record.attempts == 1
        assert record.last_error == "delivery aborted"


class TestBroadcast:
    """Tests for broadcast delivery."""

    async def test_broadcast_to_all_enabled(self, delivery, storage, endpoint, make_config):
        """Test one record per enabled, subscribed config."""
        await storage.save_webhook_config(make_config("a1"))
        await storage.save_webhook_config(make_config("a2"))
        await storage.save_webhook_config(make_config("a3"))
        await storage.save_webhook_config(make_config("off", enabled=False))
        await storage.save_webhook_config(
            make_config("picky", event_types=frozenset({"task.completed"}))
        )

        records = await delivery.broadcast(_payload("task.assigned"))

        assert sorted(r.agent_id for r in records) == ["a1", "a2", "a3"]
        assert all(r.status is DeliveryStatus.SUCCESS for r in records)
        assert len(endpoint.requests) == 3

    async def test_broadcast_partial_failure(self, delivery, storage, endpoint, make_config):
        """Test that one failing agent does not affect the others."""
        await storage.save_webhook_config(make_config("good"))
        await storage.save_webhook_config(make_config("bad", url="http://agents.test/bad"))

        def route(request):
            endpoint.requests.append(request)
            if request.url.path == "/bad":
                return httpx.Response(410)
            return httpx.Response(200)

        delivery._client = httpx.AsyncClient(transport=httpx.MockTransport(route))
        try:
            records = await delivery.broadcast(_payload())
        finally:
            await delivery._client.aclose()

        by_agent = {r.agent_id: r for r in records}
        assert by_agent["good"].status is DeliveryStatus.SUCCESS
        assert by_agent["bad"].status is DeliveryStatus.FAILED

    async def test_broadcast_with_malformed_url(self, delivery, storage, endpoint, make_config):
        """Test that an unparseable URL fails only its own record."""
        await storage.save_webhook_config(make_config("a1"))
        await storage.save_webhook_config(make_config("bad", url="http://[::1"))

        records = await delivery.broadcast(_payload())

        by_agent = {r.agent_id: r for r in records}
        assert len(records) == 2
        assert by_agent["a1"].status is DeliveryStatus.SUCCESS
        assert by_agent["bad"].status is DeliveryStatus.FAILED
        assert by_agent["bad"].attempts == 1
        assert by_agent["bad"].last_error.startswith("invalid URL")
        assert len(endpoint.requests) == 1

    async def test_unexpected_error_becomes_failed_record(self, storage, sleeps, make_config):
        """Test that a non-HTTP exception is recorded, not raised."""

        def explode(request):
            raise RuntimeError("transport bug")

        async with httpx.AsyncClient(transport=httpx.MockTransport(explode)) as client:
            service = WebhookDeliveryService(registry=storage, client=client, sleep=sleeps)
            record = await service.send_webhook(make_config("a1"), _payload())

        assert record.status is DeliveryStatus.FAILED
        assert record.last_error == "RuntimeError: transport bug"
        assert record.completed_at is not None

    async def test_broadcast_with_no_agents(self, delivery):
        """Test broadcast with no configs."""
        assert await delivery.broadcast(_payload()) == []


class TestDeliveryHistory:
    """Tests for delivery lookup, stats and retry."""

    async def test_stats(self, delivery, endpoint, make_config):
        """Test delivery statistics."""
        endpoint.responses = [200, 404]
        await delivery.send_webhook(make_config("a1"), _payload("task.assigned"))
        await delivery.send_webhook(make_config("a2"), _payload("task.created"))

        stats = delivery.get_stats()

        assert stats["total"] == 2
        assert stats["success"] == 1
        assert stats["failed"] == 1
        assert stats["pending"] == 0
        assert stats["success_rate"] == 50.0
        assert stats["by_event"] == {"task.assigned": 1, "task.created": 1}
        assert stats["by_agent"]["a2"] == {"success": 0, "failed": 1}

    async def test_agent_deliveries(self, delivery, make_config):
        """Test filtering deliveries by agent."""
        await delivery.send_webhook(make_config("a1"), _payload())
        await delivery.send_webhook(make_config("a2"), _payload())
        await delivery.send_webhook(make_config("a1"), _payload())

        assert len(delivery.get_agent_deliveries("a1")) == 2
        assert len(delivery.get_recent_deliveries(2)) == 2

    async def test_retry_delivery_creates_new_record(
        self, delivery, storage, endpoint, make_config
    ):
        """Test re-sending a failed delivery."""
        config = make_config("a1")
        await storage.save_webhook_config(config)
        endpoint.responses = [404]
        failed = await delivery.send_webhook(config, _payload())

        retried = await delivery.retry_delivery(failed.id)

        assert retried is not None
        assert retried.id != failed.id
        assert retried.status is DeliveryStatus.SUCCESS
        assert failed.status is DeliveryStatus.FAILED

    async def test_retry_unknown_delivery(self, delivery):
        """Test retrying an unknown id."""
        assert await delivery.retry_delivery("whd-missing") is None

    async def test_retry_pending_delivery_refused(self, delivery, make_config):
        """Test that an in-flight delivery cannot be retried."""
        record = DeliveryRecord.new(make_config("a1"), _payload(), 3)
        delivery._history.append(record)

        with pytest.raises(DeliveryStateError):
            await delivery.retry_delivery(record.id)

    async def test_get_agent_config_skips_disabled(self, delivery, storage, make_config):
        """Test that disabled configs are invisible to delivery."""
        await storage.save_webhook_config(make_config("a1", enabled=False))

        assert await delivery.get_agent_config("a1") is None
        assert await delivery.get_all_configs() == []
