"""Tests for data models."""

from datetime import datetime, timezone

import pytest

from pulse.errors import DeliveryStateError, ValidationError
from pulse.models import (
    AgentWebhookConfig,
    DeliveryRecord,
    DeliveryStatus,
    Event,
    EventType,
    Priority,
    RetryPolicy,
    WebhookPayload,
)


class TestEvent:
    """Tests for Event creation."""

    def test_create_known_event(self):
        """Test creating an event of a known type."""
        event = Event.create("task.assigned", {"agent_id": "a1"}, source="tracker")

        assert event.id.startswith("evt-")
        assert event.name == "task.assigned"
        assert event.type is EventType.TASK_ASSIGNED
        assert event.is_known
        assert event.metadata.source == "tracker"
        assert event.metadata.priority is Priority.MEDIUM

    def test_create_unknown_event(self):
        """Test that unrecognized names are kept but marked unknown."""
        event = Event.create("custom.thing")

        assert event.name == "custom.thing"
        assert event.type is EventType.UNKNOWN
        assert not event.is_known

    def test_create_rejects_empty_type(self):
        """Test that an empty event type is a validation error."""
        with pytest.raises(ValidationError):
            Event.create("")
        with pytest.raises(ValidationError):
            Event.create("   ")

    def test_create_rejects_bad_priority(self):
        """Test that an invalid priority is rejected."""
        with pytest.raises(ValidationError):
            Event.create("task.created", priority="urgent")

    def test_data_is_copied(self):
        """Test that the event does not alias the caller's dict."""
        data = {"k": 1}
        event = Event.create("task.created", data)
        data["k"] = 2

        assert event.data == {"k": 1}

    def test_data_is_read_only(self):
        """Test that published data cannot be changed in place."""
        event = Event.create("task.created", {"k": 1, "items": [{"n": 1}]})

        with pytest.raises(TypeError):
            event.data["k"] = 2
        with pytest.raises(TypeError):
            event.data["items"][0]["n"] = 2
        assert event.to_dict()["data"] == {"k": 1, "items": [{"n": 1}]}

    def test_payload_gets_mutable_copy(self):
        """Test that the webhook payload data is a plain dict."""
        event = Event.create("task.created", {"items": [1, 2]})

        payload = WebhookPayload.from_event(event)
        payload.data["items"].append(3)

        assert payload.data == {"items": [1, 2, 3]}
        assert event.data["items"] == (1, 2)

    def test_to_dict(self):
        """Test event serialization."""
        ts = datetime(2026, 1, 1, tzinfo=timezone.utc)
        event = Event.create("agent.wake", {"x": 1}, priority="high", timestamp=ts)

        data = event.to_dict()

        assert data["event"] == "agent.wake"
        assert data["data"] == {"x": 1}
        assert data["metadata"] == {
            "source": "system",
            "priority": "high",
            "timestamp": ts.isoformat(),
        }


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_defaults(self):
        """Test default policy values."""
        policy = RetryPolicy()

        assert policy.max_attempts == 3
        assert policy.base_delay == 1.0
        assert policy.backoff_multiplier == 2.0

    def test_exponential_delays(self):
        """Test that delays grow exponentially."""
        policy = RetryPolicy()

        assert policy.delay_for(1) == 1.0
        assert policy.delay_for(2) == 2.0
        assert policy.delay_for(3) == 4.0

    def test_delay_is_capped(self):
        """Test that delay never exceeds max_delay."""
        policy = RetryPolicy(base_delay=10, max_delay=15)

        assert policy.delay_for(5) == 15

    def test_rejects_zero_attempts(self):
        """Test that max_attempts must be positive."""
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    @pytest.mark.parametrize("status", [500, 502, 503, 408, 429])
    def test_transient_statuses_retryable(self, status):
        """Test that server errors, 408 and 429 are retried."""
        assert RetryPolicy().is_retryable_status(status)

    @pytest.mark.parametrize("status", [400, 401, 404, 410])
    def test_client_errors_not_retryable(self, status):
        """Test that other 4xx are permanent by default."""
        assert not RetryPolicy().is_retryable_status(status)

    def test_client_errors_retryable_when_enabled(self):
        """Test the retry_client_errors switch."""
        assert RetryPolicy(retry_client_errors=True).is_retryable_status(404)


class TestAgentWebhookConfig:
    """Tests for AgentWebhookConfig."""

    def test_empty_event_types_accepts_everything(self):
        """Test that no event filter means all events."""
        config = AgentWebhookConfig(agent_id="a1", agent_name="A1", url="http://x")

        assert config.accepts("task.assigned")
        assert config.accepts("anything")

    def test_event_filter(self):
        """Test that a filter limits accepted events."""
        config = AgentWebhookConfig(
            agent_id="a1",
            agent_name="A1",
            url="http://x",
            event_types=frozenset({"task.assigned"}),
        )

        assert config.accepts("task.assigned")
        assert not config.accepts("task.completed")

    def test_to_dict_hides_secret(self):
        """Test that the secret is not serialized."""
        config = AgentWebhookConfig(
            agent_id="a1", agent_name="A1", url="http://x", secret="s3cret"
        )

        assert "secret" not in config.to_dict()


class TestWebhookPayload:
    """Tests for WebhookPayload."""

    def test_from_event(self):
        """Test building a payload from an event."""
        event = Event.create("task.assigned", {"task_id": "t1"}, source="tracker")

        payload = WebhookPayload.from_event(event)

        assert payload.event == "task.assigned"
        assert payload.data == {"task_id": "t1"}
        assert payload.metadata["source"] == "tracker"
        assert payload.metadata["event_id"] == event.id
        assert payload.timestamp == event.metadata.timestamp

    def test_to_dict_contract(self):
        """Test the outbound body shape."""
        payload = WebhookPayload.build("task.created", {"a": 1}, priority="high")

        body = payload.to_dict()

        assert set(body) == {"event", "timestamp", "data", "metadata"}
        assert body["metadata"] == {"source": "pulse", "priority": "high"}


class TestDeliveryRecord:
    """Tests for DeliveryRecord state transitions."""

    def _record(self, max_attempts=3):
        config = AgentWebhookConfig(agent_id="a1", agent_name="A1", url="http://x")
        payload = WebhookPayload.build("task.created", {})
        return DeliveryRecord.new(config, payload, max_attempts)

    def test_new_record_is_pending(self):
        """Test initial state."""
        record = self._record()

        assert record.id.startswith("whd-")
        assert record.status is DeliveryStatus.PENDING
        assert record.attempts == 0
        assert record.target_url == "http://x"
        assert record.completed_at is None

    def test_attempts_bounded(self):
        """Test that attempts can never exceed max_attempts."""
        record = self._record(max_attempts=2)
        record.begin_attempt()
        record.begin_attempt()

        with pytest.raises(DeliveryStateError):
            record.begin_attempt()
        assert record.attempts == 2

    def test_success_is_terminal(self):
        """Test that a successful record cannot change again."""
        record = self._record()
        record.begin_attempt()
        record.mark_success(200)

        assert record.status is DeliveryStatus.SUCCESS
        assert record.completed_at is not None
        with pytest.raises(DeliveryStateError):
            record.mark_failed("late")
        with pytest.raises(DeliveryStateError):
            record.begin_attempt()

    def test_failed_keeps_last_error(self):
        """Test failure bookkeeping."""
        record = self._record()
        record.begin_attempt()
        record.note_error("HTTP 503", 503)
        record.mark_failed()

        assert record.status is DeliveryStatus.FAILED
        assert record.last_error == "HTTP 503"
        assert record.response_status == 503
        assert record.to_dict()["status"] == "failed"
