"""Pytest configuration and fixtures."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))


NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def storage():
    """Create in-memory storage for testing."""
    from pulse.storage import Storage

    st = Storage(":memory:")
    await st.init()
    yield st
    await st.close()


@pytest.fixture
def event_bus():
    """Create EventBus with a small history."""
    from pulse.event_bus import EventBus

    return EventBus(history_size=20)


class FakeEndpoint:
    """Scriptable webhook receiver behind httpx.MockTransport.

    Each entry in ``responses`` is an int status code or an exception class
    to raise for the next request; when exhausted every request gets 200.
    """

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.responses.pop(0) if self.responses else 200
        if isinstance(outcome, type) and issubclass(outcome, Exception):
            raise outcome("simulated failure", request=request)
        return httpx.Response(outcome, json={"ok": outcome < 400})


class RecordingSleep:
    """Stands in for asyncio.sleep so backoff never waits."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def endpoint():
    """Fake webhook endpoint answering 200 by default."""
    return FakeEndpoint()


@pytest.fixture
def sleeps():
    """Recorded backoff delays."""
    return RecordingSleep()


@pytest_asyncio.fixture
async def http_client(endpoint):
    """httpx client wired to the fake endpoint."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint))
    yield client
    await client.aclose()


@pytest.fixture
def delivery(storage, http_client, sleeps):
    """WebhookDeliveryService with fake HTTP and no real sleeping."""
    from pulse.delivery import WebhookDeliveryService

    return WebhookDeliveryService(
        registry=storage,
        client=http_client,
        sleep=sleeps,
    )


@pytest.fixture
def clock():
    """Fixed clock for health evaluation."""
    return lambda: NOW


@pytest.fixture
def health_monitor(storage, clock):
    """HealthMonitor reading from in-memory storage."""
    from pulse.health import HealthMonitor

    return HealthMonitor(registry=storage, task_store=storage, clock=clock)


@pytest.fixture
def make_config():
    """Factory for webhook configs."""
    from pulse.models import AgentWebhookConfig

    def _make(agent_id="a1", url=None, **kwargs):
        kwargs.setdefault("agent_name", f"Agent {agent_id}")
        return AgentWebhookConfig(
            agent_id=agent_id,
            url=url if url is not None else f"http://agents.test/{agent_id}/webhook",
            **kwargs,
        )

    return _make


@pytest.fixture
def ago():
    """Timestamp helper relative to the fixed clock."""

    def _ago(**delta) -> datetime:
        return NOW - timedelta(**delta)

    return _ago
