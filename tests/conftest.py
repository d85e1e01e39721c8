"""
Pytest configuration and shared fixtures.

Every test gets its own store (or app) so no state leaks between tests.
The store fixtures use a controllable clock and sequential ids.
"""

import hashlib
import hmac
import itertools
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from outreach.config import Settings
from outreach.main import create_app
from outreach.repository import InMemoryRepository
from outreach.store import MessageStore

TEST_WEBHOOK_SECRET = "test-webhook-secret"
START = datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingLinkClient:
    """Captures messages handed to the link client."""

    def __init__(self):
        self.sent = []

    def send(self, message):
        self.sent.append(message)


def compute_signature(body: str, secret: str = TEST_WEBHOOK_SECRET) -> str:
    """Compute HMAC-SHA256 signature for request body."""
    return hmac.new(
        secret.encode("utf-8"),
        body.encode("utf-8"),
        hashlib.sha256
    ).hexdigest()


@pytest.fixture
def clock():
    return FakeClock(START)


@pytest.fixture
def id_factory():
    counter = itertools.count(1)
    return lambda: f"id-{next(counter)}"


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def link_client():
    return RecordingLinkClient()


@pytest.fixture
def store(repository, link_client, clock, id_factory):
    return MessageStore(repository, link_client=link_client, clock=clock, id_factory=id_factory)


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        LOG_LEVEL="WARNING",
        STORE_BACKEND="memory",
        WEBHOOK_SECRET=TEST_WEBHOOK_SECRET,
        SIMULATE_REPLIES=False,
    )


@pytest.fixture
def client(settings):
    """Test client over a fresh application (and a fresh store)."""
    with TestClient(create_app(settings)) as test_client:
        yield test_client
