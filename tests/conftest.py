"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import UTC, datetime

import pytest

from herald.config import Settings
from herald.models import (
    DeliveryResult,
    DeliverySuccess,
    UserScope,
    Webhook,
    WebhookEvent,
)
from herald.storage import HeraldStorage
from herald.webhooks import WebhookRegistry

MEMORY_URL = "sqlite+aiosqlite://"

# Fixed clock for tests that need deterministic retry times
NOW = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)


class RecordingTransport:
    """DeliveryTransport double that records calls and replays outcomes.

    Outcomes are consumed in order; once exhausted, ``default`` is returned.
    """

    def __init__(
        self,
        outcomes: list[DeliveryResult] | None = None,
        default: DeliveryResult | None = None,
    ) -> None:
        self.outcomes = list(outcomes or [])
        self.default = default or DeliverySuccess(status_code=200, response_body="ok")
        self.calls: list[tuple[str, bytes, dict[str, str]]] = []

    async def send(self, url: str, body: bytes, headers: dict[str, str]) -> DeliveryResult:
        self.calls.append((url, body, headers))
        if self.outcomes:
            return self.outcomes.pop(0)
        return self.default


class RecordingAnalytics:
    """AnalyticsClient double that keeps tracked events."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []

    async def track(self, event_name: str, properties: dict) -> None:
        self.events.append((event_name, properties))


@pytest.fixture
def test_settings() -> Settings:
    """Settings pointing at an in-memory database."""
    return Settings(
        _env_file=None,
        env="test",
        database_url=MEMORY_URL,
    )


@pytest.fixture
async def storage() -> AsyncIterator[HeraldStorage]:
    """Initialized in-memory storage, closed after the test."""
    store = HeraldStorage(url=MEMORY_URL)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def registry(storage: HeraldStorage) -> WebhookRegistry:
    return WebhookRegistry(storage)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def analytics() -> RecordingAnalytics:
    return RecordingAnalytics()


@pytest.fixture
async def webhook(registry: WebhookRegistry) -> Webhook:
    """Active user-scoped webhook subscribed to created and updated."""
    return await registry.create(
        owner=UserScope(user_id="user_1"),
        name="CRM sync",
        url="https://hooks.example.com/herald",
        events=["document.created", "document.updated"],
        secret="s3cret",
    )


async def queue_event(
    storage: HeraldStorage,
    webhook: Webhook,
    event_type: str = "document.created",
    payload: dict | None = None,
    **fields,
) -> WebhookEvent:
    """Insert a delivery record directly."""
    event = WebhookEvent(
        webhook_id=webhook.id,
        event_type=event_type,
        payload=payload if payload is not None else {"documentId": "doc_1"},
        **fields,
    )
    return await storage.insert_event(event)
