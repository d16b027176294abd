"""Tests for the delivery worker."""

import asyncio
import json
import os
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import structlog

from herald.exceptions import StorageError
from herald.models import DeliverySuccess, TransientFailure, UserScope
from herald.storage import HeraldStorage
from herald.webhooks import (
    DeliveryWorker,
    EventProducer,
    HttpxTransport,
    WebhookRegistry,
    verify_signature,
)

from conftest import NOW, RecordingTransport, queue_event


def make_worker(storage, registry, transport, analytics=None, **kwargs) -> DeliveryWorker:
    return DeliveryWorker(storage, registry, transport, analytics=analytics, **kwargs)


class TestTick:
    """Tests for a single worker pass."""

    @pytest.mark.asyncio
    async def test_successful_delivery(self, storage, registry, webhook, analytics):
        transport = RecordingTransport()
        event = await queue_event(storage, webhook, payload={"documentId": "doc_1"})

        summary = await make_worker(storage, registry, transport, analytics).tick(NOW)

        assert summary.claimed == 1
        assert summary.delivered == 1
        stored = await storage.get_event(event.id)
        assert stored.status == "delivered"
        assert stored.attempts == 1
        assert stored.response_status == 200
        assert stored.next_retry_at is None
        assert stored.last_attempt_at == NOW

        summary_hook = await registry.find_by_id(webhook.id)
        assert summary_hook.last_delivery_status == "success"
        assert summary_hook.retry_count == 1

        assert analytics.events[0][0] == "webhook.delivery"
        assert analytics.events[0][1]["outcome"] == "success"

    @pytest.mark.asyncio
    async def test_request_is_signed(self, storage, registry, webhook):
        transport = RecordingTransport()
        event = await queue_event(storage, webhook, payload={"documentId": "doc_1"})

        await make_worker(storage, registry, transport, user_agent="Test/1.0").tick(NOW)

        [(url, body, headers)] = transport.calls
        assert url == webhook.url
        assert verify_signature("s3cret", body, headers["X-Webhook-Signature"])
        assert headers["X-Webhook-Event"] == "document.created"
        assert headers["X-Webhook-Id"] == event.id
        assert headers["X-Webhook-Attempt"] == "1"
        assert headers["User-Agent"] == "Test/1.0"
        assert json.loads(body) == {
            "id": event.id,
            "eventType": "document.created",
            "payload": {"documentId": "doc_1"},
            "timestamp": event.created_at.isoformat(),
        }

    @pytest.mark.asyncio
    async def test_transient_failure_schedules_retry(self, storage, registry, webhook):
        transport = RecordingTransport(default=TransientFailure(reason="HTTP 503", status_code=503))
        event = await queue_event(storage, webhook)

        summary = await make_worker(storage, registry, transport).tick(NOW)

        assert summary.retrying == 1
        stored = await storage.get_event(event.id)
        assert stored.status == "pending"
        assert stored.attempts == 1
        assert stored.next_retry_at == NOW + timedelta(minutes=2)
        assert stored.error_message == "HTTP 503"
        assert (await registry.find_by_id(webhook.id)).last_delivery_status == "failed"

    @pytest.mark.asyncio
    async def test_not_due_events_are_left_alone(self, storage, registry, webhook):
        transport = RecordingTransport()
        await queue_event(storage, webhook, attempts=1, next_retry_at=NOW + timedelta(minutes=1))

        summary = await make_worker(storage, registry, transport).tick(NOW)
        assert summary.claimed == 0
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_inactive_webhook_fails_without_request(self, storage, registry, webhook):
        transport = RecordingTransport()
        event = await queue_event(storage, webhook)
        await registry.update(webhook.id, {"is_active": False})

        summary = await make_worker(storage, registry, transport).tick(NOW)

        assert transport.calls == []
        assert summary.failed == 1
        stored = await storage.get_event(event.id)
        assert stored.status == "failed"
        assert stored.attempts == stored.max_attempts
        assert stored.error_message == "Webhook is inactive"
        assert (await registry.find_by_id(webhook.id)).last_delivery_status == "failed"

    @pytest.mark.asyncio
    async def test_missing_webhook_fails_without_request(self, storage, registry, webhook):
        transport = RecordingTransport()
        event = await queue_event(storage, webhook)
        worker = make_worker(storage, registry, transport)

        with patch.object(storage, "get_webhook", AsyncMock(return_value=None)):
            summary = await worker.tick(NOW)

        assert transport.calls == []
        assert summary.failed == 1
        stored = await storage.get_event(event.id)
        assert stored.status == "failed"
        assert stored.error_message == "Webhook not found"

    @pytest.mark.asyncio
    async def test_failure_isolation(self, storage, registry, webhook):
        """An exception on one event does not stop the rest of the batch."""
        first = await queue_event(storage, webhook, created_at=NOW - timedelta(minutes=3))
        second = await queue_event(storage, webhook, created_at=NOW - timedelta(minutes=2))
        third = await queue_event(storage, webhook, created_at=NOW - timedelta(minutes=1))

        class ExplodingTransport(RecordingTransport):
            async def send(self, url, body, headers):
                if headers["X-Webhook-Id"] == second.id:
                    raise RuntimeError("boom")
                return await super().send(url, body, headers)

        summary = await make_worker(storage, registry, ExplodingTransport()).tick(NOW)

        assert summary.delivered == 2
        assert summary.failed == 1
        assert (await storage.get_event(first.id)).status == "delivered"
        assert (await storage.get_event(third.id)).status == "delivered"
        broken = await storage.get_event(second.id)
        assert broken.status == "failed"
        assert "boom" in broken.error_message

    @pytest.mark.asyncio
    async def test_tick_never_raises_on_claim_failure(self, storage, registry):
        worker = make_worker(storage, registry, RecordingTransport())
        with patch.object(
            storage, "claim_due_events", AsyncMock(side_effect=StorageError("db down"))
        ):
            summary = await worker.tick(NOW)
        assert summary.claimed == 0

    @pytest.mark.asyncio
    async def test_write_back_failure_is_counted(self, storage, registry, webhook):
        await queue_event(storage, webhook)
        worker = make_worker(storage, registry, RecordingTransport())
        with patch.object(
            storage, "apply_transition", AsyncMock(side_effect=StorageError("db down"))
        ):
            summary = await worker.tick(NOW)
        assert summary.errors == 1

    @pytest.mark.asyncio
    async def test_lost_claim_is_not_summarised(self, storage, registry, webhook):
        await queue_event(storage, webhook)
        worker = make_worker(storage, registry, RecordingTransport())
        with patch.object(storage, "apply_transition", AsyncMock(return_value=False)):
            summary = await worker.tick(NOW)
        assert summary.lost == 1
        assert (await registry.find_by_id(webhook.id)).last_delivery_status is None

    @pytest.mark.asyncio
    async def test_analytics_failure_does_not_affect_delivery(self, storage, registry, webhook):
        analytics = AsyncMock()
        analytics.track.side_effect = RuntimeError("analytics down")
        event = await queue_event(storage, webhook)

        summary = await make_worker(storage, registry, RecordingTransport(), analytics).tick(NOW)

        assert summary.delivered == 1
        assert (await storage.get_event(event.id)).status == "delivered"

    @pytest.mark.asyncio
    async def test_batch_size(self, storage, registry, webhook):
        for _ in range(4):
            await queue_event(storage, webhook)
        summary = await make_worker(storage, registry, RecordingTransport(), batch_size=3).tick(NOW)
        assert summary.claimed == 3

    @pytest.mark.asyncio
    async def test_concurrent_deliveries_are_persisted(self, storage, registry, webhook):
        """Parallel write-backs on the in-memory store all stick."""
        events = [await queue_event(storage, webhook) for _ in range(10)]
        transport = RecordingTransport()
        worker = make_worker(storage, registry, transport, max_concurrent=5)

        summary = await worker.tick(NOW)

        assert summary.delivered == 10
        for event in events:
            assert (await storage.get_event(event.id)).status == "delivered"
        assert (await worker.tick(NOW + timedelta(hours=1))).claimed == 0
        assert len(transport.calls) == 10

    @pytest.mark.asyncio
    async def test_tick_id_bound_during_delivery(self, storage, registry, webhook):
        seen: list[dict] = []

        class ContextTransport(RecordingTransport):
            async def send(self, url, body, headers):
                seen.append(structlog.contextvars.get_contextvars())
                return await super().send(url, body, headers)

        await queue_event(storage, webhook)
        await queue_event(storage, webhook)
        await make_worker(storage, registry, ContextTransport()).tick(NOW)

        assert len(seen) == 2
        assert seen[0]["tick_id"] == seen[1]["tick_id"]
        assert "tick_id" not in structlog.contextvars.get_contextvars()


class TestClaimIdempotence:
    """Two ticks never deliver the same claimed event."""

    @pytest.mark.asyncio
    async def test_events_claimed_elsewhere_are_skipped(self, storage, registry, webhook):
        await queue_event(storage, webhook)
        other_worker_batch = await storage.claim_due_events(now=NOW)
        assert len(other_worker_batch.events) == 1

        transport = RecordingTransport()
        summary = await make_worker(storage, registry, transport).tick(NOW)

        assert summary.claimed == 0
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_reclaim_stale_claims(self, storage, registry, webhook):
        event = await queue_event(storage, webhook)
        await storage.claim_due_events(now=NOW - timedelta(minutes=30))

        worker = make_worker(storage, registry, RecordingTransport(), claim_timeout_minutes=15)
        assert await worker.reclaim_stale_claims(NOW) == 1

        summary = await worker.tick(NOW)
        assert summary.delivered == 1
        assert (await storage.get_event(event.id)).status == "delivered"


async def run_two_workers(url: str, count: int = 20) -> tuple[set[str], list[str]]:
    """Emit ``count`` events, then tick two workers with separate engines at once.

    Returns the emitted ids and the event ids that were actually sent.
    """
    first = HeraldStorage(url=url)
    second = HeraldStorage(url=url)
    await first.initialize()
    await second.initialize()
    try:
        registry = WebhookRegistry(first)
        webhook = await registry.create(
            UserScope(user_id="user_race"),
            "Race",
            "https://hooks.example.com/race",
            ["document.created"],
        )
        producer = EventProducer(first, registry=registry)
        emitted = set()
        for i in range(count):
            emitted.update(await producer.emit("document.created", {"n": i}, "user_race"))

        transport = RecordingTransport()
        workers = [
            make_worker(store, WebhookRegistry(store), transport, max_concurrent=5)
            for store in (first, second)
        ]
        await asyncio.gather(*(worker.tick(NOW) for worker in workers))

        sent = [
            headers["X-Webhook-Id"]
            for _, _, headers in transport.calls
            if headers["X-Webhook-Id"] in emitted
        ]
        await registry.delete(webhook.id)
        return emitted, sent
    finally:
        await first.close()
        await second.close()


class TestConcurrentWorkers:
    """Two workers ticking at the same time over one database."""

    @pytest.mark.asyncio
    async def test_shared_sqlite_file(self, tmp_path):
        emitted, sent = await run_two_workers(f"sqlite+aiosqlite:///{tmp_path / 'herald.db'}")

        assert len(emitted) == 20
        assert len(sent) == len(set(sent))
        assert set(sent) == emitted

    @pytest.mark.postgres
    @pytest.mark.asyncio
    async def test_shared_postgres(self):
        url = os.environ.get("HERALD_TEST_POSTGRES_URL")
        if not url:
            pytest.skip("HERALD_TEST_POSTGRES_URL not set")

        emitted, sent = await run_two_workers(url)

        assert len(sent) == len(set(sent))
        assert set(sent) == emitted


class TestEndToEnd:
    """Full lifecycle against an httpx mock subscriber."""

    @pytest.mark.asyncio
    async def test_three_failures_then_operator_retry(self, storage, registry):
        """Three HTTP 500s exhaust the event; a reset makes it deliverable again."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(500, text="Internal Server Error")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = HttpxTransport(client=client)
        webhook = await registry.create(
            UserScope(user_id="user_1"),
            "CRM",
            "https://crm.example.com/hooks",
            ["document.created"],
        )
        [event_id] = await EventProducer(storage).emit(
            "document.created", {"documentId": "doc_1"}, "user_1"
        )
        worker = make_worker(storage, registry, transport)

        await worker.tick(NOW)
        event = await storage.get_event(event_id)
        assert (event.status, event.attempts) == ("pending", 1)
        assert event.next_retry_at == NOW + timedelta(minutes=2)

        # Not yet due
        assert (await worker.tick(NOW + timedelta(minutes=1))).claimed == 0

        second = NOW + timedelta(minutes=2)
        await worker.tick(second)
        event = await storage.get_event(event_id)
        assert (event.status, event.attempts) == ("pending", 2)
        assert event.next_retry_at == second + timedelta(minutes=4)

        await worker.tick(second + timedelta(minutes=4))
        event = await storage.get_event(event_id)
        assert event.status == "failed"
        assert event.attempts == 3
        assert event.next_retry_at is None
        assert event.response_status == 500
        assert event.error_message == "HTTP 500"
        assert [r.headers["X-Webhook-Attempt"] for r in requests] == ["1", "2", "3"]

        stored_hook = await registry.find_by_id(webhook.id)
        assert stored_hook.last_delivery_status == "failed"
        assert stored_hook.retry_count == 3

        # Terminal: no more attempts
        assert (await worker.tick(NOW + timedelta(days=1))).claimed == 0

        assert await storage.reset_failed_events(webhook.id, min_attempts=3) == 1
        event = await storage.get_event(event_id)
        assert (event.status, event.attempts, event.error_message) == ("pending", 0, None)

        await client.aclose()

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self, storage, registry, webhook):
        transport = RecordingTransport(
            outcomes=[TransientFailure(reason="Request timeout")],
            default=DeliverySuccess(status_code=202),
        )
        event = await queue_event(storage, webhook)
        worker = make_worker(storage, registry, transport)

        await worker.tick(NOW)
        await worker.tick(NOW + timedelta(minutes=2))

        stored = await storage.get_event(event.id)
        assert stored.status == "delivered"
        assert stored.attempts == 2
        assert stored.error_message is None
        assert stored.response_status == 202
        assert (await registry.find_by_id(webhook.id)).last_delivery_status == "success"
