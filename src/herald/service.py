"""Core Herald service layer.

This module provides HeraldService, which wires storage, registry,
producer, delivery worker and scheduler into one operator-facing API.

Example:
    ```python
    from herald.models import UserScope
    from herald.service import HeraldService

    async with HeraldService.create() as herald:
        webhook = await herald.create_webhook(
            owner=UserScope(user_id="user_123"),
            name="CRM sync",
            url="https://crm.example.com/hooks",
            events=["document.created", "document.updated"],
        )

        # Domain code queues events
        await herald.emit("document.created", {"documentId": "doc_1"}, user_id="user_123")

        # Deliver due events now (normally done by the scheduler)
        summary = await herald.worker.tick()
    ```
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from herald.analytics import AnalyticsClient, create_analytics_client
from herald.config import Settings
from herald.exceptions import NotFoundError, ValidationError
from herald.logging import get_logger
from herald.models import utc_now
from herald.scheduler import BackgroundScheduler, PeriodicTask
from herald.storage import HeraldStorage
from herald.webhooks import (
    DeliveryWorker,
    EventProducer,
    HistoryReader,
    HttpxTransport,
    WebhookRegistry,
    build_envelope,
    build_headers,
    encode_envelope,
    purge_expired_events,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from herald.models import (
        DeliveryResult,
        EventPage,
        OwnerScope,
        Webhook,
        WebhookEvent,
        WebhookStats,
        WebhookUpdate,
    )
    from herald.webhooks import DeliveryTransport

logger = get_logger(__name__)

TEST_EVENT_TYPE = "webhook.test"


@dataclass
class HeraldService:
    """High-level Herald service for webhook management and delivery.

    This service provides:
    - Webhook CRUD: create_webhook, get_webhook, list_webhooks,
      update_webhook, rotate_webhook_secret, delete_webhook
    - test_webhook(): immediate signed test delivery
    - emit(): fan-out of a domain event into delivery records
    - get_history(), get_stats(): read models
    - retry_failed(), retry_event(): operator retries
    - start_workers(), stop_workers(): background delivery and maintenance

    Uses dependency injection for storage, transport and analytics,
    making it easy to test and configure.

    Attributes:
        storage: SQL storage backend.
        settings: Configuration settings.
        transport: HTTP transport for deliveries.
        analytics: Receives delivery outcome events.
    """

    storage: HeraldStorage
    settings: Settings
    transport: DeliveryTransport | None = None
    analytics: AnalyticsClient | None = None

    registry: WebhookRegistry = field(init=False, repr=False)
    producer: EventProducer = field(init=False, repr=False)
    worker: DeliveryWorker = field(init=False, repr=False)
    history: HistoryReader = field(init=False, repr=False)
    _scheduler: BackgroundScheduler | None = field(default=None, init=False, repr=False)
    _owned: list[Any] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self) -> None:
        """Build components from the injected dependencies."""
        if self.transport is None:
            self.transport = HttpxTransport(
                timeout_seconds=self.settings.webhook_request_timeout_seconds,
                response_body_limit=self.settings.webhook_response_body_limit,
            )
            self._owned.append(self.transport)
        if self.analytics is None:
            self.analytics = create_analytics_client(self.settings)
            self._owned.append(self.analytics)

        self.registry = WebhookRegistry(self.storage)
        self.producer = EventProducer(
            self.storage,
            registry=self.registry,
            max_attempts=self.settings.webhook_max_attempts,
        )
        self.worker = DeliveryWorker(
            storage=self.storage,
            registry=self.registry,
            transport=self.transport,
            analytics=self.analytics,
            batch_size=self.settings.webhook_batch_size,
            max_concurrent=self.settings.webhook_max_concurrent_deliveries,
            backoff_cap_minutes=self.settings.webhook_backoff_cap_minutes,
            claim_timeout_minutes=self.settings.webhook_claim_timeout_minutes,
            user_agent=self.settings.webhook_user_agent,
        )
        self.history = HistoryReader(self.storage)

    @classmethod
    def create(cls, settings: Settings | None = None) -> HeraldService:
        """Create a HeraldService with default dependencies.

        Args:
            settings: Optional settings. Uses defaults if None.

        Returns:
            Configured HeraldService instance.
        """
        if settings is None:
            settings = Settings()

        return cls(
            storage=HeraldStorage(
                url=settings.database_url,
                echo=settings.database_echo,
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
            ),
            settings=settings,
        )

    async def initialize(self) -> None:
        """Initialize the service (engine, tables)."""
        await self.storage.initialize()

    async def close(self) -> None:
        """Stop background work and release connections.

        Injected transport and analytics clients are left open for their owner.
        """
        await self.stop_workers()
        for resource in self._owned:
            closer = getattr(resource, "close", None)
            if closer is not None:
                await closer()
        await self.storage.close()

    async def __aenter__(self) -> HeraldService:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    # Webhook management

    async def create_webhook(
        self,
        owner: OwnerScope,
        name: str,
        url: str,
        events: Iterable[str],
        secret: str | None = None,
        is_active: bool = True,
    ) -> Webhook:
        """Register a webhook. See WebhookRegistry.create."""
        return await self.registry.create(
            owner=owner,
            name=name,
            url=url,
            events=events,
            secret=secret,
            is_active=is_active,
        )

    async def get_webhook(self, webhook_id: str) -> Webhook:
        """Get a webhook by ID, raising NotFoundError if missing."""
        return await self.registry.find_by_id(webhook_id)

    async def list_webhooks(
        self,
        owner: OwnerScope,
        active_only: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Webhook]:
        """List webhooks registered under ``owner``."""
        return await self.registry.list_for_owner(
            owner, active_only=active_only, limit=limit, offset=offset
        )

    async def update_webhook(
        self, webhook_id: str, changes: WebhookUpdate | dict[str, Any]
    ) -> Webhook:
        """Apply a partial update to a webhook."""
        return await self.registry.update(webhook_id, changes)

    async def rotate_webhook_secret(self, webhook_id: str, secret: str | None = None) -> Webhook:
        """Replace a webhook's signing secret."""
        return await self.registry.rotate_secret(webhook_id, secret)

    async def delete_webhook(self, webhook_id: str) -> bool:
        """Delete a webhook and its delivery records."""
        return await self.registry.delete(webhook_id)

    async def test_webhook(self, webhook_id: str) -> DeliveryResult:
        """Send a signed ``webhook.test`` delivery right away.

        The test delivery is not persisted and does not touch the
        webhook's last-delivery summary.

        Raises:
            NotFoundError: If the webhook does not exist.
            ValidationError: If the webhook is inactive.
        """
        webhook = await self.registry.find_by_id(webhook_id)
        if not webhook.is_active:
            raise ValidationError("is_active", "cannot test an inactive webhook")

        now = utc_now()
        test_id = f"test_{int(now.timestamp() * 1000)}"
        body = encode_envelope(
            build_envelope(
                test_id,
                TEST_EVENT_TYPE,
                {"message": "This is a test webhook from Herald", "webhookId": webhook.id},
                now,
            )
        )
        headers = build_headers(
            secret=webhook.secret,
            body=body,
            event_type=TEST_EVENT_TYPE,
            event_id=test_id,
            attempt=1,
            user_agent=self.settings.webhook_user_agent,
        )
        assert self.transport is not None
        result = await self.transport.send(webhook.url, body, headers)

        logger.info("Webhook test sent", webhook_id=webhook.id, outcome=result.kind)
        return result

    # Events

    async def emit(
        self,
        event_type: str,
        payload: dict[str, Any],
        user_id: str | None,
        organization_id: str | None = None,
    ) -> list[str]:
        """Queue a domain event for all matching webhooks. Never raises."""
        return await self.producer.emit(event_type, payload, user_id, organization_id)

    async def get_history(
        self,
        webhook_id: str,
        status: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> EventPage:
        """Paginated delivery history for a webhook, newest first."""
        return await self.history.get_history(webhook_id, status=status, page=page, limit=limit)

    async def get_stats(self, webhook_id: str) -> WebhookStats:
        """Aggregated delivery statistics for a webhook."""
        return await self.history.get_stats(webhook_id)

    async def retry_failed(
        self, webhook_id: str, max_attempts_threshold: int | None = None
    ) -> int:
        """Reset a webhook's failed events back to pending.

        Args:
            webhook_id: Webhook whose failed events are retried.
            max_attempts_threshold: Only events with at least this many attempts.
                Defaults to the configured webhook_max_attempts.

        Returns:
            Number of events reset.

        Raises:
            NotFoundError: If the webhook does not exist.
        """
        await self.registry.find_by_id(webhook_id)
        if max_attempts_threshold is None:
            max_attempts_threshold = self.settings.webhook_max_attempts
        count = await self.storage.reset_failed_events(webhook_id, max_attempts_threshold)
        logger.info("Failed webhook events reset", webhook_id=webhook_id, count=count)
        return count

    async def retry_event(self, event_id: str) -> WebhookEvent:
        """Reset a single failed event back to pending.

        Raises:
            NotFoundError: If the event does not exist.
            ValidationError: If the event is not failed.
        """
        event = await self.storage.get_event(event_id)
        if event is None:
            raise NotFoundError("webhook_event", event_id)
        if event.status != "failed":
            raise ValidationError("status", f"only failed events can be retried (is {event.status})")

        if not await self.storage.reset_failed_event(event_id):
            # Concurrently reset or purged
            raise ValidationError("status", "event is no longer failed")

        logger.info("Webhook event reset", event_id=event_id, webhook_id=event.webhook_id)
        refreshed = await self.storage.get_event(event_id)
        if refreshed is None:
            raise NotFoundError("webhook_event", event_id)
        return refreshed

    # Background work

    async def _dispatch(self, now: datetime) -> str | None:
        summary = await self.worker.tick(now)
        return summary.describe() if summary.claimed else None

    async def _reclaim(self, now: datetime) -> str | None:
        released = await self.worker.reclaim_stale_claims(now)
        return f"released={released}" if released else None

    async def _purge(self, now: datetime) -> str | None:
        deleted = await purge_expired_events(
            self.storage, now, retention_days=self.settings.webhook_retention_days
        )
        return f"deleted={deleted}" if deleted else None

    def build_scheduler(self) -> BackgroundScheduler:
        """Scheduler with the dispatch, reclaim and retention tasks."""
        return BackgroundScheduler(
            tasks=[
                PeriodicTask(
                    name="webhook_dispatch",
                    fn=self._dispatch,
                    interval_seconds=self.settings.webhook_dispatch_interval_seconds,
                ),
                PeriodicTask(
                    name="webhook_reclaim",
                    fn=self._reclaim,
                    interval_seconds=self.settings.webhook_reclaim_interval_seconds,
                ),
                PeriodicTask(
                    name="webhook_retention",
                    fn=self._purge,
                    interval_seconds=self.settings.webhook_cleanup_interval_seconds,
                ),
            ]
        )

    def start_workers(self) -> BackgroundScheduler:
        """Start background delivery and maintenance. Idempotent."""
        if self._scheduler is None:
            self._scheduler = self.build_scheduler()
            self._scheduler.start()
        return self._scheduler

    async def stop_workers(self) -> None:
        """Stop background work started by start_workers."""
        if self._scheduler is not None:
            scheduler, self._scheduler = self._scheduler, None
            await scheduler.stop()


__all__ = ["HeraldService", "TEST_EVENT_TYPE"]
