"""Delivery worker: claims due events and delivers them.

One ``tick`` claims a batch of due pending events, delivers them
concurrently under a semaphore, and writes each outcome back through the
claim token. A failure while handling one event is isolated to that event.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from uuid import uuid4
from datetime import datetime
from typing import TYPE_CHECKING

from herald.analytics import AnalyticsClient, NoopAnalyticsClient
from herald.logging import get_logger, log_context
from herald.models import (
    DeliveryResult,
    EventTransition,
    PermanentFailure,
    WebhookEvent,
    utc_now,
)

from .envelope import build_envelope, build_headers, encode_envelope
from .jobs import reclaim_stale_claims
from .state import DEFAULT_BACKOFF_CAP_MINUTES, failure_transition, plan_transition

if TYPE_CHECKING:
    from herald.storage import HeraldStorage

    from .registry import WebhookRegistry
    from .transport import DeliveryTransport

logger = get_logger(__name__)


@dataclass
class TickSummary:
    """Counts from one worker tick.

    Attributes:
        claimed: Events claimed by this tick.
        delivered: Events that reached ``delivered``.
        retrying: Events left pending with a retry scheduled.
        failed: Events that reached ``failed``.
        lost: Events whose claim was gone before write-back.
        errors: Events whose outcome could not be stored.
    """

    claimed: int = 0
    delivered: int = 0
    retrying: int = 0
    failed: int = 0
    lost: int = 0
    errors: int = 0

    def record(self, transition: EventTransition | None) -> None:
        if transition is None:
            self.lost += 1
        elif transition.status == "delivered":
            self.delivered += 1
        elif transition.status == "failed":
            self.failed += 1
        else:
            self.retrying += 1

    def describe(self) -> str:
        return (
            f"claimed={self.claimed} delivered={self.delivered} "
            f"retrying={self.retrying} failed={self.failed} "
            f"lost={self.lost} errors={self.errors}"
        )


class DeliveryWorker:
    """Polls the event store and delivers due events.

    Safe to run in several processes at once: claiming is atomic, so an
    event is handled by at most one worker per attempt.

    Example:
        ```python
        worker = DeliveryWorker(storage, registry, HttpxTransport())
        summary = await worker.tick()
        ```
    """

    def __init__(
        self,
        storage: HeraldStorage,
        registry: WebhookRegistry,
        transport: DeliveryTransport,
        analytics: AnalyticsClient | None = None,
        batch_size: int = 50,
        max_concurrent: int = 5,
        backoff_cap_minutes: int = DEFAULT_BACKOFF_CAP_MINUTES,
        claim_timeout_minutes: int = 15,
        user_agent: str = "Herald-Webhook/1.0",
    ) -> None:
        """Initialize the delivery worker.

        Args:
            storage: HeraldStorage instance.
            registry: Registry used for last-delivery summaries.
            transport: Performs the HTTP POST.
            analytics: Receives a best-effort event per delivery outcome.
            batch_size: Maximum events claimed per tick.
            max_concurrent: Concurrent deliveries within one tick.
            backoff_cap_minutes: Upper bound for the retry delay.
            claim_timeout_minutes: Age after which a claim counts as stale.
            user_agent: User-Agent header for deliveries.
        """
        self._storage = storage
        self._registry = registry
        self._transport = transport
        self._analytics = analytics or NoopAnalyticsClient()
        self._batch_size = batch_size
        self._max_concurrent = max_concurrent
        self._backoff_cap = backoff_cap_minutes
        self._claim_timeout_minutes = claim_timeout_minutes
        self._user_agent = user_agent

    async def tick(self, now: datetime | None = None) -> TickSummary:
        """Run one claim-and-deliver pass. Never raises.

        Args:
            now: Reference time for due checks and retry scheduling.
                Defaults to the current UTC time.

        Returns:
            TickSummary with per-outcome counts.
        """
        now = now or utc_now()
        with log_context(tick_id=uuid4().hex[:12]):
            return await self._tick(now)

    async def _tick(self, now: datetime) -> TickSummary:
        summary = TickSummary()

        try:
            batch = await self._storage.claim_due_events(now=now, limit=self._batch_size)
        except Exception:
            logger.exception("Failed to claim webhook events")
            return summary

        summary.claimed = len(batch.events)
        if not batch.events:
            return summary

        semaphore = asyncio.Semaphore(self._max_concurrent)

        async def run(event: WebhookEvent) -> EventTransition | None:
            async with semaphore:
                return await self.process_event(event, batch.token, now)

        results = await asyncio.gather(
            *(run(event) for event in batch.events),
            return_exceptions=True,
        )

        for event, result in zip(batch.events, results, strict=True):
            if isinstance(result, BaseException):
                summary.errors += 1
                logger.error(
                    "Failed to store webhook delivery outcome",
                    event_id=event.id,
                    webhook_id=event.webhook_id,
                    error=str(result),
                )
            else:
                summary.record(result)

        logger.info("Webhook tick complete", **vars(summary))
        return summary

    async def process_event(
        self,
        event: WebhookEvent,
        token: str,
        now: datetime,
    ) -> EventTransition | None:
        """Deliver one claimed event and write back its new state.

        Any exception during delivery marks the event failed with the
        error message. Exceptions while writing back propagate to ``tick``.

        Returns:
            The applied transition, or None if the claim was lost.
        """
        log = logger.bind(event_id=event.id, webhook_id=event.webhook_id, event_type=event.event_type)

        try:
            result = await self.deliver(event)
            transition = plan_transition(event, result, now, self._backoff_cap)
        except Exception as e:
            log.exception("Webhook delivery raised")
            result = PermanentFailure(reason=f"Processing error: {e}")
            transition = failure_transition(event, result.reason, now)

        applied = await self._storage.apply_transition(event.id, token, transition)
        if not applied:
            log.warning("Webhook event claim lost before write-back")
            return None

        log.info(
            "Webhook delivery attempted",
            outcome=result.kind,
            status=transition.status,
            attempts=transition.attempts,
            response_status=transition.response_status,
            next_retry_at=transition.next_retry_at.isoformat() if transition.next_retry_at else None,
        )

        await self._registry.record_delivery_outcome(
            event.webhook_id, transition.outcome, transition.attempts
        )
        await self._track(event, result, transition)
        return transition

    async def deliver(self, event: WebhookEvent) -> DeliveryResult:
        """Send one attempt of ``event`` to its webhook.

        A missing or inactive webhook is a permanent failure and no
        request is made.
        """
        webhook = await self._storage.get_webhook(event.webhook_id)
        if webhook is None:
            return PermanentFailure(reason="Webhook not found")
        if not webhook.is_active:
            return PermanentFailure(reason="Webhook is inactive")

        body = encode_envelope(
            build_envelope(event.id, event.event_type, event.payload, event.created_at)
        )
        headers = build_headers(
            secret=webhook.secret,
            body=body,
            event_type=event.event_type,
            event_id=event.id,
            attempt=event.attempts + 1,
            user_agent=self._user_agent,
        )
        return await self._transport.send(webhook.url, body, headers)

    async def reclaim_stale_claims(self, now: datetime | None = None) -> int:
        """Release claims older than the claim timeout.

        Returns:
            Number of events made claimable again.
        """
        return await reclaim_stale_claims(
            self._storage, now or utc_now(), self._claim_timeout_minutes
        )

    async def _track(
        self,
        event: WebhookEvent,
        result: DeliveryResult,
        transition: EventTransition,
    ) -> None:
        try:
            await self._analytics.track(
                "webhook.delivery",
                {
                    "webhookId": event.webhook_id,
                    "eventId": event.id,
                    "eventType": event.event_type,
                    "outcome": result.kind,
                    "status": transition.status,
                    "attempts": transition.attempts,
                    "responseStatus": transition.response_status,
                },
            )
        except Exception as e:
            logger.warning("Analytics tracking failed", event_id=event.id, error=str(e))


__all__ = ["DeliveryWorker", "TickSummary"]
