"""Event producer: fan-out of domain events into delivery records.

Domain services call ``emit`` after their own action has succeeded.
``emit`` only queues; HTTP delivery happens later in the worker.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from herald.logging import get_logger
from herald.models import WebhookEvent, is_known_event_type

from .registry import WebhookRegistry

if TYPE_CHECKING:
    from herald.storage import HeraldStorage

logger = get_logger(__name__)


class EventProducer:
    """Creates one pending delivery record per matching webhook.

    Example:
        ```python
        producer = EventProducer(storage)
        await producer.emit(
            "document.created",
            {"documentId": "doc_1", "title": "Q3 report"},
            user_id="user_123",
        )
        ```
    """

    def __init__(
        self,
        storage: HeraldStorage,
        registry: WebhookRegistry | None = None,
        max_attempts: int = 3,
    ) -> None:
        """Initialize the producer.

        Args:
            storage: HeraldStorage instance.
            registry: Registry used to find subscribers. Defaults to one
                over ``storage``.
            max_attempts: max_attempts stamped on every new event.
        """
        self._storage = storage
        self._registry = registry or WebhookRegistry(storage)
        self._max_attempts = max_attempts

    async def emit(
        self,
        event_type: str,
        payload: dict[str, Any],
        user_id: str | None,
        organization_id: str | None = None,
    ) -> list[str]:
        """Queue an event for every matching active webhook.

        Never raises: the domain action that emitted the event must not
        fail because of webhook bookkeeping. Failures are logged.

        Args:
            event_type: Catalog event type.
            payload: Opaque JSON object delivered verbatim.
            user_id: User who triggered the event.
            organization_id: Organization the event belongs to, if any.

        Returns:
            IDs of the created delivery records (empty on any failure).
        """
        log = logger.bind(event_type=event_type, user_id=user_id, organization_id=organization_id)

        if not is_known_event_type(event_type):
            log.warning("Ignoring unknown webhook event type")
            return []

        try:
            webhooks = await self._registry.find_matching(
                event_type=event_type,
                user_id=user_id,
                organization_id=organization_id,
            )
        except Exception:
            log.exception("Webhook lookup failed, event not queued")
            return []

        if not webhooks:
            log.debug("No webhooks subscribed to event")
            return []

        event_ids: list[str] = []
        for webhook in webhooks:
            try:
                event = WebhookEvent(
                    webhook_id=webhook.id,
                    event_type=event_type,  # type: ignore[arg-type]
                    payload=dict(payload),
                    max_attempts=self._max_attempts,
                )
                await self._storage.insert_event(event)
            except Exception as e:
                log.error("Failed to queue webhook event", webhook_id=webhook.id, error=str(e))
                continue
            event_ids.append(event.id)

        log.info("Webhook events queued", count=len(event_ids), matched=len(webhooks))
        return event_ids


__all__ = ["EventProducer"]
