"""Read-only delivery history and statistics."""

from __future__ import annotations

from typing import TYPE_CHECKING

from herald.exceptions import NotFoundError, ValidationError
from herald.models import EventPage, WebhookStats

if TYPE_CHECKING:
    from herald.models import Webhook
    from herald.storage import HeraldStorage

_STATUSES = ("pending", "delivered", "failed")
MAX_PAGE_SIZE = 100


class HistoryReader:
    """Paginated history and aggregate stats for one webhook."""

    def __init__(self, storage: HeraldStorage) -> None:
        self._storage = storage

    async def _require_webhook(self, webhook_id: str) -> Webhook:
        webhook = await self._storage.get_webhook(webhook_id)
        if webhook is None:
            raise NotFoundError("webhook", webhook_id)
        return webhook

    async def get_history(
        self,
        webhook_id: str,
        status: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> EventPage:
        """Get delivery records for a webhook, newest first.

        Args:
            webhook_id: Webhook to read.
            status: Optional status filter.
            page: 1-based page number.
            limit: Page size, at most 100.

        Raises:
            ValidationError: For an unknown status or out-of-range paging.
            NotFoundError: If the webhook does not exist.
        """
        if status is not None and status not in _STATUSES:
            raise ValidationError("status", f"must be one of: {', '.join(_STATUSES)}")
        if page < 1:
            raise ValidationError("page", "must be at least 1")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError("limit", f"must be between 1 and {MAX_PAGE_SIZE}")

        await self._require_webhook(webhook_id)
        items, total = await self._storage.list_events(
            webhook_id,
            status=status,  # type: ignore[arg-type]
            limit=limit,
            offset=(page - 1) * limit,
        )
        return EventPage(items=items, total=total, page=page, limit=limit)

    async def get_stats(self, webhook_id: str) -> WebhookStats:
        """Aggregate delivery counts for a webhook.

        Raises:
            NotFoundError: If the webhook does not exist.
        """
        webhook = await self._require_webhook(webhook_id)
        counts = await self._storage.count_events_by_status(webhook_id)

        total = counts.total
        return WebhookStats(
            webhook_id=webhook_id,
            total_events=total,
            pending_events=counts.by_status.get("pending", 0),
            delivered_events=counts.by_status.get("delivered", 0),
            failed_events=counts.by_status.get("failed", 0),
            average_attempts=round(counts.total_attempts / total, 2) if total else 0.0,
            last_delivery_at=webhook.last_delivery_at,
            last_delivery_status=webhook.last_delivery_status,
        )


__all__ = ["HistoryReader", "MAX_PAGE_SIZE"]
