"""SQL storage client for Herald.

This module provides the main HeraldStorage class that combines
all storage operations through mixins.

Example:
    ```python
    from herald.storage import HeraldStorage

    async with HeraldStorage("sqlite+aiosqlite:///./herald.db") as storage:
        await storage.insert_webhook(webhook)
        batch = await storage.claim_due_events(limit=10)
    ```
"""

from __future__ import annotations

from .base import StorageBase
from .events import EventMixin
from .webhook import WebhookMixin


class HeraldStorage(WebhookMixin, EventMixin, StorageBase):
    """Async SQLAlchemy storage for webhooks and their delivery records.

    This class combines functionality from multiple mixins:
    - WebhookMixin: insert_webhook, get_webhook, list_matching_webhooks,
      update_webhook_fields, delete_webhook, update_delivery_summary
    - EventMixin: insert_event, claim_due_events, apply_transition,
      release_stale_claims, reset_failed_events, delete_terminal_events,
      list_events, count_events_by_status

    Works with SQLite (aiosqlite) for development and tests and with
    PostgreSQL (asyncpg) in production, where claims additionally use
    ``FOR UPDATE SKIP LOCKED``.
    """


__all__ = ["HeraldStorage"]
