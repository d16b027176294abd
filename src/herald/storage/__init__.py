"""Storage backends for Herald.

This module provides the storage layer for persisting webhook
subscriptions and delivery records with SQLAlchemy (async).

Example:
    ```python
    from herald.storage import HeraldStorage

    async with HeraldStorage() as storage:
        webhooks = await storage.list_matching_webhooks("document.created", user_id="u1")
    ```
"""

from .client import HeraldStorage
from .events import ClaimBatch, StatusCounts
from .webhook import scope_from_columns, scope_to_columns

__all__ = [
    "ClaimBatch",
    "HeraldStorage",
    "StatusCounts",
    "scope_from_columns",
    "scope_to_columns",
]
