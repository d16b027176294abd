"""Maintenance jobs for delivery records.

Both jobs are plain coroutines taking an explicit ``now`` so they can run
from the scheduler or from tests with a fixed clock.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from herald.logging import get_logger

if TYPE_CHECKING:
    from herald.storage import HeraldStorage

logger = get_logger(__name__)


async def purge_expired_events(
    storage: HeraldStorage,
    now: datetime,
    retention_days: int = 90,
) -> int:
    """Delete delivered and failed events older than the retention window.

    Pending events are kept regardless of age.

    Args:
        storage: HeraldStorage instance.
        now: Reference time.
        retention_days: Window in days.

    Returns:
        Number of deleted events.
    """
    if retention_days < 1:
        raise ValueError("retention_days must be at least 1")

    cutoff = now - timedelta(days=retention_days)
    deleted = await storage.delete_terminal_events(created_before=cutoff)
    if deleted:
        logger.info("Purged expired webhook events", count=deleted, cutoff=cutoff.isoformat())
    return deleted


async def reclaim_stale_claims(
    storage: HeraldStorage,
    now: datetime,
    claim_timeout_minutes: int = 15,
) -> int:
    """Release claims held longer than ``claim_timeout_minutes``.

    Returns:
        Number of released events.
    """
    cutoff = now - timedelta(minutes=claim_timeout_minutes)
    released = await storage.release_stale_claims(claimed_before=cutoff)
    if released:
        logger.warning("Released stale webhook claims", count=released)
    return released


__all__ = ["purge_expired_events", "reclaim_stale_claims"]
