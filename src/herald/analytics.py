"""Analytics client for delivery outcomes.

The worker reports each delivery outcome here. Tracking is best-effort:
the HTTP client logs and drops events it cannot send, and the no-op
client is used whenever no analytics service is configured.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx

from herald.logging import get_logger
from herald.models import utc_now

if TYPE_CHECKING:
    from herald.config import Settings

logger = get_logger(__name__)


@runtime_checkable
class AnalyticsClient(Protocol):
    """Receives named events with a flat property map."""

    async def track(self, event_name: str, properties: dict[str, Any]) -> None: ...


class NoopAnalyticsClient:
    """AnalyticsClient that discards everything."""

    async def track(self, event_name: str, properties: dict[str, Any]) -> None:
        return None

    async def close(self) -> None:
        return None


class HttpAnalyticsClient:
    """AnalyticsClient posting to ``{base_url}/analytics/events``."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 2.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._endpoint = f"{base_url.rstrip('/')}/analytics/events"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def track(self, event_name: str, properties: dict[str, Any]) -> None:
        body = {
            "event": event_name,
            "properties": properties,
            "timestamp": utc_now().isoformat(),
        }
        try:
            response = await self._client.post(self._endpoint, json=body)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Analytics event dropped", event_name=event_name, error=str(e))

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def create_analytics_client(settings: Settings) -> HttpAnalyticsClient | NoopAnalyticsClient:
    """Build the analytics client for the given settings."""
    if not settings.analytics_url:
        return NoopAnalyticsClient()
    return HttpAnalyticsClient(
        settings.analytics_url,
        timeout_seconds=settings.analytics_timeout_seconds,
    )


__all__ = [
    "AnalyticsClient",
    "HttpAnalyticsClient",
    "NoopAnalyticsClient",
    "create_analytics_client",
]
