"""HTTP transport for webhook deliveries.

A transport performs exactly one POST and classifies the outcome as a
DeliveryResult. It never raises for network problems: timeouts and
connection errors become TransientFailure like any non-2xx response.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import httpx

from herald.logging import get_logger
from herald.models import DeliveryResult, DeliverySuccess, TransientFailure

logger = get_logger(__name__)


@runtime_checkable
class DeliveryTransport(Protocol):
    """Sends a signed body to a subscriber URL."""

    async def send(self, url: str, body: bytes, headers: dict[str, str]) -> DeliveryResult:
        """POST ``body`` to ``url`` and classify the outcome."""
        ...


class HttpxTransport:
    """DeliveryTransport backed by a shared httpx.AsyncClient.

    Example:
        ```python
        transport = HttpxTransport(timeout_seconds=10.0)
        result = await transport.send(url, body, headers)
        await transport.close()
        ```
    """

    def __init__(
        self,
        timeout_seconds: float = 10.0,
        response_body_limit: int = 1000,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            timeout_seconds: Total timeout for a single attempt.
            response_body_limit: Characters of response body kept.
            client: Optional pre-built client (tests inject a MockTransport).
                A client passed in is not closed by ``close()``.
        """
        self._timeout = timeout_seconds
        self._body_limit = response_body_limit
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    def _truncate(self, text: str | None) -> str | None:
        if not text:
            return None
        return text[: self._body_limit]

    async def send(self, url: str, body: bytes, headers: dict[str, str]) -> DeliveryResult:
        try:
            response = await self._client.post(
                url,
                content=body,
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.TimeoutException:
            logger.info("Webhook request timed out", url=url)
            return TransientFailure(reason="Request timeout")
        except httpx.RequestError as e:
            logger.info("Webhook request failed", url=url, error=str(e))
            return TransientFailure(reason=f"Request error: {e}")

        response_body = self._truncate(response.text)
        if 200 <= response.status_code < 300:
            return DeliverySuccess(status_code=response.status_code, response_body=response_body)

        return TransientFailure(
            reason=f"HTTP {response.status_code}",
            status_code=response.status_code,
            response_body=response_body,
        )

    async def close(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()


__all__ = ["DeliveryTransport", "HttpxTransport"]
