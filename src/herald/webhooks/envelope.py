"""Wire envelope and headers for webhook deliveries.

Body shape::

    {"id": "<event id>", "eventType": "document.created",
     "payload": {...}, "timestamp": "<ISO-8601 of event creation>"}

The body is serialized once, compactly, and the same bytes are both signed
and sent.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from herald.exceptions import DeliveryError

from .signature import compute_signature

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"
ID_HEADER = "X-Webhook-Id"
ATTEMPT_HEADER = "X-Webhook-Attempt"


def build_envelope(
    event_id: str,
    event_type: str,
    payload: dict[str, Any],
    timestamp: datetime,
) -> dict[str, Any]:
    """Build the JSON envelope delivered to subscribers."""
    return {
        "id": event_id,
        "eventType": event_type,
        "payload": payload,
        "timestamp": timestamp.isoformat(),
    }


def encode_envelope(envelope: dict[str, Any]) -> bytes:
    """Serialize an envelope to compact UTF-8 JSON bytes.

    Raises:
        DeliveryError: If the payload is not JSON serializable.
    """
    try:
        text = json.dumps(envelope, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise DeliveryError(f"Payload is not JSON serializable: {e}") from e
    return text.encode("utf-8")


def build_headers(
    secret: str,
    body: bytes,
    event_type: str,
    event_id: str,
    attempt: int,
    user_agent: str,
) -> dict[str, str]:
    """Build delivery headers, including the body signature."""
    return {
        "Content-Type": "application/json",
        SIGNATURE_HEADER: compute_signature(secret, body),
        EVENT_HEADER: event_type,
        ID_HEADER: event_id,
        ATTEMPT_HEADER: str(attempt),
        "User-Agent": user_agent,
    }


__all__ = [
    "ATTEMPT_HEADER",
    "EVENT_HEADER",
    "ID_HEADER",
    "SIGNATURE_HEADER",
    "build_envelope",
    "build_headers",
    "encode_envelope",
]
