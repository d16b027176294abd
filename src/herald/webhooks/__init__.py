"""Webhook dispatch for Herald.

Provides registration, fan-out, HMAC-signed delivery with capped
exponential backoff, and maintenance jobs.

Example:
    ```python
    from herald.webhooks import DeliveryWorker, EventProducer, WebhookRegistry

    registry = WebhookRegistry(storage)
    producer = EventProducer(storage)
    await producer.emit("document.created", {"documentId": "doc_1"}, user_id="user_123")

    worker = DeliveryWorker(storage, registry, HttpxTransport())
    await worker.tick()
    ```
"""

from .envelope import build_envelope, build_headers, encode_envelope
from .history import HistoryReader
from .jobs import purge_expired_events, reclaim_stale_claims
from .producer import EventProducer
from .registry import WebhookRegistry, generate_secret
from .signature import compute_signature, verify_signature
from .state import compute_backoff, failure_transition, plan_transition
from .transport import DeliveryTransport, HttpxTransport
from .worker import DeliveryWorker, TickSummary

__all__ = [
    "DeliveryTransport",
    "DeliveryWorker",
    "EventProducer",
    "HistoryReader",
    "HttpxTransport",
    "TickSummary",
    "WebhookRegistry",
    "build_envelope",
    "build_headers",
    "compute_backoff",
    "compute_signature",
    "encode_envelope",
    "failure_transition",
    "generate_secret",
    "plan_transition",
    "purge_expired_events",
    "reclaim_stale_claims",
    "verify_signature",
]
