"""Data models for Herald.

Subscription Types:
    - Webhook: A subscriber endpoint with its event interests and secret
    - UserScope, OrganizationScope, GlobalScope: Who a webhook belongs to
    - WebhookUpdate: Partial update of a webhook

Delivery Types:
    - WebhookEvent: One queued/attempted delivery to one webhook
    - DeliverySuccess, TransientFailure, PermanentFailure: Attempt outcomes
    - EventTransition: State change derived from an outcome

Read Models:
    - EventPage: Paginated delivery history
    - WebhookStats: Aggregated delivery counts
"""

from .base import generate_id, utc_now
from .delivery import (
    DeliveryResult,
    DeliverySuccess,
    EventTransition,
    PermanentFailure,
    TransientFailure,
)
from .webhook import (
    ALL_EVENT_TYPES,
    TERMINAL_STATUSES,
    DeliveryStatus,
    EventPage,
    EventStatus,
    EventType,
    GlobalScope,
    OrganizationScope,
    OwnerScope,
    UserScope,
    Webhook,
    WebhookEvent,
    WebhookStats,
    WebhookUpdate,
    is_known_event_type,
)

__all__ = [
    # Helpers
    "generate_id",
    "utc_now",
    # Subscriptions
    "ALL_EVENT_TYPES",
    "EventType",
    "GlobalScope",
    "OrganizationScope",
    "OwnerScope",
    "UserScope",
    "Webhook",
    "WebhookUpdate",
    "is_known_event_type",
    # Deliveries
    "DeliveryResult",
    "DeliveryStatus",
    "DeliverySuccess",
    "EventStatus",
    "EventTransition",
    "PermanentFailure",
    "TERMINAL_STATUSES",
    "TransientFailure",
    "WebhookEvent",
    # Read models
    "EventPage",
    "WebhookStats",
]
