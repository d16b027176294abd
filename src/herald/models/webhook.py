"""Webhook models for server-to-server event notifications.

Provides subscription records, owner scopes, and delivery records
for reliable async notifications of document events.
"""

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .base import generate_id, utc_now

# Event types that can trigger webhooks
EventType = Literal[
    "document.created",
    "document.updated",
    "document.deleted",
    "document.shared",
    "document.viewed",
]

# All available event types for subscription
ALL_EVENT_TYPES: list[EventType] = [
    "document.created",
    "document.updated",
    "document.deleted",
    "document.shared",
    "document.viewed",
]

# Status of a single delivery record
EventStatus = Literal["pending", "delivered", "failed"]

# Rolling summary kept on the webhook itself
DeliveryStatus = Literal["success", "failed"]

TERMINAL_STATUSES: tuple[EventStatus, ...] = ("delivered", "failed")


def is_known_event_type(value: str) -> bool:
    """Check whether a string is in the event catalog."""
    return value in ALL_EVENT_TYPES


class UserScope(BaseModel):
    """Webhook private to a single user."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["user"] = "user"
    user_id: str = Field(min_length=1)


class OrganizationScope(BaseModel):
    """Webhook shared by an organization.

    Attributes:
        organization_id: Organization whose events are delivered.
        created_by: User who registered the webhook (informational).
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["organization"] = "organization"
    organization_id: str = Field(min_length=1)
    created_by: str | None = None


class GlobalScope(BaseModel):
    """Webhook receiving matching events for every owner."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["global"] = "global"


OwnerScope = Annotated[
    UserScope | OrganizationScope | GlobalScope,
    Field(discriminator="kind"),
]


class Webhook(BaseModel):
    """A registered subscriber endpoint.

    Attributes:
        id: Unique identifier for this webhook.
        owner: Who the webhook belongs to (user, organization, or global).
        name: Display label.
        url: Absolute http(s) URL receiving deliveries.
        events: Event types this webhook subscribes to.
        secret: Shared secret for HMAC-SHA256 signatures.
        is_active: Inactive webhooks never receive new events.
        retry_count: Attempts used by the most recent delivery.
        last_delivery_at: When the most recent delivery finished.
        last_delivery_status: Outcome of the most recent delivery.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("whk"))
    owner: OwnerScope
    name: str = Field(min_length=1, description="Display label")
    url: str = Field(description="Delivery target")
    events: list[EventType] = Field(min_length=1, description="Subscribed event types")
    secret: str = Field(description="Shared secret for HMAC-SHA256 signatures")
    is_active: bool = Field(default=True)
    retry_count: int = Field(default=0, ge=0)
    last_delivery_at: datetime | None = None
    last_delivery_status: DeliveryStatus | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def subscribes_to(self, event_type: str) -> bool:
        """Check if this webhook is active and subscribes to the event type."""
        return self.is_active and event_type in self.events


class WebhookUpdate(BaseModel):
    """Partial update of a webhook. Unset fields are left untouched."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    url: str | None = None
    events: list[str] | None = None
    is_active: bool | None = None


class WebhookEvent(BaseModel):
    """One delivery of one domain event to one webhook.

    Attributes:
        id: Unique identifier, sent to subscribers for deduplication.
        webhook_id: Owning webhook.
        event_type: Catalog event type.
        payload: Opaque JSON object from the producer.
        status: pending, delivered, or failed.
        attempts: Delivery tries so far.
        max_attempts: Tries allowed before the event fails.
        next_retry_at: When a pending event becomes due again.
        response_status: HTTP status of the most recent attempt.
        response_body: Truncated response body of the most recent attempt.
        error_message: Failure reason of the most recent attempt.
        claimed_at: Set while a worker holds the event.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("evt"))
    webhook_id: str
    event_type: EventType
    payload: dict[str, Any] = Field(default_factory=dict)
    status: EventStatus = "pending"
    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    last_attempt_at: datetime | None = None
    next_retry_at: datetime | None = None
    response_status: int | None = None
    response_body: str | None = None
    error_message: str | None = None
    claimed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_terminal(self) -> bool:
        """Delivered and failed events receive no further automatic attempts."""
        return self.status in TERMINAL_STATUSES

    def is_due(self, now: datetime) -> bool:
        """Check whether a pending event may be attempted at ``now``."""
        if self.status != "pending":
            return False
        return self.next_retry_at is None or self.next_retry_at <= now


class EventPage(BaseModel):
    """A page of delivery history for one webhook."""

    model_config = ConfigDict(extra="forbid")

    items: list[WebhookEvent] = Field(default_factory=list)
    total: int = Field(default=0, ge=0)
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1)

    @property
    def total_pages(self) -> int:
        """Number of pages at the current limit."""
        return (self.total + self.limit - 1) // self.limit


class WebhookStats(BaseModel):
    """Aggregated delivery statistics for one webhook."""

    model_config = ConfigDict(extra="forbid")

    webhook_id: str
    total_events: int = Field(default=0, ge=0)
    pending_events: int = Field(default=0, ge=0)
    delivered_events: int = Field(default=0, ge=0)
    failed_events: int = Field(default=0, ge=0)
    average_attempts: float = Field(default=0.0, ge=0.0)
    last_delivery_at: datetime | None = None
    last_delivery_status: DeliveryStatus | None = None


__all__ = [
    "ALL_EVENT_TYPES",
    "DeliveryStatus",
    "EventPage",
    "EventStatus",
    "EventType",
    "GlobalScope",
    "OrganizationScope",
    "OwnerScope",
    "TERMINAL_STATUSES",
    "UserScope",
    "Webhook",
    "WebhookEvent",
    "WebhookStats",
    "WebhookUpdate",
    "is_known_event_type",
]
