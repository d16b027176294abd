"""Delivery outcome models.

A delivery attempt produces exactly one DeliveryResult. The worker's state
machine consumes it through ``herald.webhooks.state.plan_transition``
without looking at HTTP details.
"""

from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from .webhook import DeliveryStatus, EventStatus


class DeliverySuccess(BaseModel):
    """Subscriber answered with a 2xx status."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["success"] = "success"
    status_code: int = Field(ge=200, le=299)
    response_body: str | None = None


class TransientFailure(BaseModel):
    """Failure that counts against max_attempts and may be retried.

    Covers non-2xx responses, timeouts and network errors.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["transient"] = "transient"
    reason: str
    status_code: int | None = None
    response_body: str | None = None


class PermanentFailure(BaseModel):
    """Failure that must not be retried (webhook deleted or deactivated)."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["permanent"] = "permanent"
    reason: str


DeliveryResult = Annotated[
    DeliverySuccess | TransientFailure | PermanentFailure,
    Field(discriminator="kind"),
]


class EventTransition(BaseModel):
    """New field values for a claimed event after one attempt."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    status: EventStatus
    attempts: int = Field(ge=0)
    last_attempt_at: datetime
    next_retry_at: datetime | None = None
    response_status: int | None = None
    response_body: str | None = None
    error_message: str | None = None
    outcome: DeliveryStatus


__all__ = [
    "DeliveryResult",
    "DeliverySuccess",
    "EventTransition",
    "PermanentFailure",
    "TransientFailure",
]
