"""Delivery state machine.

Pure functions mapping (event, attempt outcome, time) to the next stored
state. No I/O happens here.

    pending --success--------------------------> delivered
    pending --transient, attempts < max--------> pending (next_retry_at set)
    pending --transient, attempts == max-------> failed
    pending --permanent------------------------> failed (attempts = max)
    failed  --operator retry-------------------> pending (attempts = 0)
"""

from __future__ import annotations

from datetime import datetime, timedelta

from herald.models import (
    DeliveryResult,
    DeliverySuccess,
    EventTransition,
    PermanentFailure,
    WebhookEvent,
)

DEFAULT_BACKOFF_CAP_MINUTES = 60


def compute_backoff(attempts: int, cap_minutes: int = DEFAULT_BACKOFF_CAP_MINUTES) -> timedelta:
    """Delay before the next attempt: ``min(2**attempts, cap)`` minutes.

    Args:
        attempts: Attempts made so far (after incrementing).
        cap_minutes: Upper bound in minutes.
    """
    if attempts < 0:
        raise ValueError("attempts must be non-negative")
    # Past the cap the exponent no longer matters.
    if attempts >= cap_minutes.bit_length():
        return timedelta(minutes=cap_minutes)
    return timedelta(minutes=min(2**attempts, cap_minutes))


def failure_transition(event: WebhookEvent, reason: str, now: datetime) -> EventTransition:
    """Terminal failure that skips the remaining attempts."""
    return EventTransition(
        status="failed",
        attempts=event.max_attempts,
        last_attempt_at=now,
        next_retry_at=None,
        error_message=reason,
        outcome="failed",
    )


def plan_transition(
    event: WebhookEvent,
    result: DeliveryResult,
    now: datetime,
    cap_minutes: int = DEFAULT_BACKOFF_CAP_MINUTES,
) -> EventTransition:
    """Compute the next state of a claimed event after one attempt.

    Args:
        event: The event as claimed (status pending).
        result: Outcome of the attempt.
        now: Time of the attempt.
        cap_minutes: Backoff upper bound in minutes.

    Returns:
        EventTransition to write back.
    """
    if isinstance(result, PermanentFailure):
        return failure_transition(event, result.reason, now)

    attempts = min(event.attempts + 1, event.max_attempts)

    if isinstance(result, DeliverySuccess):
        return EventTransition(
            status="delivered",
            attempts=attempts,
            last_attempt_at=now,
            next_retry_at=None,
            response_status=result.status_code,
            response_body=result.response_body,
            error_message=None,
            outcome="success",
        )

    exhausted = attempts >= event.max_attempts
    return EventTransition(
        status="failed" if exhausted else "pending",
        attempts=attempts,
        last_attempt_at=now,
        next_retry_at=None if exhausted else now + compute_backoff(attempts, cap_minutes),
        response_status=result.status_code,
        response_body=result.response_body,
        error_message=result.reason,
        outcome="failed",
    )


__all__ = [
    "DEFAULT_BACKOFF_CAP_MINUTES",
    "compute_backoff",
    "failure_transition",
    "plan_transition",
]
