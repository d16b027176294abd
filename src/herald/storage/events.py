"""Delivery record storage operations for Herald.

Owns the webhook_events table: inserting records, atomically claiming due
records for a worker, writing back state transitions, operator resets,
retention purges, and history/stats reads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from sqlalchemy import delete, func, or_, select, update

from herald.models import WebhookEvent, utc_now

from .retry import storage_errors, storage_retry
from .tables import WebhookEventRow

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from herald.models import EventStatus, EventTransition


@dataclass(frozen=True)
class ClaimBatch:
    """Events claimed by one worker pass.

    Attributes:
        token: Claim marker written on every claimed row. Transitions are
            only accepted when they present the same token.
        events: Claimed events, oldest first.
    """

    token: str
    events: list[WebhookEvent] = field(default_factory=list)


@dataclass(frozen=True)
class StatusCounts:
    """Per-status counts and total attempts for one webhook."""

    by_status: dict[str, int]
    total_attempts: int

    @property
    def total(self) -> int:
        return sum(self.by_status.values())


def _row_to_event(row: WebhookEventRow) -> WebhookEvent:
    return WebhookEvent(
        id=row.id,
        webhook_id=row.webhook_id,
        event_type=row.event_type,  # type: ignore[arg-type]
        payload=dict(row.payload or {}),
        status=row.status,  # type: ignore[arg-type]
        attempts=row.attempts,
        max_attempts=row.max_attempts,
        last_attempt_at=row.last_attempt_at,
        next_retry_at=row.next_retry_at,
        response_status=row.response_status,
        response_body=row.response_body,
        error_message=row.error_message,
        claimed_at=row.claimed_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class EventMixin:
    """Mixin providing delivery record operations for HeraldStorage.

    This mixin expects the following from the base class:
    - session() -> AsyncSession
    - is_postgres: bool
    """

    session: Any
    is_postgres: bool

    @storage_retry
    async def insert_event(self, event: WebhookEvent) -> WebhookEvent:
        """Store a new delivery record.

        Args:
            event: WebhookEvent to store (normally pending with 0 attempts).

        Returns:
            The stored event.
        """
        row = WebhookEventRow(
            id=event.id,
            webhook_id=event.webhook_id,
            event_type=event.event_type,
            payload=event.payload,
            status=event.status,
            attempts=event.attempts,
            max_attempts=event.max_attempts,
            last_attempt_at=event.last_attempt_at,
            next_retry_at=event.next_retry_at,
            response_status=event.response_status,
            response_body=event.response_body,
            error_message=event.error_message,
            created_at=event.created_at,
            updated_at=event.updated_at,
        )
        async with self.session() as session, session.begin():
            session.add(row)
        return event

    @storage_retry
    async def get_event(self, event_id: str) -> WebhookEvent | None:
        """Get a delivery record by ID."""
        async with self.session() as session:
            row = await session.get(WebhookEventRow, event_id)
            return _row_to_event(row) if row is not None else None

    async def _select_claimable_ids(
        self, session: AsyncSession, now: datetime, limit: int
    ) -> list[str]:
        stmt = (
            select(WebhookEventRow.id)
            .where(WebhookEventRow.status == "pending")
            .where(WebhookEventRow.claim_token.is_(None))
            .where(
                or_(
                    WebhookEventRow.next_retry_at.is_(None),
                    WebhookEventRow.next_retry_at <= now,
                )
            )
            .order_by(WebhookEventRow.created_at.asc(), WebhookEventRow.id)
            .limit(limit)
        )
        if self.is_postgres:
            stmt = stmt.with_for_update(skip_locked=True)
        return list((await session.scalars(stmt)).all())

    async def _mark_claimed(
        self, session: AsyncSession, ids: list[str], token: str, now: datetime
    ) -> int:
        # The status/claim_token predicates make this a compare-and-set:
        # a row already taken by another worker is left alone.
        result = await session.execute(
            update(WebhookEventRow)
            .where(WebhookEventRow.id.in_(ids))
            .where(WebhookEventRow.status == "pending")
            .where(WebhookEventRow.claim_token.is_(None))
            .values(claim_token=token, claimed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)

    @storage_errors
    async def claim_due_events(self, now: datetime | None = None, limit: int = 50) -> ClaimBatch:
        """Atomically claim due pending events for one worker pass.

        Selects pending, unclaimed events whose retry time has passed,
        oldest first, and marks them with a fresh claim token in the same
        transaction. Only rows that carry this token afterwards are
        returned, so concurrent workers never receive the same event.

        Args:
            now: Reference time for due checks. Defaults to current UTC time.
            limit: Maximum events to claim.

        Returns:
            ClaimBatch with the token and the claimed events.
        """
        now = now or utc_now()
        token = uuid4().hex

        async with self.session() as session, session.begin():
            ids = await self._select_claimable_ids(session, now, limit)
            if not ids:
                return ClaimBatch(token=token)

            await self._mark_claimed(session, ids, token, now)

            rows = (
                await session.scalars(
                    select(WebhookEventRow)
                    .where(WebhookEventRow.claim_token == token)
                    .order_by(WebhookEventRow.created_at.asc(), WebhookEventRow.id)
                )
            ).all()
            return ClaimBatch(token=token, events=[_row_to_event(r) for r in rows])

    @storage_errors
    async def apply_transition(
        self, event_id: str, token: str, transition: EventTransition
    ) -> bool:
        """Write an attempt's outcome back to a claimed event and release it.

        Returns:
            True if applied. False when the claim was lost (released as
            stale or the event was deleted) and nothing was written.
        """
        now = utc_now()
        async with self.session() as session, session.begin():
            result = await session.execute(
                update(WebhookEventRow)
                .where(WebhookEventRow.id == event_id)
                .where(WebhookEventRow.claim_token == token)
                .where(WebhookEventRow.status == "pending")
                .values(
                    status=transition.status,
                    attempts=transition.attempts,
                    last_attempt_at=transition.last_attempt_at,
                    next_retry_at=transition.next_retry_at,
                    response_status=transition.response_status,
                    response_body=transition.response_body,
                    error_message=transition.error_message,
                    claim_token=None,
                    claimed_at=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            return bool(result.rowcount)

    @storage_errors
    async def release_stale_claims(self, claimed_before: datetime) -> int:
        """Release claims held since before ``claimed_before``.

        A worker that dies mid-delivery leaves its claim behind; releasing it
        makes the event eligible for the next tick again.

        Returns:
            Number of released events.
        """
        async with self.session() as session, session.begin():
            result = await session.execute(
                update(WebhookEventRow)
                .where(WebhookEventRow.status == "pending")
                .where(WebhookEventRow.claim_token.is_not(None))
                .where(WebhookEventRow.claimed_at < claimed_before)
                .values(claim_token=None, claimed_at=None, updated_at=utc_now())
                .execution_options(synchronize_session=False)
            )
            return int(result.rowcount or 0)

    def _reset_values(self) -> dict[str, Any]:
        return {
            "status": "pending",
            "attempts": 0,
            "next_retry_at": None,
            "error_message": None,
            "response_status": None,
            "response_body": None,
            "claim_token": None,
            "claimed_at": None,
            "updated_at": utc_now(),
        }

    @storage_errors
    async def reset_failed_events(self, webhook_id: str, min_attempts: int) -> int:
        """Move failed events of a webhook back to pending with zero attempts.

        Args:
            webhook_id: Webhook whose events are reset.
            min_attempts: Only events with at least this many attempts.

        Returns:
            Number of reset events.
        """
        async with self.session() as session, session.begin():
            result = await session.execute(
                update(WebhookEventRow)
                .where(WebhookEventRow.webhook_id == webhook_id)
                .where(WebhookEventRow.status == "failed")
                .where(WebhookEventRow.attempts >= min_attempts)
                .values(**self._reset_values())
                .execution_options(synchronize_session=False)
            )
            return int(result.rowcount or 0)

    @storage_errors
    async def reset_failed_event(self, event_id: str) -> bool:
        """Move a single failed event back to pending with zero attempts.

        Returns:
            True if the event existed and was failed.
        """
        async with self.session() as session, session.begin():
            result = await session.execute(
                update(WebhookEventRow)
                .where(WebhookEventRow.id == event_id)
                .where(WebhookEventRow.status == "failed")
                .values(**self._reset_values())
                .execution_options(synchronize_session=False)
            )
            return bool(result.rowcount)

    @storage_errors
    async def delete_terminal_events(self, created_before: datetime) -> int:
        """Purge delivered/failed events created before ``created_before``.

        Pending events are never touched regardless of age.

        Returns:
            Number of deleted events.
        """
        async with self.session() as session, session.begin():
            result = await session.execute(
                delete(WebhookEventRow)
                .where(WebhookEventRow.status.in_(("delivered", "failed")))
                .where(WebhookEventRow.created_at < created_before)
                .execution_options(synchronize_session=False)
            )
            return int(result.rowcount or 0)

    @storage_retry
    async def list_events(
        self,
        webhook_id: str,
        status: EventStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[WebhookEvent], int]:
        """Get delivery records for a webhook, newest first.

        Returns:
            Tuple of (events on this page, total matching events).
        """
        conditions = [WebhookEventRow.webhook_id == webhook_id]
        if status is not None:
            conditions.append(WebhookEventRow.status == status)

        async with self.session() as session:
            total = (
                await session.execute(
                    select(func.count()).select_from(WebhookEventRow).where(*conditions)
                )
            ).scalar_one()
            rows = (
                await session.scalars(
                    select(WebhookEventRow)
                    .where(*conditions)
                    .order_by(WebhookEventRow.created_at.desc(), WebhookEventRow.id.desc())
                    .limit(limit)
                    .offset(offset)
                )
            ).all()

        return [_row_to_event(r) for r in rows], int(total)

    @storage_retry
    async def count_events_by_status(self, webhook_id: str) -> StatusCounts:
        """Aggregate a webhook's delivery records by status."""
        stmt = (
            select(
                WebhookEventRow.status,
                func.count(WebhookEventRow.id),
                func.coalesce(func.sum(WebhookEventRow.attempts), 0),
            )
            .where(WebhookEventRow.webhook_id == webhook_id)
            .group_by(WebhookEventRow.status)
        )
        async with self.session() as session:
            rows = (await session.execute(stmt)).all()

        by_status = {status: int(count) for status, count, _ in rows}
        total_attempts = sum(int(attempts) for _, _, attempts in rows)
        return StatusCounts(by_status=by_status, total_attempts=total_attempts)
