"""Webhook storage operations for Herald.

Provides methods to store, retrieve, and manage webhook subscriptions.
Owner scopes are translated to and from the nullable
(user_id, organization_id) column pair here and nowhere else.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, delete, false, func, or_, select, update

from herald.models import GlobalScope, OrganizationScope, UserScope, Webhook, utc_now

from .retry import storage_errors, storage_retry
from .tables import WebhookEventRow, WebhookRow

if TYPE_CHECKING:
    from sqlalchemy import ColumnElement

    from herald.models import DeliveryStatus, OwnerScope


def scope_to_columns(owner: OwnerScope) -> tuple[str | None, str | None]:
    """Translate an owner scope into (user_id, organization_id)."""
    if isinstance(owner, UserScope):
        return owner.user_id, None
    if isinstance(owner, OrganizationScope):
        return owner.created_by, owner.organization_id
    return None, None


def scope_from_columns(user_id: str | None, organization_id: str | None) -> OwnerScope:
    """Translate (user_id, organization_id) back into an owner scope."""
    if organization_id is not None:
        return OrganizationScope(organization_id=organization_id, created_by=user_id)
    if user_id is not None:
        return UserScope(user_id=user_id)
    return GlobalScope()


def _owner_filter(owner: OwnerScope) -> ColumnElement[bool]:
    if isinstance(owner, UserScope):
        return and_(WebhookRow.user_id == owner.user_id, WebhookRow.organization_id.is_(None))
    if isinstance(owner, OrganizationScope):
        return WebhookRow.organization_id == owner.organization_id
    return and_(WebhookRow.user_id.is_(None), WebhookRow.organization_id.is_(None))


def _row_to_webhook(row: WebhookRow) -> Webhook:
    return Webhook(
        id=row.id,
        owner=scope_from_columns(row.user_id, row.organization_id),
        name=row.name,
        url=row.url,
        events=list(row.events or []),
        secret=row.secret,
        is_active=row.is_active,
        retry_count=row.retry_count or 0,
        last_delivery_at=row.last_delivery_at,
        last_delivery_status=row.last_delivery_status,  # type: ignore[arg-type]
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class WebhookMixin:
    """Mixin providing webhook operations for HeraldStorage.

    This mixin expects the following from the base class:
    - session() -> AsyncSession
    """

    session: Any

    @storage_retry
    async def insert_webhook(self, webhook: Webhook) -> Webhook:
        """Store a new webhook.

        Args:
            webhook: Validated Webhook to store.

        Returns:
            The stored webhook.
        """
        user_id, organization_id = scope_to_columns(webhook.owner)
        row = WebhookRow(
            id=webhook.id,
            user_id=user_id,
            organization_id=organization_id,
            name=webhook.name,
            url=webhook.url,
            events=list(webhook.events),
            secret=webhook.secret,
            is_active=webhook.is_active,
            retry_count=webhook.retry_count,
            last_delivery_at=webhook.last_delivery_at,
            last_delivery_status=webhook.last_delivery_status,
            created_at=webhook.created_at,
            updated_at=webhook.updated_at,
        )
        async with self.session() as session, session.begin():
            session.add(row)
        return webhook

    @storage_retry
    async def get_webhook(self, webhook_id: str) -> Webhook | None:
        """Get a webhook by ID.

        Returns:
            Webhook or None if not found.
        """
        async with self.session() as session:
            row = await session.get(WebhookRow, webhook_id)
            return _row_to_webhook(row) if row is not None else None

    @storage_retry
    async def list_webhooks(
        self,
        owner: OwnerScope | None = None,
        active_only: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Webhook]:
        """List webhooks, newest first.

        Args:
            owner: Restrict to webhooks with exactly this scope.
            active_only: If True, only return active webhooks.
            limit: Maximum webhooks to return.
            offset: Rows to skip.
        """
        stmt = select(WebhookRow)
        if owner is not None:
            stmt = stmt.where(_owner_filter(owner))
        if active_only:
            stmt = stmt.where(WebhookRow.is_active.is_(True))
        stmt = stmt.order_by(WebhookRow.created_at.desc(), WebhookRow.id).limit(limit).offset(offset)

        async with self.session() as session:
            rows = (await session.scalars(stmt)).all()
        return [_row_to_webhook(r) for r in rows]

    @storage_retry
    async def list_active_webhooks_for_event(self, event_type: str) -> list[Webhook]:
        """Get all active webhooks subscribed to an event type, oldest first."""
        stmt = (
            select(WebhookRow)
            .where(WebhookRow.is_active.is_(True))
            .order_by(WebhookRow.created_at.asc(), WebhookRow.id)
        )
        async with self.session() as session:
            rows = (await session.scalars(stmt)).all()

        # Event sets are JSON arrays; membership is checked here to stay
        # portable across SQLite and PostgreSQL.
        return [wh for wh in map(_row_to_webhook, rows) if wh.subscribes_to(event_type)]

    @storage_retry
    async def list_matching_webhooks(
        self,
        event_type: str,
        user_id: str | None,
        organization_id: str | None = None,
    ) -> list[Webhook]:
        """Get active webhooks that should receive an event emitted by an owner.

        A webhook matches when it is subscribed to ``event_type`` and is
        either user-private to ``user_id``, shared by ``organization_id``,
        or global.
        """
        user_match = (
            and_(WebhookRow.user_id == user_id, WebhookRow.organization_id.is_(None))
            if user_id is not None
            else false()
        )
        org_match = (
            WebhookRow.organization_id == organization_id
            if organization_id is not None
            else false()
        )
        global_match = and_(WebhookRow.user_id.is_(None), WebhookRow.organization_id.is_(None))

        stmt = (
            select(WebhookRow)
            .where(WebhookRow.is_active.is_(True))
            .where(or_(user_match, org_match, global_match))
            .order_by(WebhookRow.created_at.asc(), WebhookRow.id)
        )
        async with self.session() as session:
            rows = (await session.scalars(stmt)).all()

        return [wh for wh in map(_row_to_webhook, rows) if wh.subscribes_to(event_type)]

    @storage_errors
    async def update_webhook_fields(self, webhook_id: str, **values: Any) -> Webhook | None:
        """Update columns of a webhook and bump updated_at.

        Args:
            webhook_id: ID of the webhook to update.
            **values: Column values to set.

        Returns:
            Updated Webhook or None if not found.
        """
        values["updated_at"] = utc_now()
        async with self.session() as session, session.begin():
            row = await session.get(WebhookRow, webhook_id)
            if row is None:
                return None
            for key, value in values.items():
                setattr(row, key, value)
            await session.flush()
            return _row_to_webhook(row)

    @storage_errors
    async def delete_webhook(self, webhook_id: str) -> bool:
        """Delete a webhook and all of its delivery records.

        Returns:
            True if deleted, False if not found.
        """
        async with self.session() as session, session.begin():
            await session.execute(
                delete(WebhookEventRow)
                .where(WebhookEventRow.webhook_id == webhook_id)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(
                delete(WebhookRow)
                .where(WebhookRow.id == webhook_id)
                .execution_options(synchronize_session=False)
            )
            return bool(result.rowcount)

    @storage_errors
    async def update_delivery_summary(
        self,
        webhook_id: str,
        status: DeliveryStatus,
        attempts: int,
        delivered_at: datetime | None = None,
    ) -> bool:
        """Record the outcome of the most recent delivery on a webhook.

        Returns:
            True if the webhook exists and was updated.
        """
        now = delivered_at or utc_now()
        async with self.session() as session, session.begin():
            result = await session.execute(
                update(WebhookRow)
                .where(WebhookRow.id == webhook_id)
                .values(
                    last_delivery_at=now,
                    last_delivery_status=status,
                    retry_count=attempts,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            return bool(result.rowcount)

    @storage_retry
    async def count_webhooks(self, owner: OwnerScope | None = None) -> int:
        """Count webhooks, optionally restricted to one scope."""
        stmt = select(func.count()).select_from(WebhookRow)
        if owner is not None:
            stmt = stmt.where(_owner_filter(owner))
        async with self.session() as session:
            return int((await session.execute(stmt)).scalar_one())
