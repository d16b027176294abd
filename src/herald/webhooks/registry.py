"""Webhook registry: validated CRUD over subscriptions.

All input validation for webhooks happens here, synchronously, before
anything is written. Storage only sees well-formed records.
"""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Any

from pydantic import AnyHttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from herald.exceptions import NotFoundError, ValidationError
from herald.logging import get_logger
from herald.models import Webhook, WebhookUpdate, is_known_event_type

if TYPE_CHECKING:
    from collections.abc import Iterable

    from herald.models import DeliveryStatus, EventType, OwnerScope
    from herald.storage import HeraldStorage

logger = get_logger(__name__)

_http_url = TypeAdapter(AnyHttpUrl)


def generate_secret() -> str:
    """Generate a random 64-character hex signing secret."""
    return secrets.token_hex(32)


def validate_name(name: str) -> str:
    """Strip and require a non-empty display name."""
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("name", "must not be empty")
    return cleaned


def validate_url(url: str) -> str:
    """Require an absolute http(s) URL with a host.

    Returns:
        The URL as given, without surrounding whitespace.
    """
    cleaned = (url or "").strip()
    try:
        _http_url.validate_python(cleaned)
    except PydanticValidationError:
        raise ValidationError("url", "must be a valid http or https URL") from None
    return cleaned


def validate_events(events: Iterable[str]) -> list[EventType]:
    """Require a non-empty set of catalog event types.

    Duplicates are collapsed, keeping first-seen order.
    """
    unique = list(dict.fromkeys(events))
    if not unique:
        raise ValidationError("events", "at least one event type is required")
    unknown = [e for e in unique if not is_known_event_type(e)]
    if unknown:
        raise ValidationError("events", f"unknown event types: {', '.join(unknown)}")
    return unique  # type: ignore[return-value]


class WebhookRegistry:
    """Validated access to webhook subscriptions.

    Example:
        ```python
        registry = WebhookRegistry(storage)
        webhook = await registry.create(
            owner=UserScope(user_id="user_123"),
            name="CRM sync",
            url="https://crm.example.com/hooks",
            events=["document.created"],
        )
        ```
    """

    def __init__(self, storage: HeraldStorage) -> None:
        self._storage = storage

    async def create(
        self,
        owner: OwnerScope,
        name: str,
        url: str,
        events: Iterable[str],
        secret: str | None = None,
        is_active: bool = True,
    ) -> Webhook:
        """Register a new webhook.

        Args:
            owner: User, organization, or global scope.
            name: Display label.
            url: Absolute http(s) delivery URL.
            events: Event types to subscribe to.
            secret: Signing secret. Generated when omitted.
            is_active: Whether the webhook starts receiving events.

        Returns:
            The stored Webhook, including its secret.

        Raises:
            ValidationError: If any field is invalid.
        """
        if secret is not None and not secret.strip():
            raise ValidationError("secret", "must not be empty")

        webhook = Webhook(
            owner=owner,
            name=validate_name(name),
            url=validate_url(url),
            events=validate_events(events),
            secret=secret if secret is not None else generate_secret(),
            is_active=is_active,
        )
        await self._storage.insert_webhook(webhook)

        logger.info(
            "Webhook created",
            webhook_id=webhook.id,
            owner=webhook.owner.kind,
            events=webhook.events,
        )
        return webhook

    async def get(self, webhook_id: str) -> Webhook | None:
        """Get a webhook by ID, or None if it does not exist."""
        return await self._storage.get_webhook(webhook_id)

    async def find_by_id(self, webhook_id: str) -> Webhook:
        """Get a webhook by ID.

        Raises:
            NotFoundError: If the webhook does not exist.
        """
        webhook = await self._storage.get_webhook(webhook_id)
        if webhook is None:
            raise NotFoundError("webhook", webhook_id)
        return webhook

    async def find_active_by_event_type(self, event_type: str) -> list[Webhook]:
        """All active webhooks subscribed to ``event_type``, regardless of owner."""
        return await self._storage.list_active_webhooks_for_event(event_type)

    async def find_matching(
        self,
        event_type: str,
        user_id: str | None,
        organization_id: str | None = None,
    ) -> list[Webhook]:
        """Active webhooks that should receive an event emitted by this owner.

        Matches user-private webhooks of ``user_id``, webhooks shared by
        ``organization_id``, and global webhooks.
        """
        return await self._storage.list_matching_webhooks(
            event_type=event_type,
            user_id=user_id,
            organization_id=organization_id,
        )

    async def list_for_owner(
        self,
        owner: OwnerScope,
        active_only: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Webhook]:
        """List webhooks registered under exactly this scope, newest first."""
        return await self._storage.list_webhooks(
            owner=owner,
            active_only=active_only,
            limit=limit,
            offset=offset,
        )

    async def update(
        self,
        webhook_id: str,
        changes: WebhookUpdate | dict[str, Any],
    ) -> Webhook:
        """Apply a partial update. Fields left unset are untouched.

        The secret cannot be changed here; use ``rotate_secret``.

        Raises:
            ValidationError: If a supplied field is invalid.
            NotFoundError: If the webhook does not exist.
        """
        if isinstance(changes, dict):
            try:
                changes = WebhookUpdate.model_validate(changes)
            except PydanticValidationError as e:
                first = e.errors()[0]
                field = ".".join(str(part) for part in first["loc"]) or "changes"
                raise ValidationError(field, first["msg"]) from None

        values: dict[str, Any] = {}
        if changes.name is not None:
            values["name"] = validate_name(changes.name)
        if changes.url is not None:
            values["url"] = validate_url(changes.url)
        if changes.events is not None:
            values["events"] = validate_events(changes.events)
        if changes.is_active is not None:
            values["is_active"] = changes.is_active

        if not values:
            return await self.find_by_id(webhook_id)

        updated = await self._storage.update_webhook_fields(webhook_id, **values)
        if updated is None:
            raise NotFoundError("webhook", webhook_id)

        logger.info("Webhook updated", webhook_id=webhook_id, fields=sorted(values))
        return updated

    async def rotate_secret(self, webhook_id: str, secret: str | None = None) -> Webhook:
        """Replace the signing secret.

        Args:
            webhook_id: Webhook to rotate.
            secret: New secret. Generated when omitted.

        Raises:
            ValidationError: If an explicit secret is empty.
            NotFoundError: If the webhook does not exist.
        """
        if secret is not None and not secret.strip():
            raise ValidationError("secret", "must not be empty")

        updated = await self._storage.update_webhook_fields(
            webhook_id, secret=secret if secret is not None else generate_secret()
        )
        if updated is None:
            raise NotFoundError("webhook", webhook_id)

        logger.info("Webhook secret rotated", webhook_id=webhook_id)
        return updated

    async def delete(self, webhook_id: str) -> bool:
        """Delete a webhook and all of its delivery records.

        Returns:
            True if deleted, False if not found.
        """
        deleted = await self._storage.delete_webhook(webhook_id)
        if deleted:
            logger.info("Webhook deleted", webhook_id=webhook_id)
        return deleted

    async def record_delivery_outcome(
        self,
        webhook_id: str,
        status: DeliveryStatus,
        attempts: int,
    ) -> None:
        """Update the webhook's last-delivery summary.

        Best-effort: failures are logged and never propagate, so a summary
        write can never undo or block a delivery state change.
        """
        try:
            await self._storage.update_delivery_summary(webhook_id, status, attempts)
        except Exception as e:
            logger.warning(
                "Failed to record delivery outcome",
                webhook_id=webhook_id,
                status=status,
                error=str(e),
            )


__all__ = [
    "WebhookRegistry",
    "generate_secret",
    "validate_events",
    "validate_name",
    "validate_url",
]
