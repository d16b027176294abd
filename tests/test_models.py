"""Tests for Herald data models."""

from datetime import timedelta

import pytest
from pydantic import TypeAdapter, ValidationError

from herald.models import (
    ALL_EVENT_TYPES,
    DeliveryResult,
    DeliverySuccess,
    EventPage,
    GlobalScope,
    OrganizationScope,
    OwnerScope,
    PermanentFailure,
    TransientFailure,
    UserScope,
    Webhook,
    WebhookEvent,
    generate_id,
    is_known_event_type,
)

from conftest import NOW


def make_webhook(**overrides) -> Webhook:
    fields = {
        "owner": UserScope(user_id="user_1"),
        "name": "Hook",
        "url": "https://example.com/hook",
        "events": ["document.created"],
        "secret": "secret",
    }
    fields.update(overrides)
    return Webhook(**fields)


class TestIds:
    def test_generate_id_prefix(self):
        value = generate_id("evt")
        assert value.startswith("evt_")
        assert len(value) == len("evt_") + 16

    def test_default_ids(self):
        assert make_webhook().id.startswith("whk_")
        assert WebhookEvent(webhook_id="whk_1", event_type="document.created").id.startswith(
            "evt_"
        )


class TestEventCatalog:
    def test_catalog(self):
        assert ALL_EVENT_TYPES == [
            "document.created",
            "document.updated",
            "document.deleted",
            "document.shared",
            "document.viewed",
        ]

    def test_is_known_event_type(self):
        assert is_known_event_type("document.shared")
        assert not is_known_event_type("document.archived")


class TestOwnerScope:
    """Tests for the tagged owner scope."""

    def test_discriminated_parsing(self):
        adapter = TypeAdapter(OwnerScope)
        assert isinstance(adapter.validate_python({"kind": "user", "user_id": "u1"}), UserScope)
        org = adapter.validate_python({"kind": "organization", "organization_id": "o1"})
        assert isinstance(org, OrganizationScope)
        assert org.created_by is None
        assert isinstance(adapter.validate_python({"kind": "global"}), GlobalScope)

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            TypeAdapter(OwnerScope).validate_python({"kind": "team", "team_id": "t1"})

    def test_user_scope_requires_id(self):
        with pytest.raises(ValidationError):
            UserScope(user_id="")

    def test_scopes_are_frozen(self):
        scope = UserScope(user_id="u1")
        with pytest.raises(ValidationError):
            scope.user_id = "u2"


class TestWebhook:
    """Tests for the Webhook model."""

    def test_events_must_not_be_empty(self):
        with pytest.raises(ValidationError):
            make_webhook(events=[])

    def test_unknown_event_rejected(self):
        with pytest.raises(ValidationError):
            make_webhook(events=["document.archived"])

    def test_subscribes_to(self):
        webhook = make_webhook(events=["document.created", "document.deleted"])
        assert webhook.subscribes_to("document.deleted")
        assert not webhook.subscribes_to("document.viewed")

    def test_inactive_subscribes_to_nothing(self):
        assert not make_webhook(is_active=False).subscribes_to("document.created")


class TestWebhookEvent:
    """Tests for the delivery record model."""

    def test_defaults(self):
        event = WebhookEvent(webhook_id="whk_1", event_type="document.created")
        assert event.status == "pending"
        assert event.attempts == 0
        assert event.max_attempts == 3
        assert event.next_retry_at is None
        assert not event.is_terminal

    def test_terminal(self):
        for status in ("delivered", "failed"):
            event = WebhookEvent(webhook_id="whk_1", event_type="document.created", status=status)
            assert event.is_terminal

    def test_is_due(self):
        event = WebhookEvent(webhook_id="whk_1", event_type="document.created")
        assert event.is_due(NOW)

        later = event.model_copy(update={"next_retry_at": NOW + timedelta(minutes=2)})
        assert not later.is_due(NOW)
        assert later.is_due(NOW + timedelta(minutes=2))

    def test_terminal_never_due(self):
        event = WebhookEvent(
            webhook_id="whk_1", event_type="document.created", status="delivered"
        )
        assert not event.is_due(NOW)


class TestDeliveryResult:
    """Tests for the tagged delivery result."""

    def test_discriminated_parsing(self):
        adapter = TypeAdapter(DeliveryResult)
        assert isinstance(
            adapter.validate_python({"kind": "success", "status_code": 204}), DeliverySuccess
        )
        assert isinstance(
            adapter.validate_python({"kind": "transient", "reason": "HTTP 503", "status_code": 503}),
            TransientFailure,
        )
        assert isinstance(
            adapter.validate_python({"kind": "permanent", "reason": "Webhook not found"}),
            PermanentFailure,
        )

    def test_success_requires_2xx(self):
        with pytest.raises(ValidationError):
            DeliverySuccess(status_code=500)


class TestEventPage:
    def test_total_pages(self):
        assert EventPage(total=0, limit=20).total_pages == 0
        assert EventPage(total=20, limit=20).total_pages == 1
        assert EventPage(total=21, limit=20).total_pages == 2
