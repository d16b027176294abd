"""Tests for Herald exception hierarchy."""

import pytest

from herald.exceptions import (
    ConfigurationError,
    DeliveryError,
    HeraldError,
    NotFoundError,
    StorageError,
    ValidationError,
)


class TestHeraldError:
    """Tests for the base HeraldError class."""

    def test_error_message(self):
        """Should store and return message."""
        error = HeraldError("Something went wrong")
        assert error.message == "Something went wrong"
        assert str(error) == "Something went wrong"

    def test_error_code(self):
        error = HeraldError("test")
        assert error.code == "herald_error"

    def test_to_dict(self):
        """Should convert to API-friendly dict."""
        assert HeraldError("Something went wrong").to_dict() == {
            "error": {"code": "herald_error", "message": "Something went wrong"}
        }

    def test_inheritance(self):
        """All custom exceptions should inherit from HeraldError."""
        exceptions = [
            ValidationError("field", "invalid"),
            NotFoundError("webhook", "whk_1"),
            StorageError("failed"),
            DeliveryError("failed"),
            ConfigurationError("missing"),
        ]
        for exc in exceptions:
            assert isinstance(exc, HeraldError)

    def test_catch_all(self):
        with pytest.raises(HeraldError):
            raise StorageError("db down")


class TestValidationError:
    """Tests for ValidationError."""

    def test_field_and_message(self):
        error = ValidationError("url", "must be a valid http or https URL")
        assert error.field == "url"
        assert error.code == "validation_error"
        assert str(error) == "url: must be a valid http or https URL"

    def test_to_dict_includes_field(self):
        result = ValidationError("events", "at least one event type is required").to_dict()
        assert result["error"]["code"] == "validation_error"
        assert result["error"]["field"] == "events"


class TestNotFoundError:
    """Tests for NotFoundError."""

    def test_message(self):
        error = NotFoundError("webhook", "whk_123")
        assert error.resource_type == "webhook"
        assert error.resource_id == "whk_123"
        assert str(error) == "webhook not found: whk_123"

    def test_to_dict(self):
        result = NotFoundError("webhook_event", "evt_1").to_dict()
        assert result == {
            "error": {
                "code": "not_found",
                "resource_type": "webhook_event",
                "resource_id": "evt_1",
                "message": "webhook_event not found: evt_1",
            }
        }


class TestOtherErrors:
    """Codes of the remaining errors."""

    @pytest.mark.parametrize(
        ("exc", "code"),
        [
            (StorageError("x"), "storage_error"),
            (DeliveryError("x"), "delivery_error"),
            (ConfigurationError("x"), "configuration_error"),
        ],
    )
    def test_codes(self, exc, code):
        assert exc.code == code
