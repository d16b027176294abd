"""Herald exception hierarchy.

Provides structured exceptions for error handling throughout the codebase.
All exceptions inherit from HeraldError for easy catching.
"""

from __future__ import annotations


class HeraldError(Exception):
    """Base exception for all Herald errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code for API responses.
    """

    code: str = "herald_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class ValidationError(HeraldError):
    """Invalid input provided.

    Raised when a webhook registration or update fails validation
    (malformed URL, unknown event type, missing required field).

    Attributes:
        field: The field that failed validation.
        message: Description of the validation failure.
    """

    code: str = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "field": self.field,
                "message": self.message,
            }
        }


class NotFoundError(HeraldError):
    """Resource not found.

    Attributes:
        resource_type: Type of resource (e.g., "webhook", "webhook_event").
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "message": self.message,
            }
        }


class StorageError(HeraldError):
    """Storage operation failed.

    Raised when a database operation fails after retries.
    """

    code: str = "storage_error"


class DeliveryError(HeraldError):
    """Webhook delivery could not be attempted.

    Raised when a delivery cannot even be built (for example, a payload
    that does not serialize to JSON).
    """

    code: str = "delivery_error"


class ConfigurationError(HeraldError):
    """Configuration error.

    Raised when required configuration is missing or invalid.
    """

    code: str = "configuration_error"
