"""Herald: reliable webhook delivery.

Notifies external HTTP endpoints about document events with
at-least-once delivery, HMAC-signed payloads and capped exponential
backoff.

Quick Start:
    from herald import HeraldService, UserScope

    async with HeraldService.create() as herald:
        webhook = await herald.create_webhook(
            owner=UserScope(user_id="user_123"),
            name="CRM sync",
            url="https://crm.example.com/hooks",
            events=["document.created"],
        )
        await herald.emit("document.created", {"documentId": "doc_1"}, user_id="user_123")
        herald.start_workers()

Event Lifecycle:
    - pending: queued, waiting for its first or next attempt
    - delivered: subscriber answered 2xx
    - failed: attempts exhausted, or webhook gone/inactive
"""

__version__ = "0.1.0"

# Configuration
from .config import Settings, settings

# Exceptions
from .exceptions import (
    ConfigurationError,
    DeliveryError,
    HeraldError,
    NotFoundError,
    StorageError,
    ValidationError,
)

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    log_context,
)

# Models
from .models import (
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
    WebhookStats,
    WebhookUpdate,
)

# Service
from .service import HeraldService

__all__ = [
    # Version
    "__version__",
    # Configuration
    "Settings",
    "settings",
    # Exceptions
    "HeraldError",
    "ValidationError",
    "NotFoundError",
    "StorageError",
    "DeliveryError",
    "ConfigurationError",
    # Logging
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "log_context",
    # Models
    "DeliveryResult",
    "DeliverySuccess",
    "EventPage",
    "GlobalScope",
    "OrganizationScope",
    "OwnerScope",
    "PermanentFailure",
    "TransientFailure",
    "UserScope",
    "Webhook",
    "WebhookEvent",
    "WebhookStats",
    "WebhookUpdate",
    # Service
    "HeraldService",
]
