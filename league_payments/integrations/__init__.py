"""External service integrations."""
from .stripe_client import (
    ProcessorError,
    ProcessorIntent,
    ProcessorRejected,
    ProcessorUnavailable,
    StripeClient,
)
from .webhook_handler import WebhookError, WebhookHandler

__all__ = [
    "ProcessorError",
    "ProcessorIntent",
    "ProcessorRejected",
    "ProcessorUnavailable",
    "StripeClient",
    "WebhookError",
    "WebhookHandler",
]
