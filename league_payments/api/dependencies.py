"""FastAPI dependencies: caller identity and long-lived services."""
from functools import lru_cache

from fastapi import Request

from league_payments.config import get_settings
from league_payments.core.lifecycle import PaymentLifecycleManager
from league_payments.exceptions import InvalidPrincipal
from league_payments.integrations.webhook_handler import WebhookHandler
from league_payments.monitoring.health import HealthCheck


def get_principal(request: Request) -> str:
    """
    Authenticated user id forwarded by the gateway.

    Raises:
        InvalidPrincipal: If the header is missing or blank
    """
    header = get_settings().principal_header
    principal = (request.headers.get(header) or "").strip()
    if not principal:
        raise InvalidPrincipal(f"Missing {header} header")
    return principal


@lru_cache()
def get_lifecycle_manager() -> PaymentLifecycleManager:
    return PaymentLifecycleManager()


@lru_cache()
def get_webhook_handler() -> WebhookHandler:
    return WebhookHandler(get_lifecycle_manager())


@lru_cache()
def get_health_check() -> HealthCheck:
    return HealthCheck()
