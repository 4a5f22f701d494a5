"""
API routes for payment intents, Stripe webhooks and monitoring.
"""
import uuid
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from league_payments.core.lifecycle import PaymentLifecycleManager
from league_payments.integrations.webhook_handler import WebhookError, WebhookHandler
from league_payments.monitoring.health import HealthCheck

from .dependencies import (
    get_health_check,
    get_lifecycle_manager,
    get_principal,
    get_webhook_handler,
)
from .schemas import (
    CreatePaymentIntentRequest,
    ErrorResponse,
    HealthCheckResponse,
    PaymentIntentResponse,
    PaymentResponse,
    WebhookResponse,
)

logger = structlog.get_logger(__name__)

payment_router = APIRouter(prefix="/api/v1/payments", tags=["payments"])
monitoring_router = APIRouter(tags=["monitoring"])

ERROR_RESPONSES: Dict[int | str, Dict[str, Any]] = {
    code: {"model": ErrorResponse} for code in (401, 402, 403, 404, 409, 422, 503)
}


@payment_router.post(
    "/intent",
    response_model=PaymentIntentResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
    summary="Create a payment intent",
    description="Create a Stripe PaymentIntent for a league or team fee",
)
async def create_payment_intent(
    request: CreatePaymentIntentRequest,
    principal: str = Depends(get_principal),
    manager: PaymentLifecycleManager = Depends(get_lifecycle_manager),
) -> Dict[str, Any]:
    """
    Create a payment intent.

    Retrying the same request within the idempotency window reuses the same
    processor intent.
    """
    logger.info(
        "api_create_payment_intent_request",
        principal=principal,
        resource_id=str(request.resource_id),
        resource_type=request.resource_type,
        amount=request.amount,
        currency=request.currency,
    )

    result = await manager.request_payment(
        principal=principal,
        resource_id=request.resource_id,
        amount=request.amount,
        currency=request.currency,
        description=request.description,
        resource_type=request.resource_type,
    )

    return {
        "payment_id": result.payment_id,
        "processor_intent_id": result.processor_intent_id,
        "client_secret": result.client_secret,
        "amount": result.amount,
        "currency": result.currency,
        "status": result.status.value,
    }


@payment_router.post(
    "/webhook",
    response_model=WebhookResponse,
    summary="Stripe webhook endpoint",
    description="Handle Stripe payment intent events",
)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    handler: WebhookHandler = Depends(get_webhook_handler),
) -> Dict[str, Any]:
    """
    Handle Stripe webhook events.

    Verifies the signature, then reconciles settlement events.
    """
    if not stripe_signature:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Missing Stripe-Signature header"
        )

    body = await request.body()
    try:
        event = handler.verify_signature(body, stripe_signature)
    except WebhookError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        return await handler.process_event(event)
    except Exception as e:
        # Non-2xx makes Stripe redeliver the event
        logger.error(
            "api_webhook_unexpected_error",
            event_id=event["id"],
            event_type=event["type"],
            error=str(e),
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        )


@payment_router.get(
    "/{payment_id}",
    response_model=PaymentResponse,
    responses=ERROR_RESPONSES,
    summary="Get payment",
    description="Retrieve a payment owned by the caller",
)
async def get_payment(
    payment_id: uuid.UUID,
    principal: str = Depends(get_principal),
    manager: PaymentLifecycleManager = Depends(get_lifecycle_manager),
) -> Dict[str, Any]:
    """Get payment by ID."""
    payment = await manager.get_payment(principal, payment_id)
    return {
        "id": payment.id,
        "resource_id": payment.resource_id,
        "resource_type": payment.resource_type,
        "amount": payment.amount,
        "currency": payment.currency,
        "status": payment.status.value,
        "created_at": payment.created_at,
    }


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
    description="Kubernetes liveness probe endpoint",
)
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Liveness probe endpoint."""
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
    description="Kubernetes readiness probe endpoint",
)
async def readiness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Readiness probe endpoint."""
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
