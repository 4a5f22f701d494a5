"""
Stripe webhook handler with signature verification and event deduplication.

Implements:
- Webhook signature verification
- Event deduplication using Redis
- Mapping of payment intent events onto ``reconcile``
"""
import time
from typing import TYPE_CHECKING, Any, Dict, Optional

import redis.asyncio as aioredis
import stripe
import structlog

from league_payments.config import get_settings
from league_payments.exceptions import PaymentIntegrityError, UnknownPaymentIntent
from league_payments.monitoring.metrics import metrics

if TYPE_CHECKING:
    from league_payments.core.lifecycle import PaymentLifecycleManager

logger = structlog.get_logger(__name__)

# Event types that settle a payment, and the status each one reports
EVENT_STATUS_MAP: Dict[str, str] = {
    "payment_intent.succeeded": "succeeded",
    "payment_intent.payment_failed": "failed",
    "payment_intent.canceled": "canceled",
}


class WebhookError(Exception):
    """Raised when a webhook cannot be authenticated."""

    pass


class WebhookHandler:
    """
    Handles Stripe webhook events with deduplication.

    Features:
    - Signature verification using the Stripe webhook secret
    - Event deduplication (processed webhook ids kept in Redis)
    - Settlement events routed to the lifecycle manager's ``reconcile``
    """

    def __init__(
        self,
        manager: "PaymentLifecycleManager",
        redis_client: Optional[aioredis.Redis] = None,
    ):
        """
        Initialize webhook handler.

        Args:
            manager: Lifecycle manager that applies reported statuses
            redis_client: Optional Redis client for event deduplication
        """
        self.settings = get_settings()
        self.manager = manager
        self.redis_client = redis_client

        logger.info("webhook_handler_initialized")

    async def _ensure_redis(self) -> aioredis.Redis:
        """Ensure Redis client is initialized."""
        if self.redis_client is None:
            self.redis_client = aioredis.from_url(
                self.settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self.redis_client

    def verify_signature(
        self, payload: bytes, signature: str, secret: Optional[str] = None
    ) -> stripe.Event:
        """
        Verify webhook signature and construct event.

        Args:
            payload: Raw request body as bytes
            signature: Stripe-Signature header value
            secret: Optional webhook secret (uses config if not provided)

        Returns:
            stripe.Event: Verified Stripe event

        Raises:
            WebhookError: If signature verification fails
        """
        webhook_secret = secret or self.settings.stripe_webhook_secret

        try:
            event = stripe.Webhook.construct_event(
                payload=payload,
                sig_header=signature,
                secret=webhook_secret,
            )
        except stripe.SignatureVerificationError as e:
            logger.error("webhook_signature_verification_failed", error=str(e))
            raise WebhookError(f"Invalid webhook signature: {e}") from e
        except ValueError as e:
            logger.error("webhook_payload_invalid", error=str(e))
            raise WebhookError(f"Invalid webhook payload: {e}") from e

        logger.info(
            "webhook_signature_verified",
            event_id=event["id"],
            event_type=event["type"],
        )
        return event

    async def is_event_processed(self, event_id: str) -> bool:
        """
        Check if webhook event has already been processed.

        Args:
            event_id: Stripe event ID

        Returns:
            bool: True if event already processed, False otherwise
        """
        try:
            redis = await self._ensure_redis()
            return bool(await redis.exists(f"webhook:processed:{event_id}"))
        except aioredis.RedisError as e:
            # Reconcile is idempotent, so a Redis outage only costs a repeat
            logger.warning("webhook_dedup_check_error", error=str(e), event_id=event_id)
            return False

    async def mark_event_processed(self, event_id: str) -> None:
        """
        Mark webhook event as processed.

        Args:
            event_id: Stripe event ID
        """
        try:
            redis = await self._ensure_redis()
            await redis.setex(
                f"webhook:processed:{event_id}", self.settings.webhook_dedup_ttl_seconds, "1"
            )
        except aioredis.RedisError as e:
            logger.warning("webhook_mark_processed_error", error=str(e), event_id=event_id)

    async def process_event(self, event: Any) -> Dict[str, Any]:
        """
        Process a verified webhook event.

        Statuses:
        - processed: reconcile ran (transitioned or already terminal)
        - duplicate: event id seen before
        - ignored: event type not handled, or intent unknown locally
        - needs_review: reported amount, currency or status contradicts the record

        Args:
            event: Verified Stripe event

        Returns:
            Dict[str, Any]: Processing result
        """
        start = time.time()
        event_id = event["id"]
        event_type = event["type"]

        if await self.is_event_processed(event_id):
            logger.info("webhook_event_already_processed", event_id=event_id, event_type=event_type)
            metrics.record_webhook_event(event_type, "duplicate", time.time() - start)
            return {"status": "duplicate", "event_id": event_id, "event_type": event_type}

        reported_status = EVENT_STATUS_MAP.get(event_type)
        if reported_status is None:
            logger.info("webhook_event_ignored", event_id=event_id, event_type=event_type)
            await self.mark_event_processed(event_id)
            metrics.record_webhook_event(event_type, "ignored", time.time() - start)
            return {"status": "ignored", "event_id": event_id, "event_type": event_type}

        intent = event["data"]["object"]
        intent_id = intent["id"]
        result: Dict[str, Any] = {
            "event_id": event_id,
            "event_type": event_type,
            "intent_id": intent_id,
        }

        try:
            outcome = await self.manager.reconcile(
                intent_id,
                reported_status,
                intent.get("amount"),
                intent.get("currency"),
            )
        except UnknownPaymentIntent:
            logger.warning("webhook_unknown_intent", event_id=event_id, intent_id=intent_id)
            result["status"] = "ignored"
        except PaymentIntegrityError as e:
            logger.error(
                "webhook_needs_review",
                event_id=event_id,
                intent_id=intent_id,
                error_code=e.error_code,
                error=e.message,
            )
            result["status"] = "needs_review"
            result["error_code"] = e.error_code
        else:
            result["status"] = "processed"
            result["outcome"] = outcome.outcome
            result["payment_id"] = str(outcome.payment.id)

        await self.mark_event_processed(event_id)
        metrics.record_webhook_event(event_type, result["status"], time.time() - start)
        logger.info("webhook_event_processed", **result)
        return result

    async def close(self) -> None:
        """Close Redis connection."""
        if self.redis_client is not None:
            await self.redis_client.aclose()
