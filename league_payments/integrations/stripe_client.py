"""
Stripe API client for payment intents.

Implements:
- Bounded call timeout around the blocking SDK
- Exponential backoff for transient errors, reusing the idempotency key
- Circuit breaker pattern
- Error classification into retryable / non-retryable
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, TypeVar

import stripe
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from league_payments.config import get_settings
from league_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ProcessorError(Exception):
    """Base exception for payment processor errors."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.original_error = original_error


class ProcessorUnavailable(ProcessorError):
    """Network failure, timeout, 5xx or rate limit. Safe to retry with the same key."""

    pass


class ProcessorRejected(ProcessorError):
    """The processor refused the request (4xx). Not retryable."""

    pass


@dataclass(frozen=True)
class ProcessorIntent:
    """The parts of a processor payment intent this service relies on."""

    intent_id: str
    client_secret: Optional[str]
    status: str
    amount: int
    currency: str

    @classmethod
    def from_stripe(cls, intent: Any) -> "ProcessorIntent":
        return cls(
            intent_id=intent.id,
            client_secret=getattr(intent, "client_secret", None),
            status=intent.status,
            amount=intent.amount,
            currency=intent.currency,
        )


class CircuitBreaker:
    """
    Circuit breaker for processor API calls.

    Stops sending requests for ``timeout`` seconds after
    ``failure_threshold`` consecutive transient failures.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 2,
    ):
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open

    def before_call(self) -> None:
        """
        Check whether a call may proceed.

        Raises:
            ProcessorUnavailable: If circuit is open
        """
        if self.state != "open":
            return
        if self.last_failure_time and time.time() - self.last_failure_time > self.timeout:
            self.state = "half_open"
            self.success_count = 0
            metrics.set_circuit_breaker_state(self.state)
            logger.info("circuit_breaker_half_open")
            return
        raise ProcessorUnavailable("Circuit breaker is open")

    def on_success(self) -> None:
        """Record successful call."""
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self.state = "closed"
                metrics.set_circuit_breaker_state(self.state)
                logger.info("circuit_breaker_closed")

    def on_failure(self) -> None:
        """Record failed call."""
        self.failure_count += 1
        self.last_failure_time = time.time()
        if self.failure_count >= self.failure_threshold or self.state == "half_open":
            self.state = "open"
            metrics.set_circuit_breaker_state(self.state)
            logger.warning(
                "circuit_breaker_opened",
                failure_count=self.failure_count,
            )


class StripeClient:
    """
    Payment processor client backed by Stripe PaymentIntents.

    Features:
    - Idempotent intent creation
    - Bounded per-call timeout
    - Automatic retry of transient errors
    - Circuit breaker
    """

    def __init__(
        self,
        timeout_seconds: Optional[float] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        settings = get_settings()
        stripe.api_key = settings.stripe_secret_key
        stripe.api_version = settings.stripe_api_version
        self.settings = settings
        self.timeout_seconds = timeout_seconds or settings.processor_timeout_seconds
        self.circuit_breaker = circuit_breaker or CircuitBreaker()

        logger.info(
            "stripe_client_initialized",
            api_version=stripe.api_version,
            test_mode=settings.is_test_mode,
            timeout_seconds=self.timeout_seconds,
        )

    @staticmethod
    def _classify_error(error: stripe.StripeError) -> ProcessorError:
        """
        Classify a Stripe error for retry logic.

        Args:
            error: Stripe error

        Returns:
            ProcessorError: ProcessorUnavailable or ProcessorRejected
        """
        http_status = getattr(error, "http_status", None)
        message = str(error)

        if isinstance(
            error,
            (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError),
        ):
            return ProcessorUnavailable(message, original_error=error)
        if isinstance(
            error,
            (
                stripe.CardError,
                stripe.InvalidRequestError,
                stripe.AuthenticationError,
                stripe.PermissionError,
                stripe.IdempotencyError,
            ),
        ):
            if http_status is not None and http_status >= 500:
                return ProcessorUnavailable(message, original_error=error)
            return ProcessorRejected(message, original_error=error)

        # Unknown errors: decide by HTTP status, treat missing status as transient
        if http_status is not None and 400 <= http_status < 500 and http_status != 429:
            return ProcessorRejected(message, original_error=error)
        return ProcessorUnavailable(message, original_error=error)

    async def _call(self, operation: str, func: Callable[[], T]) -> T:
        """
        Run a blocking SDK call in a worker thread under the call timeout.

        Raises:
            ProcessorUnavailable: timeout, transient error or open circuit
            ProcessorRejected: request refused by the processor
        """
        self.circuit_breaker.before_call()
        start = time.time()

        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(func), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            self.circuit_breaker.on_failure()
            metrics.record_processor_call(operation, "unavailable", time.time() - start)
            logger.error(
                "stripe_api_timeout",
                operation=operation,
                timeout_seconds=self.timeout_seconds,
            )
            raise ProcessorUnavailable(
                f"Stripe {operation} timed out after {self.timeout_seconds}s", original_error=e
            )
        except stripe.StripeError as e:
            error = self._classify_error(e)
            status = "unavailable" if isinstance(error, ProcessorUnavailable) else "rejected"
            if isinstance(error, ProcessorUnavailable):
                self.circuit_breaker.on_failure()
            metrics.record_processor_call(operation, status, time.time() - start)
            logger.error(
                "stripe_api_error",
                operation=operation,
                error_class=status,
                error_code=getattr(e, "code", None),
                http_status=getattr(e, "http_status", None),
                error_message=str(e),
            )
            raise error

        self.circuit_breaker.on_success()
        metrics.record_processor_call(operation, "success", time.time() - start)
        return result

    @retry(
        retry=retry_if_exception_type(ProcessorUnavailable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
        reraise=True,
    )
    async def create_intent(
        self,
        amount: int,
        currency: str,
        idempotency_key: str,
        metadata: Optional[Dict[str, str]] = None,
        description: Optional[str] = None,
    ) -> ProcessorIntent:
        """
        Create a PaymentIntent with idempotency.

        Args:
            amount: Amount in minor units
            currency: Lowercase ISO currency code
            idempotency_key: Key that makes retries of this call safe
            metadata: Optional metadata stored on the intent
            description: Optional description shown on the processor dashboard

        Returns:
            ProcessorIntent: Created intent

        Raises:
            ProcessorUnavailable: If the processor could not be reached
            ProcessorRejected: If the processor refused the request
        """
        logger.info(
            "creating_payment_intent",
            amount=amount,
            currency=currency,
            idempotency_key=idempotency_key,
        )

        def _create() -> Any:
            params: Dict[str, Any] = {
                "amount": amount,
                "currency": currency.lower(),
                "metadata": metadata or {},
                "automatic_payment_methods": {"enabled": True, "allow_redirects": "never"},
                "idempotency_key": idempotency_key,
            }
            if description:
                params["description"] = description
            return stripe.PaymentIntent.create(**params)

        intent = ProcessorIntent.from_stripe(await self._call("create_intent", _create))

        logger.info(
            "payment_intent_created",
            intent_id=intent.intent_id,
            status=intent.status,
        )
        return intent

    async def fetch_intent(self, intent_id: str) -> ProcessorIntent:
        """
        Retrieve a PaymentIntent by id.

        Raises:
            ProcessorUnavailable: If the processor could not be reached
            ProcessorRejected: If the intent does not exist
        """
        logger.info("retrieving_payment_intent", intent_id=intent_id)

        def _retrieve() -> Any:
            return stripe.PaymentIntent.retrieve(intent_id)

        return ProcessorIntent.from_stripe(await self._call("fetch_intent", _retrieve))

    async def cancel_intent(self, intent_id: str) -> ProcessorIntent:
        """
        Cancel a PaymentIntent that no local payment owns.

        Raises:
            ProcessorUnavailable: If the processor could not be reached
            ProcessorRejected: If the intent can no longer be canceled
        """
        logger.info("canceling_payment_intent", intent_id=intent_id)

        def _cancel() -> Any:
            return stripe.PaymentIntent.cancel(intent_id)

        intent = ProcessorIntent.from_stripe(await self._call("cancel_intent", _cancel))

        logger.info(
            "payment_intent_canceled",
            intent_id=intent.intent_id,
            status=intent.status,
        )
        return intent
