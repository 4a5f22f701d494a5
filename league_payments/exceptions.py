"""
Payment lifecycle error taxonomy.

Every error carries a stable error code for clients, the HTTP status the
API answers with, and whether the caller may retry the same request.

- Caller input errors: surfaced synchronously, no side effects.
- Processor errors: timeouts are retryable with the same idempotency key,
  rejections are final for that request.
- Reconciliation integrity errors: never auto-corrected, left for an
  operator to review.
- Unknown references: logged and discarded by notification adapters.
"""
from typing import Any, Dict, Optional


class PaymentError(Exception):
    """Base exception for payment lifecycle errors."""

    error_code = "payment_error"
    http_status = 500
    retryable = False

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API responses."""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "type": self.__class__.__name__,
                "retryable": self.retryable,
            }
        }


# Caller input errors


class InvalidAmount(PaymentError):
    error_code = "invalid_amount"
    http_status = 422


class InvalidCurrency(PaymentError):
    error_code = "invalid_currency"
    http_status = 422


class InvalidPrincipal(PaymentError):
    error_code = "invalid_principal"
    http_status = 401


class InvalidResourceType(PaymentError):
    error_code = "invalid_resource_type"
    http_status = 422


class PaymentAlreadyInProgress(PaymentError):
    """A resource already has a payment in CREATED status."""

    error_code = "payment_already_in_progress"
    http_status = 409

    def __init__(self, resource_id: Any, message: Optional[str] = None):
        super().__init__(
            message or f"A payment is already in progress for resource {resource_id}",
            resource_id=str(resource_id),
        )
        self.resource_id = resource_id


# Processor errors


class PaymentProcessorTimeout(PaymentError):
    """The processor could not be reached in time; retrying is safe."""

    error_code = "payment_processor_timeout"
    http_status = 503
    retryable = True


class PaymentRejected(PaymentError):
    """The processor refused the request; do not retry verbatim."""

    error_code = "payment_rejected"
    http_status = 402


# Reconciliation errors


class UnknownPaymentIntent(PaymentError):
    error_code = "unknown_payment_intent"
    http_status = 404

    def __init__(self, intent_id: str):
        super().__init__(f"No payment recorded for intent {intent_id}", intent_id=intent_id)
        self.intent_id = intent_id


class PaymentIntegrityError(PaymentError):
    """Reported processor state contradicts the local record."""

    http_status = 409


class PaymentAmountMismatch(PaymentIntegrityError):
    error_code = "payment_amount_mismatch"

    def __init__(
        self,
        intent_id: str,
        expected_amount: int,
        expected_currency: str,
        reported_amount: Any,
        reported_currency: Any,
    ):
        super().__init__(
            f"Intent {intent_id} reported {reported_amount} {reported_currency}, "
            f"recorded {expected_amount} {expected_currency}",
            intent_id=intent_id,
            expected_amount=expected_amount,
            expected_currency=expected_currency,
            reported_amount=reported_amount,
            reported_currency=reported_currency,
        )
        self.intent_id = intent_id


class UnknownProcessorStatus(PaymentIntegrityError):
    error_code = "unknown_processor_status"
    http_status = 422

    def __init__(self, intent_id: str, reported_status: Any):
        super().__init__(
            f"Intent {intent_id} reported unrecognized status {reported_status!r}",
            intent_id=intent_id,
            reported_status=reported_status,
        )
        self.reported_status = reported_status


# Query errors


class PaymentNotFound(PaymentError):
    error_code = "payment_not_found"
    http_status = 404


class PaymentAccessDenied(PaymentError):
    error_code = "payment_access_denied"
    http_status = 403


class DuplicateProcessorIntent(PaymentError):
    """A processor intent id is already attached to another payment."""

    error_code = "duplicate_processor_intent"
    http_status = 409
