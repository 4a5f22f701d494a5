"""
Payment lifecycle manager.

Orchestrates the payment flow:
1. Validate input
2. Reject a second in-flight payment for the same resource
3. Derive the idempotency key
4. Create the processor intent
5. Persist the CREATED payment (write-time guard closes the race)

and the settlement path:
1. Lock the payment by processor intent id
2. Check amount/currency integrity; violations are stored as review items
3. Apply the terminal transition and write the outbox row in one transaction
4. Publish the outcome event after commit
"""
import time
import uuid
from dataclasses import dataclass
from typing import Any, Optional

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from league_payments.bus.events import PaymentOutcomeEvent
from league_payments.config import get_settings
from league_payments.core.idempotency import IdempotencyManager
from league_payments.core.outbox import EventPublisher, build_outbox_event
from league_payments.database.connection import get_session_factory
from league_payments.database.models import Payment
from league_payments.database.repository import PaymentRepository, utcnow
from league_payments.exceptions import (
    DuplicateProcessorIntent,
    InvalidAmount,
    InvalidCurrency,
    InvalidPrincipal,
    InvalidResourceType,
    PaymentAccessDenied,
    PaymentAlreadyInProgress,
    PaymentAmountMismatch,
    PaymentError,
    PaymentIntegrityError,
    PaymentNotFound,
    PaymentProcessorTimeout,
    PaymentRejected,
    UnknownPaymentIntent,
    UnknownProcessorStatus,
)
from league_payments.integrations.stripe_client import (
    ProcessorError,
    ProcessorRejected,
    ProcessorUnavailable,
    StripeClient,
)
from league_payments.monitoring.metrics import metrics
from league_payments.states import (
    PROCESSOR_PENDING_STATUSES,
    PaymentStatus,
    map_processor_status,
)

logger = structlog.get_logger(__name__)

RESOURCE_TYPES = ("league", "team")


@dataclass(frozen=True)
class PaymentIntentResult:
    """What the caller needs to finish the payment with the processor."""

    payment_id: uuid.UUID
    processor_intent_id: str
    client_secret: Optional[str]
    amount: int
    currency: str
    status: PaymentStatus


@dataclass(frozen=True)
class ReconcileOutcome:
    """
    Result of a reconcile call.

    ``outcome`` is ``transitioned`` when this call applied the terminal
    status, ``already_terminal`` when the payment was settled before.
    """

    payment: Payment
    transitioned: bool
    outcome: str


class PaymentLifecycleManager:
    """
    Owns every status change of a payment.

    Each operation opens its own session, so concurrent requests never share
    ORM state.
    """

    def __init__(
        self,
        processor_client: Optional[StripeClient] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        publisher: Optional[EventPublisher] = None,
        idempotency_manager: Optional[IdempotencyManager] = None,
    ):
        """
        Initialize lifecycle manager.

        Args:
            processor_client: Processor client (Stripe by default)
            session_factory: Session factory for the payment store
            publisher: Outcome event publisher
            idempotency_manager: Idempotency key derivation
        """
        self.settings = get_settings()
        self.processor_client = processor_client or StripeClient()
        self.session_factory = session_factory or get_session_factory()
        self.publisher = publisher or EventPublisher(session_factory=self.session_factory)
        self.idempotency_manager = idempotency_manager or IdempotencyManager()

        logger.info("payment_lifecycle_manager_initialized")

    def _validate_payment_request(
        self, principal: str, amount: Any, currency: Any, resource_type: str
    ) -> str:
        """
        Validate payment request parameters.

        Returns:
            str: Normalized (lowercase) currency

        Raises:
            InvalidPrincipal: If principal is empty
            InvalidAmount: If amount is not an integer at or above the minimum
            InvalidCurrency: If currency is not three ASCII letters
        """
        if not principal or not str(principal).strip():
            raise InvalidPrincipal("An authenticated principal is required")

        # bool is an int subclass
        if not isinstance(amount, int) or isinstance(amount, bool):
            raise InvalidAmount("Amount must be an integer number of minor units", amount=amount)

        minimum = self.settings.minimum_charge_minor_units
        if amount < minimum:
            raise InvalidAmount(
                f"Amount must be at least {minimum} minor units", amount=amount, minimum=minimum
            )

        if (
            not isinstance(currency, str)
            or len(currency) != 3
            or not currency.isascii()
            or not currency.isalpha()
        ):
            raise InvalidCurrency("Currency must be a 3-letter code", currency=currency)

        if resource_type not in RESOURCE_TYPES:
            raise InvalidResourceType(
                f"Unsupported resource type {resource_type!r}", resource_type=resource_type
            )

        return currency.lower()

    async def request_payment(
        self,
        principal: str,
        resource_id: uuid.UUID,
        amount: int,
        currency: str,
        description: Optional[str] = None,
        resource_type: str = "league",
    ) -> PaymentIntentResult:
        """
        Create a processor intent and the CREATED payment that tracks it.

        Raises:
            InvalidPrincipal, InvalidAmount, InvalidCurrency: Bad input
            PaymentAlreadyInProgress: Resource already has a CREATED payment
            PaymentProcessorTimeout: Processor unreachable; retry is safe
            PaymentRejected: Processor refused the request
        """
        start_time = time.time()
        try:
            currency = self._validate_payment_request(principal, amount, currency, resource_type)
        except PaymentError as e:
            logger.warning(
                "payment_request_invalid",
                principal=principal,
                resource_id=str(resource_id),
                error_code=e.error_code,
            )
            metrics.record_payment_request(e.error_code, "invalid", 0, time.time() - start_time)
            raise

        log = logger.bind(principal=principal, resource_id=str(resource_id))

        previous_attempt: Optional[uuid.UUID] = None
        async with self.session_factory() as session:
            repo = PaymentRepository(session)
            in_progress = await repo.exists_for_resource_with_status(
                resource_id, PaymentStatus.CREATED
            )
            if not in_progress:
                latest = await repo.most_recent_for_resource(resource_id)
                if latest is not None and latest.is_terminal:
                    previous_attempt = latest.id
        if in_progress:
            log.info("payment_already_in_progress")
            metrics.record_payment_request(
                PaymentAlreadyInProgress.error_code, currency, amount, time.time() - start_time
            )
            raise PaymentAlreadyInProgress(resource_id)

        # A settled attempt must not replay its intent for the next one
        idempotency_key = self.idempotency_manager.key_for(
            principal,
            resource_id,
            amount,
            currency,
            resource_type=resource_type,
            description=description,
            previous_attempt=previous_attempt,
        )
        metadata = {
            "paymentType": resource_type,
            "userId": str(principal),
            f"{resource_type}Id": str(resource_id),
        }

        try:
            intent = await self.processor_client.create_intent(
                amount=amount,
                currency=currency,
                idempotency_key=idempotency_key,
                metadata=metadata,
                description=description,
            )
        except ProcessorUnavailable as e:
            log.error("payment_processor_unavailable", idempotency_key=idempotency_key)
            metrics.record_payment_request(
                PaymentProcessorTimeout.error_code, currency, amount, time.time() - start_time
            )
            raise PaymentProcessorTimeout(
                "Payment processor did not respond, retry the request",
                idempotency_key=idempotency_key,
            ) from e
        except ProcessorRejected as e:
            log.warning("payment_processor_rejected", error=str(e))
            metrics.record_payment_request(
                PaymentRejected.error_code, currency, amount, time.time() - start_time
            )
            raise PaymentRejected(f"Payment processor rejected the request: {e}") from e

        payment = Payment(
            principal_id=principal,
            resource_id=resource_id,
            resource_type=resource_type,
            description=description,
            amount=amount,
            currency=currency,
            status=PaymentStatus.CREATED,
            processor_intent_id=intent.intent_id,
            idempotency_key=idempotency_key,
        )

        try:
            async with self.session_factory() as session, session.begin():
                await PaymentRepository(session).save(payment)
        except (PaymentAlreadyInProgress, DuplicateProcessorIntent) as e:
            log.info("payment_create_race_lost", intent_id=intent.intent_id)
            await self._release_orphaned_intent(intent.intent_id)
            metrics.record_payment_request(
                PaymentAlreadyInProgress.error_code, currency, amount, time.time() - start_time
            )
            raise PaymentAlreadyInProgress(resource_id) from e

        log.info(
            "payment_created",
            payment_id=str(payment.id),
            intent_id=intent.intent_id,
            amount=amount,
            currency=currency,
        )
        metrics.record_payment_request("created", currency, amount, time.time() - start_time)

        return PaymentIntentResult(
            payment_id=payment.id,
            processor_intent_id=intent.intent_id,
            client_secret=intent.client_secret,
            amount=payment.amount,
            currency=payment.currency,
            status=payment.status,
        )

    async def _release_orphaned_intent(self, intent_id: str) -> None:
        """Cancel an intent no local payment owns; failures are only logged."""
        async with self.session_factory() as session:
            owner = await PaymentRepository(session).find_by_processor_intent_id(intent_id)
        if owner is not None:
            return

        try:
            await self.processor_client.cancel_intent(intent_id)
            logger.info("orphaned_intent_canceled", intent_id=intent_id)
        except ProcessorError as e:
            logger.warning("orphaned_intent_cancel_failed", intent_id=intent_id, error=str(e))

    @staticmethod
    def _check_integrity(
        payment: Payment, intent_id: str, reported_amount: Any, reported_currency: Any
    ) -> None:
        currency_matches = (
            isinstance(reported_currency, str)
            and reported_currency.strip().lower() == payment.currency
        )
        amount_matches = (
            isinstance(reported_amount, int)
            and not isinstance(reported_amount, bool)
            and reported_amount == payment.amount
        )
        if currency_matches and amount_matches:
            return

        logger.error(
            "payment_amount_mismatch",
            payment_id=str(payment.id),
            intent_id=intent_id,
            expected_amount=payment.amount,
            expected_currency=payment.currency,
            reported_amount=reported_amount,
            reported_currency=reported_currency,
        )
        metrics.record_integrity_violation(PaymentAmountMismatch.error_code)
        raise PaymentAmountMismatch(
            intent_id, payment.amount, payment.currency, reported_amount, reported_currency
        )

    async def reconcile(
        self,
        intent_id: str,
        reported_status: str,
        reported_amount: Any,
        reported_currency: Any,
    ) -> ReconcileOutcome:
        """
        Bring the local payment in line with a processor-reported status.

        Replays for a settled payment are accepted and change nothing.

        Raises:
            UnknownPaymentIntent: No payment recorded for the intent
            PaymentAmountMismatch: Reported amount or currency differs
            UnknownProcessorStatus: Reported status is not a terminal status
        """
        log = logger.bind(intent_id=intent_id, reported_status=reported_status)
        outbox_id: Optional[int] = None
        payment_id: Optional[uuid.UUID] = None

        try:
            async with self.session_factory() as session, session.begin():
                repo = PaymentRepository(session)
                payment = await repo.find_by_processor_intent_id(intent_id, for_update=True)
                if payment is None:
                    log.warning("reconcile_unknown_intent")
                    metrics.record_reconciliation("unknown_intent")
                    raise UnknownPaymentIntent(intent_id)

                if payment.is_terminal:
                    log.info(
                        "reconcile_already_terminal",
                        payment_id=str(payment.id),
                        status=payment.status.value,
                    )
                    metrics.record_reconciliation("already_terminal")
                    return ReconcileOutcome(payment, False, "already_terminal")

                payment_id = payment.id
                self._check_integrity(payment, intent_id, reported_amount, reported_currency)

                new_status = map_processor_status(reported_status)
                if new_status is None:
                    log.error("reconcile_unknown_status", payment_id=str(payment.id))
                    metrics.record_integrity_violation(UnknownProcessorStatus.error_code)
                    raise UnknownProcessorStatus(intent_id, reported_status)

                now = utcnow()
                payment.mark_terminal(new_status, now)
                await repo.save(payment)

                outbox_row = build_outbox_event(PaymentOutcomeEvent.from_payment(payment), now)
                session.add(outbox_row)
                await session.flush()
                outbox_id = outbox_row.id
        except (StaleDataError, IntegrityError) as e:
            # Another worker settled the payment between our read and write
            log.info("reconcile_lost_race", error=type(e).__name__)
            async with self.session_factory() as session:
                settled = await PaymentRepository(session).find_by_processor_intent_id(intent_id)
            if settled is None:
                raise UnknownPaymentIntent(intent_id) from e
            metrics.record_reconciliation("already_terminal")
            return ReconcileOutcome(settled, False, "already_terminal")
        except (PaymentAmountMismatch, UnknownProcessorStatus) as e:
            metrics.record_reconciliation("rejected")
            if payment_id is not None:
                await self._escalate_for_review(payment_id, intent_id, e)
            raise

        log.info(
            "payment_reconciled",
            payment_id=str(payment.id),
            status=payment.status.value,
        )
        metrics.record_reconciliation("transitioned")

        if outbox_id is not None:
            await self.publisher.publish_pending([outbox_id])

        return ReconcileOutcome(payment, True, "transitioned")

    async def _escalate_for_review(
        self, payment_id: uuid.UUID, intent_id: str, error: PaymentIntegrityError
    ) -> None:
        """
        Store the violation as an open review item in its own transaction.

        The payment row is not touched. A failed write is logged and the
        original error still reaches the caller.
        """
        details = {
            key: value if isinstance(value, (str, int, float, bool, type(None))) else repr(value)
            for key, value in error.context.items()
        }
        details["message"] = error.message
        try:
            async with self.session_factory() as session, session.begin():
                item = await PaymentRepository(session).add_review_item(
                    payment_id, intent_id, error.error_code, details
                )
        except SQLAlchemyError as e:
            logger.error(
                "payment_review_item_write_failed",
                payment_id=str(payment_id),
                intent_id=intent_id,
                error_code=error.error_code,
                error=str(e),
            )
            return

        logger.warning(
            "payment_escalated_for_review",
            review_item_id=item.id,
            payment_id=str(payment_id),
            intent_id=intent_id,
            error_code=error.error_code,
        )

    async def get_payment(self, principal: str, payment_id: uuid.UUID) -> Payment:
        """
        Fetch a payment owned by ``principal``.

        Raises:
            PaymentNotFound: No such payment
            PaymentAccessDenied: The payment belongs to someone else
        """
        async with self.session_factory() as session:
            payment = await PaymentRepository(session).find_by_id(payment_id)

        if payment is None:
            raise PaymentNotFound(f"Payment {payment_id} not found", payment_id=str(payment_id))
        if payment.principal_id != principal:
            logger.warning(
                "payment_access_denied",
                payment_id=str(payment_id),
                principal=principal,
            )
            raise PaymentAccessDenied(
                "You do not have access to this payment", payment_id=str(payment_id)
            )
        return payment

    async def reconcile_from_processor(self, intent_id: str) -> Optional[ReconcileOutcome]:
        """
        Poll the processor for an intent and reconcile its status.

        Returns None while the processor still reports the intent in flight.
        """
        intent = await self.processor_client.fetch_intent(intent_id)
        if intent.status in PROCESSOR_PENDING_STATUSES:
            logger.info("processor_intent_pending", intent_id=intent_id, status=intent.status)
            return None
        return await self.reconcile(intent_id, intent.status, intent.amount, intent.currency)
