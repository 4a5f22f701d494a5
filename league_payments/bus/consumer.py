"""
Idempotent consumer of payment outcome events.

Other services (league, team, messaging) register one handler per payment
status. Each ``(payment_id, status)`` pair is applied at most once: the
ledger row and the handler's side effects commit in the same transaction,
so a redelivered event finds the ledger row and is acknowledged without
running the handler again.
"""
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Optional

import aio_pika
import structlog
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from league_payments.bus.events import PaymentOutcomeEvent
from league_payments.bus.rabbitmq import RabbitMQBus
from league_payments.database.connection import get_session_factory
from league_payments.database.models import ProcessedPaymentEvent
from league_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

EventHandler = Callable[[PaymentOutcomeEvent, AsyncSession], Awaitable[None]]


class _AlreadyProcessed(Exception):
    pass


class PaymentOutcomeConsumer:
    """
    Applies payment outcome events exactly once per (payment, status).

    Outcomes:
    - applied: ledger row written and handler ran
    - duplicate: pair seen before, nothing done
    - no_handler: recorded, no handler registered for the status
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        bus: Optional[RabbitMQBus] = None,
    ):
        self.session_factory = session_factory or get_session_factory()
        self.bus = bus
        self.handlers: Dict[str, EventHandler] = {}

    def register_handler(self, status: str, handler: EventHandler) -> None:
        """
        Register the side effect for one payment status.

        Example:
            async def activate_league(event, session):
                ...

            consumer.register_handler("succeeded", activate_league)
        """
        self.handlers[status] = handler
        logger.info("payment_event_handler_registered", status=status)

    async def apply(self, event: PaymentOutcomeEvent) -> str:
        """
        Apply one event inside a single transaction.

        Raises:
            Exception: Whatever the handler raised; the transaction is rolled back
        """
        handler = self.handlers.get(event.status)
        try:
            async with self.session_factory() as session, session.begin():
                seen = await session.execute(
                    select(ProcessedPaymentEvent.id).where(
                        ProcessedPaymentEvent.payment_id == event.payment_id,
                        ProcessedPaymentEvent.status == event.status,
                    )
                )
                if seen.first() is not None:
                    raise _AlreadyProcessed()

                session.add(
                    ProcessedPaymentEvent(
                        payment_id=event.payment_id,
                        status=event.status,
                        event_id=event.event_id,
                        processed_at=datetime.now(timezone.utc),
                    )
                )
                try:
                    await session.flush()
                except IntegrityError as e:
                    # A concurrent delivery of the same pair committed first
                    raise _AlreadyProcessed() from e

                if handler is not None:
                    await handler(event, session)
        except _AlreadyProcessed:
            logger.info(
                "payment_event_duplicate",
                event_id=event.event_id,
                payment_id=str(event.payment_id),
                status=event.status,
            )
            metrics.record_event_consumed(event.status, "duplicate")
            return "duplicate"

        outcome = "applied" if handler is not None else "no_handler"
        logger.info(
            "payment_event_consumed",
            event_id=event.event_id,
            payment_id=str(event.payment_id),
            status=event.status,
            outcome=outcome,
        )
        metrics.record_event_consumed(event.status, outcome)
        return outcome

    async def handle_message(self, message: aio_pika.abc.AbstractIncomingMessage) -> None:
        """Decode, apply and settle one broker message."""
        try:
            event = PaymentOutcomeEvent.from_message_body(message.body)
        except (ValidationError, ValueError) as e:
            logger.error(
                "payment_event_malformed",
                message_id=message.message_id,
                error=str(e),
            )
            metrics.record_event_consumed("unknown", "invalid")
            await message.reject(requeue=False)
            return

        try:
            await self.apply(event)
        except Exception as e:
            logger.error(
                "payment_event_handler_failed",
                event_id=event.event_id,
                status=event.status,
                error=str(e),
            )
            metrics.record_event_consumed(event.status, "failed")
            await message.nack(requeue=True)
            return

        await message.ack()

    async def start(self, queue_name: str, routing_key: str = "payment.*") -> None:
        """Start consuming from a durable queue bound to the payment exchange."""
        bus = self.bus or RabbitMQBus()
        self.bus = bus
        queue = await bus.declare_queue(queue_name, routing_key)
        await queue.consume(self.handle_message)
        logger.info("payment_event_consumer_started", queue=queue_name)
