"""
Transactional outbox pattern implementation.

Outcome events are written to the database in the same transaction as the
payment transition, then published to the message bus once that
transaction has committed. Delivery is at-least-once: a row is marked
published only after the broker accepted it.
"""
import asyncio
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Protocol

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from league_payments.bus.events import PaymentOutcomeEvent
from league_payments.config import get_settings
from league_payments.database.connection import get_session_factory
from league_payments.database.models import OutboxEvent
from league_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class EventBus(Protocol):
    async def publish(self, event: PaymentOutcomeEvent) -> None: ...


def build_outbox_event(event: PaymentOutcomeEvent, created_at: datetime) -> OutboxEvent:
    """Outbox row for an outcome event, to be added to the transition's session."""
    return OutboxEvent(
        aggregate_id=event.payment_id,
        aggregate_type="payment",
        event_type=event.event_type,
        payload=event.model_dump(mode="json"),
        published=False,
        attempts=0,
        created_at=created_at,
    )


class EventPublisher:
    """
    Publishes committed outbox rows to the message bus.

    Each row gets ``retry_attempts`` tries with exponential backoff. A row
    that still fails stays unpublished, with ``attempts`` and
    ``last_error`` updated, for the relay to pick up later.
    """

    def __init__(
        self,
        bus: Optional[EventBus] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        retry_attempts: Optional[int] = None,
    ):
        """
        Initialize event publisher.

        Args:
            bus: Message bus (RabbitMQ by default)
            session_factory: Session factory for outbox reads and updates
            retry_attempts: Publish attempts per row
        """
        settings = get_settings()
        if bus is None:
            from league_payments.bus.rabbitmq import RabbitMQBus

            bus = RabbitMQBus()
        self.bus = bus
        self.session_factory = session_factory or get_session_factory()
        self.retry_attempts = retry_attempts or settings.publish_retry_attempts

    async def _send(self, event: PaymentOutcomeEvent) -> None:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
            reraise=True,
        ):
            with attempt:
                await self.bus.publish(event)

    async def publish_row(self, row: OutboxEvent) -> bool:
        """
        Publish a single outbox row and record the result on it.

        The caller commits the session the row belongs to.

        Returns:
            bool: True if published successfully, False otherwise
        """
        if row.published:
            return True

        try:
            event = PaymentOutcomeEvent.model_validate(row.payload)
            await self._send(event)
        except Exception as e:
            row.attempts = (row.attempts or 0) + 1
            row.last_error = str(e)[:1000]
            metrics.record_outbox_publish_failure(row.event_type)
            logger.error(
                "outbox_event_publish_failed",
                outbox_id=row.id,
                event_type=row.event_type,
                aggregate_id=str(row.aggregate_id),
                attempts=row.attempts,
                error=str(e),
            )
            return False

        row.published = True
        row.published_at = datetime.now(timezone.utc)
        row.attempts = (row.attempts or 0) + 1
        row.last_error = None
        metrics.record_outbox_event_published(row.event_type)
        logger.info(
            "outbox_event_published",
            outbox_id=row.id,
            event_type=row.event_type,
            aggregate_id=str(row.aggregate_id),
        )
        return True

    async def publish_pending(self, event_ids: Iterable[int]) -> int:
        """
        Publish the given outbox rows right after their transaction committed.

        Never raises for publish failures; the transition stays committed.

        Returns:
            int: Number of rows published
        """
        published = 0
        for event_id in event_ids:
            async with self.session_factory() as session:
                row = await session.get(OutboxEvent, event_id)
                if row is None:
                    logger.warning("outbox_event_missing", outbox_id=event_id)
                    continue
                if await self.publish_row(row):
                    published += 1
                await session.commit()
        return published


class OutboxRelay:
    """
    Recovery sweep over unpublished outbox rows.

    Picks up rows whose in-line publish failed or never ran (for example
    after a crash between commit and publish), oldest first.
    """

    def __init__(
        self,
        publisher: EventPublisher,
        batch_size: Optional[int] = None,
        poll_interval_seconds: Optional[float] = None,
    ):
        settings = get_settings()
        self.publisher = publisher
        self.session_factory = publisher.session_factory
        self.batch_size = batch_size or settings.outbox_batch_size
        self.poll_interval_seconds = (
            poll_interval_seconds or settings.outbox_poll_interval_seconds
        )
        self._running = False

        logger.info(
            "outbox_relay_initialized",
            batch_size=self.batch_size,
            poll_interval=self.poll_interval_seconds,
        )

    async def _fetch_unpublished_events(self, db: AsyncSession) -> List[OutboxEvent]:
        stmt = (
            select(OutboxEvent)
            .where(OutboxEvent.published.is_(False))
            .order_by(OutboxEvent.created_at, OutboxEvent.id)
            .limit(self.batch_size)
            .with_for_update(skip_locked=True)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def process_batch(self) -> int:
        """
        Process a batch of unpublished events.

        Returns:
            int: Number of events published
        """
        async with self.session_factory() as db:
            try:
                events = await self._fetch_unpublished_events(db)

                if not events:
                    metrics.set_outbox_queue_depth(0)
                    return 0

                logger.info("outbox_batch_processing_started", batch_size=len(events))

                published = 0
                for event in events:
                    if await self.publisher.publish_row(event):
                        published += 1

                await db.commit()

                logger.info(
                    "outbox_batch_processed",
                    total=len(events),
                    published=published,
                    failed=len(events) - published,
                )
            except Exception as e:
                logger.error("outbox_batch_processing_error", error=str(e))
                await db.rollback()
                return 0

        metrics.set_outbox_queue_depth(await self.get_pending_count())
        return published

    async def start(self) -> None:
        """
        Start the relay loop.

        Continuously polls for unpublished events and publishes them.
        """
        self._running = True
        logger.info("outbox_relay_started")

        try:
            while self._running:
                try:
                    published_count = await self.process_batch()

                    if published_count == 0:
                        await asyncio.sleep(self.poll_interval_seconds)
                    else:
                        # Events were processed, check immediately for more
                        await asyncio.sleep(0.1)

                except Exception as e:
                    logger.error("outbox_relay_error", error=str(e))
                    await asyncio.sleep(self.poll_interval_seconds)

        finally:
            logger.info("outbox_relay_stopped")

    def stop(self) -> None:
        """Stop the relay loop."""
        self._running = False
        logger.info("outbox_relay_stop_requested")

    async def get_pending_count(self) -> int:
        """
        Get count of pending unpublished events.

        Returns:
            int: Number of unpublished events
        """
        async with self.session_factory() as db:
            stmt = select(func.count()).select_from(OutboxEvent).where(
                OutboxEvent.published.is_(False)
            )
            result = await db.execute(stmt)
            return int(result.scalar_one())
