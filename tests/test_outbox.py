"""
Tests for outbox publishing and the recovery relay.
"""
import uuid

import pytest
from sqlalchemy import select

from league_payments.core.outbox import EventPublisher, OutboxRelay
from league_payments.database.models import OutboxEvent


async def outbox_rows(session_factory):
    async with session_factory() as session:
        return (
            await session.execute(select(OutboxEvent).order_by(OutboxEvent.id))
        ).scalars().all()


class TestEventPublisher:
    """In-line publishing right after commit."""

    @pytest.mark.asyncio
    async def test_transient_broker_failure_is_retried(
        self, manager, bus, session_factory, resource_id
    ) -> None:
        bus.fail_times = 2
        created = await manager.request_payment("user-1", resource_id, 500, "usd")

        await manager.reconcile(created.processor_intent_id, "succeeded", 500, "usd")

        assert bus.attempts == 3
        assert len(bus.published) == 1
        (row,) = await outbox_rows(session_factory)
        assert row.published is True
        assert row.last_error is None

    @pytest.mark.asyncio
    async def test_already_published_row_is_not_sent_again(
        self, manager, publisher, bus, session_factory, resource_id
    ) -> None:
        created = await manager.request_payment("user-1", resource_id, 500, "usd")
        await manager.reconcile(created.processor_intent_id, "succeeded", 500, "usd")
        (row,) = await outbox_rows(session_factory)

        assert await publisher.publish_pending([row.id]) == 1
        assert len(bus.published) == 1

    @pytest.mark.asyncio
    async def test_missing_row_is_skipped(self, publisher) -> None:
        assert await publisher.publish_pending([12345]) == 0


class TestOutboxRelay:
    """Recovery sweep over unpublished rows."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_relay_publishes_events_whose_first_publish_failed(
        self, manager, bus, session_factory, resource_id
    ) -> None:
        bus.fail_times = 3
        created = await manager.request_payment("user-1", resource_id, 500, "usd")
        await manager.reconcile(created.processor_intent_id, "failed", 500, "usd")

        relay = OutboxRelay(manager.publisher, batch_size=10, poll_interval_seconds=0.01)
        assert await relay.get_pending_count() == 1

        published = await relay.process_batch()

        assert published == 1
        assert await relay.get_pending_count() == 0
        assert [e.status for e in bus.published] == ["failed"]
        (row,) = await outbox_rows(session_factory)
        assert row.published is True
        assert row.attempts == 2

    @pytest.mark.asyncio
    async def test_relay_publishes_oldest_first(
        self, manager, bus_factory, session_factory
    ) -> None:
        intents = []
        for _ in range(3):
            created = await manager.request_payment("user-1", uuid.uuid4(), 500, "usd")
            intents.append(created)

        stalled_bus = bus_factory(fail_times=1000)
        manager.publisher.bus = stalled_bus
        for created in intents:
            await manager.reconcile(created.processor_intent_id, "succeeded", 500, "usd")

        recovering_bus = bus_factory()
        relay = OutboxRelay(
            EventPublisher(bus=recovering_bus, session_factory=session_factory, retry_attempts=1),
            batch_size=10,
        )

        assert await relay.process_batch() == 3
        assert [e.payment_id for e in recovering_bus.published] == [
            c.payment_id for c in intents
        ]
        assert await relay.process_batch() == 0

    @pytest.mark.asyncio
    async def test_relay_with_nothing_pending(self, publisher) -> None:
        relay = OutboxRelay(publisher, batch_size=10)

        assert await relay.process_batch() == 0
        assert await relay.get_pending_count() == 0
