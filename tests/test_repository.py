"""
Tests for the payment record store.
"""
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm.exc import StaleDataError

from league_payments.database.models import Payment
from league_payments.database.repository import PaymentRepository
from league_payments.exceptions import DuplicateProcessorIntent, PaymentAlreadyInProgress
from league_payments.states import InvalidTransition, PaymentStatus


def make_payment(resource_id: uuid.UUID, intent_id: str, **overrides) -> Payment:
    fields = dict(
        principal_id="user-1",
        resource_id=resource_id,
        resource_type="league",
        amount=500,
        currency="usd",
        status=PaymentStatus.CREATED,
        processor_intent_id=intent_id,
    )
    fields.update(overrides)
    return Payment(**fields)


class TestPaymentRepository:
    """Keyed lookups and write-time guards."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_save_assigns_identity_and_audit_fields(self, session_factory, resource_id) -> None:
        async with session_factory() as session, session.begin():
            payment = await PaymentRepository(session).save(make_payment(resource_id, "pi_1"))

        assert isinstance(payment.id, uuid.UUID)
        assert payment.created_at is not None
        assert payment.updated_at == payment.created_at
        assert payment.version == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_find_by_id_and_intent(self, session_factory, resource_id) -> None:
        async with session_factory() as session, session.begin():
            saved = await PaymentRepository(session).save(make_payment(resource_id, "pi_find"))

        async with session_factory() as session:
            repo = PaymentRepository(session)
            by_id = await repo.find_by_id(saved.id)
            by_intent = await repo.find_by_processor_intent_id("pi_find")
            missing = await repo.find_by_processor_intent_id("pi_missing")

        assert by_id is not None and by_id.processor_intent_id == "pi_find"
        assert by_intent is not None and by_intent.id == saved.id
        assert missing is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_second_created_payment_for_resource_is_rejected(
        self, session_factory, resource_id
    ) -> None:
        async with session_factory() as session, session.begin():
            await PaymentRepository(session).save(make_payment(resource_id, "pi_a"))

        with pytest.raises(PaymentAlreadyInProgress):
            async with session_factory() as session, session.begin():
                await PaymentRepository(session).save(make_payment(resource_id, "pi_b"))

        async with session_factory() as session:
            assert await PaymentRepository(session).exists_for_resource_with_status(
                resource_id, PaymentStatus.CREATED
            )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_duplicate_intent_id_is_rejected(self, session_factory) -> None:
        async with session_factory() as session, session.begin():
            await PaymentRepository(session).save(make_payment(uuid.uuid4(), "pi_same"))

        with pytest.raises(DuplicateProcessorIntent):
            async with session_factory() as session, session.begin():
                await PaymentRepository(session).save(make_payment(uuid.uuid4(), "pi_same"))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_new_payment_allowed_once_previous_is_terminal(
        self, session_factory, resource_id
    ) -> None:
        async with session_factory() as session, session.begin():
            first = await PaymentRepository(session).save(make_payment(resource_id, "pi_old"))

        async with session_factory() as session, session.begin():
            repo = PaymentRepository(session)
            payment = await repo.find_by_id(first.id)
            payment.mark_terminal(PaymentStatus.FAILED, datetime.now(timezone.utc))
            await repo.save(payment)

        async with session_factory() as session, session.begin():
            second = await PaymentRepository(session).save(make_payment(resource_id, "pi_new"))

        async with session_factory() as session:
            repo = PaymentRepository(session)
            latest = await repo.most_recent_for_resource(resource_id)
            assert not await repo.exists_for_resource_with_status(
                resource_id, PaymentStatus.SUCCEEDED
            )

        assert latest is not None and latest.id == second.id

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stale_update_is_detected(self, session_factory, resource_id) -> None:
        async with session_factory() as session, session.begin():
            saved = await PaymentRepository(session).save(make_payment(resource_id, "pi_v"))

        first_session = session_factory()
        second_session = session_factory()
        try:
            first = await PaymentRepository(first_session).find_by_id(saved.id)
            second = await PaymentRepository(second_session).find_by_id(saved.id)

            first.mark_terminal(PaymentStatus.SUCCEEDED, datetime.now(timezone.utc))
            await PaymentRepository(first_session).save(first)
            await first_session.commit()

            second.mark_terminal(PaymentStatus.CANCELED, datetime.now(timezone.utc))
            with pytest.raises(StaleDataError):
                await PaymentRepository(second_session).save(second)
        finally:
            await first_session.close()
            await second_session.close()

        async with session_factory() as session:
            stored = await PaymentRepository(session).find_by_id(saved.id)
        assert stored.status is PaymentStatus.SUCCEEDED
        assert stored.canceled_at is None
        assert stored.version == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_find_stale_created(self, session_factory) -> None:
        old = make_payment(uuid.uuid4(), "pi_old_one")
        fresh = make_payment(uuid.uuid4(), "pi_fresh")
        old.created_at = datetime.now(timezone.utc) - timedelta(hours=2)

        async with session_factory() as session, session.begin():
            repo = PaymentRepository(session)
            await repo.save(old)
            await repo.save(fresh)

        cutoff = datetime.now(timezone.utc) - timedelta(minutes=30)
        async with session_factory() as session:
            stale = await PaymentRepository(session).find_stale_created(cutoff)

        assert [p.processor_intent_id for p in stale] == ["pi_old_one"]


class TestPaymentModel:
    """State machine rules on the entity."""

    @pytest.mark.unit
    def test_mark_terminal_stamps_matching_timestamp(self) -> None:
        payment = make_payment(uuid.uuid4(), "pi_x")
        at = datetime.now(timezone.utc)

        payment.mark_terminal(PaymentStatus.CANCELED, at)

        assert payment.status is PaymentStatus.CANCELED
        assert payment.canceled_at == at
        assert payment.succeeded_at is None and payment.failed_at is None
        assert payment.terminal_at == at

    @pytest.mark.unit
    def test_terminal_payment_cannot_transition(self) -> None:
        payment = make_payment(uuid.uuid4(), "pi_y")
        payment.mark_terminal(PaymentStatus.SUCCEEDED, datetime.now(timezone.utc))

        with pytest.raises(InvalidTransition):
            payment.mark_terminal(PaymentStatus.FAILED, datetime.now(timezone.utc))
