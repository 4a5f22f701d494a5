"""
Payment record store.

Keyed lookups over the ``payments`` table. The caller owns the session and
its transaction; ``save`` flushes so that constraint violations surface at
the point of the write rather than at commit.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from league_payments.database.models import Payment, PaymentReviewItem
from league_payments.exceptions import DuplicateProcessorIntent, PaymentAlreadyInProgress
from league_payments.states import PaymentStatus

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentRepository:
    """Data access for Payment records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def save(self, payment: Payment) -> Payment:
        """
        Insert or update a payment.

        Assigns the id and ``created_at`` on first insert and stamps
        ``updated_at`` on every save.

        Raises:
            PaymentAlreadyInProgress: another CREATED payment holds the resource
            DuplicateProcessorIntent: the intent id belongs to another payment
            StaleDataError: the row changed since it was loaded
        """
        now = utcnow()
        if payment.id is None:
            payment.id = uuid.uuid4()
        if payment.created_at is None:
            payment.created_at = now
        payment.updated_at = now

        self.session.add(payment)
        try:
            await self.session.flush()
        except IntegrityError as e:
            detail = str(e.orig)
            logger.warning(
                "payment_write_conflict",
                payment_id=str(payment.id),
                resource_id=str(payment.resource_id),
                detail=detail,
            )
            if "processor_intent_id" in detail:
                raise DuplicateProcessorIntent(
                    f"Intent {payment.processor_intent_id} is already recorded",
                    intent_id=payment.processor_intent_id,
                ) from e
            raise PaymentAlreadyInProgress(payment.resource_id) from e
        return payment

    async def find_by_id(self, payment_id: uuid.UUID) -> Optional[Payment]:
        return await self.session.get(Payment, payment_id)

    async def find_by_processor_intent_id(
        self, intent_id: str, for_update: bool = False
    ) -> Optional[Payment]:
        """
        Look up a payment by processor intent id.

        With ``for_update`` the row is locked until the transaction ends on
        backends that support row locks.
        """
        stmt = select(Payment).where(Payment.processor_intent_id == intent_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def exists_for_resource_with_status(
        self, resource_id: uuid.UUID, status: PaymentStatus
    ) -> bool:
        stmt = select(
            exists().where(Payment.resource_id == resource_id, Payment.status == status)
        )
        result = await self.session.execute(stmt)
        return bool(result.scalar())

    async def most_recent_for_resource(self, resource_id: uuid.UUID) -> Optional[Payment]:
        stmt = (
            select(Payment)
            .where(Payment.resource_id == resource_id)
            .order_by(Payment.created_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_stale_created(self, older_than: datetime, limit: int = 100) -> List[Payment]:
        """CREATED payments with an intent id created before ``older_than``."""
        stmt = (
            select(Payment)
            .where(
                Payment.status == PaymentStatus.CREATED,
                Payment.processor_intent_id.is_not(None),
                Payment.created_at < older_than,
            )
            .order_by(Payment.created_at)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def add_review_item(
        self,
        payment_id: uuid.UUID,
        intent_id: str,
        error_code: str,
        details: Dict[str, Any],
    ) -> PaymentReviewItem:
        """Record an integrity violation for an operator to resolve."""
        item = PaymentReviewItem(
            payment_id=payment_id,
            processor_intent_id=intent_id,
            error_code=error_code,
            status="open",
            details=details,
            created_at=utcnow(),
        )
        self.session.add(item)
        await self.session.flush()
        return item

    async def open_review_items(self, limit: int = 100) -> List[PaymentReviewItem]:
        stmt = (
            select(PaymentReviewItem)
            .where(PaymentReviewItem.status == "open")
            .order_by(PaymentReviewItem.created_at)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
