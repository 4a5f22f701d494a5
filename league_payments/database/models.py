"""SQLAlchemy database models for the payment lifecycle."""
import uuid
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from league_payments.states import PaymentStatus, assert_transition

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Payment(Base):
    """
    Payment records table.

    One row per accepted intent-creation request. Rows are never deleted:
    failed and canceled payments stay as an audit trail.
    """

    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    principal_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    resource_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    resource_type: Mapped[str] = mapped_column(String(20), nullable=False, default="league")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(
            PaymentStatus,
            name="payment_status",
            native_enum=False,
            length=20,
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
    )
    processor_intent_id: Mapped[str | None] = mapped_column(
        String(255), unique=True, nullable=True
    )
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    succeeded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("amount > 0", name="positive_amount"),
        CheckConstraint("length(currency) = 3", name="valid_currency"),
        CheckConstraint(
            "(CASE WHEN succeeded_at IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN failed_at IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN canceled_at IS NULL THEN 0 ELSE 1 END) <= 1",
            name="single_terminal_timestamp",
        ),
        Index("idx_payments_resource_status", "resource_id", "status"),
        Index("idx_payments_resource_created", "resource_id", "created_at"),
        # At most one in-flight payment per resource, enforced at write time.
        Index(
            "uq_payments_resource_in_flight",
            "resource_id",
            unique=True,
            postgresql_where=text("status = 'created'"),
            sqlite_where=text("status = 'created'"),
        ),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def mark_terminal(self, status: PaymentStatus, at: datetime) -> None:
        """Move to a terminal status and stamp the matching timestamp."""
        assert_transition(self.status, status)
        self.status = status
        if status is PaymentStatus.SUCCEEDED:
            self.succeeded_at = at
        elif status is PaymentStatus.FAILED:
            self.failed_at = at
        else:
            self.canceled_at = at

    @property
    def terminal_at(self) -> datetime | None:
        return self.succeeded_at or self.failed_at or self.canceled_at

    def __repr__(self) -> str:
        """String representation of Payment."""
        return (
            f"<Payment(id={self.id}, resource_id={self.resource_id}, "
            f"amount={self.amount}, status={self.status.value})>"
        )


class OutboxEvent(Base):
    """
    Transactional outbox events table.

    Written in the same transaction as the terminal transition it describes
    and published only after that transaction commits.
    """

    __tablename__ = "outbox_events"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    aggregate_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    aggregate_type: Mapped[str] = mapped_column(String(100), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False)
    published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("aggregate_id", "event_type", name="uq_outbox_aggregate_event"),
        Index(
            "idx_outbox_unpublished",
            "published",
            "created_at",
            postgresql_where=text("NOT published"),
        ),
    )

    def __repr__(self) -> str:
        """String representation of OutboxEvent."""
        return (
            f"<OutboxEvent(id={self.id}, type={self.event_type}, "
            f"published={self.published})>"
        )


class ProcessedPaymentEvent(Base):
    """
    Consumer-side ledger of applied payment outcome events.

    The (payment_id, status) pair is unique, so redelivered events are
    detected and skipped.
    """

    __tablename__ = "processed_payment_events"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    payment_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("payment_id", "status", name="uq_processed_payment_status"),
    )

    def __repr__(self) -> str:
        """String representation of ProcessedPaymentEvent."""
        return f"<ProcessedPaymentEvent(payment_id={self.payment_id}, status={self.status})>"


class PaymentReviewItem(Base):
    """
    Integrity violations held for operator review.

    Written when a processor report contradicts the local payment (amount,
    currency or status). The payment itself is left untouched; an operator
    resolves the item.
    """

    __tablename__ = "payment_review_items"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    payment_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    processor_intent_id: Mapped[str] = mapped_column(String(255), nullable=False)
    error_code: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")
    details: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("status IN ('open', 'resolved')", name="valid_review_status"),
        Index(
            "idx_review_items_open",
            "created_at",
            postgresql_where=text("status = 'open'"),
        ),
    )

    def __repr__(self) -> str:
        """String representation of PaymentReviewItem."""
        return (
            f"<PaymentReviewItem(payment_id={self.payment_id}, "
            f"error_code={self.error_code}, status={self.status})>"
        )
