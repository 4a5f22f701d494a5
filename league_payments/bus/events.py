"""Payment outcome event schema shared by publisher and consumers."""
import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from league_payments.database.models import Payment

EVENT_TYPE_PREFIX = "payment."


def event_type_for(status: str) -> str:
    return f"{EVENT_TYPE_PREFIX}{status}"


def event_id_for(payment_id: uuid.UUID | str, status: str) -> str:
    """Deterministic event id: one id per (payment, terminal status)."""
    return f"{payment_id}:{status}"


class PaymentOutcomeEvent(BaseModel):
    """
    Emitted once per terminal transition of a payment.

    Consumers de-duplicate on ``(payment_id, status)``; ``event_id`` is
    derived from that pair so redeliveries carry the same id.
    """

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(..., min_length=1)
    event_type: str = Field(..., min_length=1)
    payment_id: uuid.UUID
    principal: str
    resource_id: uuid.UUID
    resource_type: str = "league"
    amount: int
    currency: str = Field(..., min_length=3, max_length=3)
    status: str
    timestamp: datetime

    @classmethod
    def from_payment(cls, payment: Payment) -> "PaymentOutcomeEvent":
        """Build the event for a payment that has just become terminal."""
        status = payment.status.value
        return cls(
            event_id=event_id_for(payment.id, status),
            event_type=event_type_for(status),
            payment_id=payment.id,
            principal=payment.principal_id,
            resource_id=payment.resource_id,
            resource_type=payment.resource_type,
            amount=payment.amount,
            currency=payment.currency,
            status=status,
            timestamp=payment.terminal_at or payment.updated_at,
        )

    @property
    def routing_key(self) -> str:
        return self.event_type

    def to_message_body(self) -> bytes:
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_message_body(cls, body: bytes) -> "PaymentOutcomeEvent":
        return cls.model_validate_json(body)
