"""Database package for league payments."""
from .connection import close_db, get_session_factory, init_db
from .models import (
    Base,
    OutboxEvent,
    Payment,
    PaymentReviewItem,
    ProcessedPaymentEvent,
)
from .repository import PaymentRepository

__all__ = [
    "Base",
    "Payment",
    "OutboxEvent",
    "ProcessedPaymentEvent",
    "PaymentReviewItem",
    "PaymentRepository",
    "close_db",
    "get_session_factory",
    "init_db",
]
