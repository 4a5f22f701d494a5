"""Core payment lifecycle logic."""
from .idempotency import IdempotencyManager
from .lifecycle import PaymentIntentResult, PaymentLifecycleManager, ReconcileOutcome
from .outbox import EventPublisher, OutboxRelay
from .reconciliation import StaleIntentPoller

__all__ = [
    "IdempotencyManager",
    "PaymentLifecycleManager",
    "PaymentIntentResult",
    "ReconcileOutcome",
    "EventPublisher",
    "OutboxRelay",
    "StaleIntentPoller",
]
