"""
Payment status state machine.

    CREATED -> SUCCEEDED | FAILED | CANCELED

CREATED is the only non-terminal status. Terminal statuses have no
outgoing transitions.
"""
from enum import Enum
from typing import Dict, FrozenSet, Optional


class PaymentStatus(str, Enum):
    """Local status of a payment record."""

    CREATED = "created"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: FrozenSet[PaymentStatus] = frozenset(
    {PaymentStatus.SUCCEEDED, PaymentStatus.FAILED, PaymentStatus.CANCELED}
)

ALLOWED_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.CREATED: TERMINAL_STATUSES,
    PaymentStatus.SUCCEEDED: frozenset(),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCELED: frozenset(),
}

# Statuses reported by the processor (webhook or poll) that settle a payment.
PROCESSOR_STATUS_MAP: Dict[str, PaymentStatus] = {
    "succeeded": PaymentStatus.SUCCEEDED,
    "failed": PaymentStatus.FAILED,
    "payment_failed": PaymentStatus.FAILED,
    "canceled": PaymentStatus.CANCELED,
    "cancelled": PaymentStatus.CANCELED,
}

# Stripe PaymentIntent statuses that are still in flight on the processor side.
PROCESSOR_PENDING_STATUSES: FrozenSet[str] = frozenset(
    {
        "requires_payment_method",
        "requires_confirmation",
        "requires_action",
        "processing",
        "requires_capture",
    }
)


class InvalidTransition(Exception):
    """Raised when a status change is not allowed by the state machine."""

    pass


def map_processor_status(reported: Optional[str]) -> Optional[PaymentStatus]:
    """Map a processor-reported status to a terminal local status, or None."""
    if not reported:
        return None
    return PROCESSOR_STATUS_MAP.get(reported.strip().lower())


def assert_transition(old: PaymentStatus, new: PaymentStatus) -> None:
    if new not in ALLOWED_TRANSITIONS.get(old, frozenset()):
        raise InvalidTransition(f"Illegal payment transition: {old.value} -> {new.value}")
