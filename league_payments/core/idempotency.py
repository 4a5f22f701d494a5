"""
Idempotency keys for processor intent creation.

A key is derived from the request itself, so a client that retries the
same payment inside one window reaches the processor with the same key and
gets the same intent back instead of a second charge.
"""
import hashlib
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from league_payments.config import get_settings


class IdempotencyManager:
    """Derives deterministic idempotency keys for processor calls."""

    def __init__(self, window_seconds: Optional[int] = None):
        """
        Initialize idempotency manager.

        Args:
            window_seconds: Width of the time bucket a key stays valid for
        """
        self.window_seconds = window_seconds or get_settings().idempotency_window_seconds

    @staticmethod
    def time_bucket(now: datetime, window_seconds: int) -> int:
        """Index of the window that ``now`` falls in."""
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return int(now.timestamp()) // window_seconds

    @staticmethod
    def generate_key(
        principal: str,
        resource_id: str | uuid.UUID,
        amount: int,
        currency: str,
        window_seconds: int,
        now: Optional[datetime] = None,
        *,
        resource_type: str = "league",
        description: Optional[str] = None,
        previous_attempt: str | uuid.UUID | None = None,
    ) -> str:
        """
        Generate idempotency key for a payment request.

        Format: {resource_id}:{request_hash}

        Every field sent to the processor is hashed, because the processor
        refuses a reused key whose parameters differ.

        Args:
            principal: Requesting user
            resource_id: League or team being paid for
            amount: Amount in minor units
            currency: Lowercase currency code
            window_seconds: Width of the time bucket
            now: Reference time (defaults to current UTC time)
            resource_type: Kind of resource, part of the intent metadata
            description: Intent description, if any
            previous_attempt: Id of the resource's last settled payment, so a
                new attempt after a failure gets a fresh intent

        Returns:
            str: Idempotency key
        """
        now = now or datetime.now(timezone.utc)
        bucket = IdempotencyManager.time_bucket(now, window_seconds)
        request_data = json.dumps(
            [
                principal,
                str(resource_id),
                resource_type,
                amount,
                currency.lower(),
                description,
                str(previous_attempt) if previous_attempt is not None else None,
                bucket,
            ]
        )
        request_hash = hashlib.sha256(request_data.encode()).hexdigest()[:32]
        return f"{resource_id}:{request_hash}"

    def key_for(
        self,
        principal: str,
        resource_id: str | uuid.UUID,
        amount: int,
        currency: str,
        now: Optional[datetime] = None,
        **request_fields: Any,
    ) -> str:
        return self.generate_key(
            principal, resource_id, amount, currency, self.window_seconds, now, **request_fields
        )
