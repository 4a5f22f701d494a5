"""
Tests for idempotency key derivation.
"""
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from league_payments.core.idempotency import IdempotencyManager

RESOURCE = uuid.UUID("7f1c8a3e-4c1b-4a57-9f0e-2d6f1f5b9a10")
NOW = datetime(2024, 3, 1, 12, 0, 5, tzinfo=timezone.utc)


class TestIdempotencyKeys:
    """Keys are stable inside a window and change with any request field."""

    @pytest.mark.unit
    def test_same_request_same_window_gives_same_key(self) -> None:
        manager = IdempotencyManager(window_seconds=900)

        first = manager.key_for("user-1", RESOURCE, 500, "usd", now=NOW)
        retry = manager.key_for("user-1", RESOURCE, 500, "USD", now=NOW + timedelta(seconds=30))

        assert first == retry
        assert first.startswith(f"{RESOURCE}:")

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "principal, amount, currency",
        [("user-2", 500, "usd"), ("user-1", 501, "usd"), ("user-1", 500, "eur")],
    )
    def test_any_field_change_gives_new_key(self, principal: str, amount: int, currency: str) -> None:
        manager = IdempotencyManager(window_seconds=900)

        base = manager.key_for("user-1", RESOURCE, 500, "usd", now=NOW)

        assert manager.key_for(principal, RESOURCE, amount, currency, now=NOW) != base

    @pytest.mark.unit
    def test_key_changes_in_next_window(self) -> None:
        manager = IdempotencyManager(window_seconds=900)

        base = manager.key_for("user-1", RESOURCE, 500, "usd", now=NOW)
        later = manager.key_for("user-1", RESOURCE, 500, "usd", now=NOW + timedelta(seconds=900))

        assert base != later

    @pytest.mark.unit
    def test_naive_datetimes_are_treated_as_utc(self) -> None:
        naive = NOW.replace(tzinfo=None)

        assert IdempotencyManager.time_bucket(naive, 900) == IdempotencyManager.time_bucket(
            NOW, 900
        )

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "fields",
        [
            {"resource_type": "team"},
            {"description": "Spring league"},
            {"previous_attempt": uuid.UUID("0b4f9f64-1f83-4d55-a5e4-6b0a3a9d2c71")},
        ],
    )
    def test_processor_request_fields_change_key(self, fields) -> None:
        manager = IdempotencyManager(window_seconds=900)

        base = manager.key_for("user-1", RESOURCE, 500, "usd", now=NOW)

        assert manager.key_for("user-1", RESOURCE, 500, "usd", now=NOW, **fields) != base
        assert manager.key_for("user-1", RESOURCE, 500, "usd", now=NOW, **fields) == (
            manager.key_for("user-1", RESOURCE, 500, "usd", now=NOW, **fields)
        )
