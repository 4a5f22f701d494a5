"""
Tests for the Stripe processor client.

The Stripe SDK is patched; no network calls are made.
"""
import time
from unittest.mock import MagicMock

import pytest
import stripe

from league_payments.integrations.stripe_client import (
    CircuitBreaker,
    ProcessorRejected,
    ProcessorUnavailable,
    StripeClient,
)


def fake_intent(**overrides) -> MagicMock:
    intent = MagicMock()
    intent.id = overrides.get("id", "pi_test_123")
    intent.client_secret = overrides.get("client_secret", "pi_test_123_secret_abc")
    intent.status = overrides.get("status", "requires_payment_method")
    intent.amount = overrides.get("amount", 500)
    intent.currency = overrides.get("currency", "usd")
    return intent


class TestStripeClient:
    """Create, fetch and cancel with error classification."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_intent_passes_idempotency_key(self, mocker) -> None:
        create = mocker.patch("stripe.PaymentIntent.create", return_value=fake_intent())
        client = StripeClient()

        intent = await client.create_intent(
            amount=500,
            currency="USD",
            idempotency_key="key-1",
            metadata={"userId": "user-1"},
            description="League fee",
        )

        assert intent.intent_id == "pi_test_123"
        assert intent.client_secret == "pi_test_123_secret_abc"
        create.assert_called_once_with(
            amount=500,
            currency="usd",
            metadata={"userId": "user-1"},
            automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
            idempotency_key="key-1",
            description="League fee",
        )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_transient_error_is_retried_with_same_key(self, mocker) -> None:
        create = mocker.patch(
            "stripe.PaymentIntent.create",
            side_effect=[stripe.APIConnectionError("connection reset"), fake_intent()],
        )
        client = StripeClient()

        intent = await client.create_intent(amount=500, currency="usd", idempotency_key="key-2")

        assert intent.intent_id == "pi_test_123"
        assert create.call_count == 2
        keys = {call.kwargs["idempotency_key"] for call in create.call_args_list}
        assert keys == {"key-2"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_persistent_transient_error_raises_unavailable(self, mocker) -> None:
        create = mocker.patch(
            "stripe.PaymentIntent.create", side_effect=stripe.APIError("server error")
        )
        client = StripeClient(circuit_breaker=CircuitBreaker(failure_threshold=10))

        with pytest.raises(ProcessorUnavailable):
            await client.create_intent(amount=500, currency="usd", idempotency_key="key-3")

        assert create.call_count == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_card_error_is_rejected_without_retry(self, mocker) -> None:
        create = mocker.patch(
            "stripe.PaymentIntent.create",
            side_effect=stripe.CardError(
                "Your card was declined.", param=None, code="card_declined", http_status=402
            ),
        )
        client = StripeClient()

        with pytest.raises(ProcessorRejected):
            await client.create_intent(amount=500, currency="usd", idempotency_key="key-4")

        assert create.call_count == 1
        assert client.circuit_breaker.failure_count == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_invalid_request_is_rejected(self, mocker) -> None:
        mocker.patch(
            "stripe.PaymentIntent.retrieve",
            side_effect=stripe.InvalidRequestError(
                "No such payment_intent", param="intent", http_status=404
            ),
        )
        client = StripeClient()

        with pytest.raises(ProcessorRejected):
            await client.fetch_intent("pi_missing")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_slow_call_times_out(self, mocker) -> None:
        def slow_retrieve(intent_id: str) -> MagicMock:
            time.sleep(0.5)
            return fake_intent(id=intent_id)

        mocker.patch("stripe.PaymentIntent.retrieve", side_effect=slow_retrieve)
        client = StripeClient(timeout_seconds=0.05)

        with pytest.raises(ProcessorUnavailable):
            await client.fetch_intent("pi_slow")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_fetch_and_cancel(self, mocker) -> None:
        mocker.patch(
            "stripe.PaymentIntent.retrieve", return_value=fake_intent(status="succeeded")
        )
        cancel = mocker.patch(
            "stripe.PaymentIntent.cancel", return_value=fake_intent(status="canceled")
        )
        client = StripeClient()

        fetched = await client.fetch_intent("pi_test_123")
        canceled = await client.cancel_intent("pi_test_123")

        assert fetched.status == "succeeded"
        assert fetched.amount == 500 and fetched.currency == "usd"
        assert canceled.status == "canceled"
        cancel.assert_called_once_with("pi_test_123")


class TestCircuitBreaker:
    """Fail fast after repeated transient failures."""

    @pytest.mark.unit
    def test_opens_after_threshold(self) -> None:
        breaker = CircuitBreaker(failure_threshold=2, timeout=60)

        breaker.on_failure()
        breaker.before_call()
        breaker.on_failure()

        assert breaker.state == "open"
        with pytest.raises(ProcessorUnavailable):
            breaker.before_call()

    @pytest.mark.unit
    def test_half_open_after_timeout_then_closes(self) -> None:
        breaker = CircuitBreaker(failure_threshold=1, timeout=0, success_threshold=2)
        breaker.on_failure()
        breaker.last_failure_time = time.time() - 1

        breaker.before_call()
        assert breaker.state == "half_open"

        breaker.on_success()
        breaker.on_success()
        assert breaker.state == "closed"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_open_circuit_short_circuits_calls(self, mocker) -> None:
        create = mocker.patch("stripe.PaymentIntent.create", return_value=fake_intent())
        breaker = CircuitBreaker(failure_threshold=1, timeout=60)
        breaker.on_failure()
        client = StripeClient(circuit_breaker=breaker)

        with pytest.raises(ProcessorUnavailable):
            await client.create_intent(amount=500, currency="usd", idempotency_key="key-5")

        create.assert_not_called()
