"""
Prometheus metrics for payment lifecycle monitoring.

Tracks:
- Payment intent requests by outcome
- Processor API calls, errors and circuit breaker state
- Reconciliation outcomes and integrity violations
- Webhook events
- Outbox depth and event publishing
- Consumed payment outcome events
"""
from prometheus_client import Counter, Gauge, Histogram

# Payment intent metrics
payment_requests_total = Counter(
    "payment_requests_total",
    "Total number of payment intent requests",
    ["outcome", "currency"],
)

payment_request_duration_seconds = Histogram(
    "payment_request_duration_seconds",
    "Payment intent request duration in seconds",
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

payment_amount_minor_units = Histogram(
    "payment_amount_minor_units",
    "Requested payment amounts in minor currency units",
    buckets=(50, 100, 500, 1000, 5000, 10000, 50000, 100000, 500000, 1000000),
)

# Processor API metrics
processor_requests_total = Counter(
    "processor_requests_total",
    "Total payment processor API requests",
    ["operation", "status"],  # status: success, unavailable, rejected
)

processor_request_duration_seconds = Histogram(
    "processor_request_duration_seconds",
    "Payment processor API call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

processor_circuit_breaker_state = Gauge(
    "processor_circuit_breaker_state",
    "Processor circuit breaker state (0=closed, 1=open, 2=half_open)",
)

# Reconciliation metrics
reconciliations_total = Counter(
    "payment_reconciliations_total",
    "Total reconcile calls by outcome",
    ["outcome"],  # transitioned, already_terminal, unknown_intent, rejected
)

payment_integrity_violations_total = Counter(
    "payment_integrity_violations_total",
    "Reconciliation integrity violations awaiting operator review",
    ["error_code"],
)

# Webhook metrics
webhook_events_processed_total = Counter(
    "webhook_events_processed_total",
    "Total webhook events processed",
    ["event_type", "status"],
)

webhook_processing_duration_seconds = Histogram(
    "webhook_processing_duration_seconds",
    "Webhook processing duration in seconds",
    ["event_type"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# Outbox metrics
outbox_queue_depth = Gauge(
    "outbox_queue_depth",
    "Number of unpublished events in outbox",
)

outbox_events_published_total = Counter(
    "outbox_events_published_total",
    "Total outbox events published",
    ["event_type"],
)

outbox_publish_failures_total = Counter(
    "outbox_publish_failures_total",
    "Total failed publish attempts of outbox events",
    ["event_type"],
)

# Consumer metrics
payment_events_consumed_total = Counter(
    "payment_events_consumed_total",
    "Total payment outcome events consumed",
    ["status", "outcome"],  # outcome: applied, duplicate, no_handler, invalid
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_payment_request(
        outcome: str, currency: str, amount: int, duration_seconds: float
    ) -> None:
        """Record a payment intent request."""
        payment_requests_total.labels(outcome=outcome, currency=currency).inc()
        payment_amount_minor_units.observe(amount)
        payment_request_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_processor_call(
        operation: str, status: str, duration_seconds: float
    ) -> None:
        """Record a processor API call."""
        processor_requests_total.labels(operation=operation, status=status).inc()
        processor_request_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def set_circuit_breaker_state(state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        processor_circuit_breaker_state.set(state_map.get(state, 0))

    @staticmethod
    def record_reconciliation(outcome: str) -> None:
        reconciliations_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_integrity_violation(error_code: str) -> None:
        payment_integrity_violations_total.labels(error_code=error_code).inc()

    @staticmethod
    def record_webhook_event(event_type: str, status: str, duration_seconds: float) -> None:
        """Record webhook event processing."""
        webhook_events_processed_total.labels(event_type=event_type, status=status).inc()
        webhook_processing_duration_seconds.labels(event_type=event_type).observe(
            duration_seconds
        )

    @staticmethod
    def set_outbox_queue_depth(depth: int) -> None:
        """Set outbox queue depth."""
        outbox_queue_depth.set(depth)

    @staticmethod
    def record_outbox_event_published(event_type: str) -> None:
        outbox_events_published_total.labels(event_type=event_type).inc()

    @staticmethod
    def record_outbox_publish_failure(event_type: str) -> None:
        outbox_publish_failures_total.labels(event_type=event_type).inc()

    @staticmethod
    def record_event_consumed(status: str, outcome: str) -> None:
        payment_events_consumed_total.labels(status=status, outcome=outcome).inc()


# Export singleton instance
metrics = MetricsCollector()
