"""Payment outcome events and their RabbitMQ transport."""
from .consumer import PaymentOutcomeConsumer
from .events import PaymentOutcomeEvent
from .rabbitmq import RabbitMQBus

__all__ = ["PaymentOutcomeConsumer", "PaymentOutcomeEvent", "RabbitMQBus"]
