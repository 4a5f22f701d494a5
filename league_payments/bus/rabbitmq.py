"""
RabbitMQ transport for payment outcome events.

Events go to a durable topic exchange with routing key ``payment.<status>``,
persistent delivery and the event id as message id.
"""
from typing import Optional

import aio_pika
import structlog

from league_payments.bus.events import PaymentOutcomeEvent
from league_payments.config import get_settings

logger = structlog.get_logger(__name__)


class RabbitMQBus:
    """Publishes payment outcome events to the payment events exchange."""

    def __init__(self, url: Optional[str] = None, exchange_name: Optional[str] = None):
        settings = get_settings()
        self.url = url or settings.rabbitmq_url
        self.exchange_name = exchange_name or settings.payment_events_exchange
        self._connection: Optional[aio_pika.abc.AbstractRobustConnection] = None
        self._channel: Optional[aio_pika.abc.AbstractChannel] = None
        self._exchange: Optional[aio_pika.abc.AbstractExchange] = None

    async def connect(self) -> None:
        """Open a robust connection and declare the exchange."""
        if self._exchange is not None:
            return
        self._connection = await aio_pika.connect_robust(self.url)
        self._channel = await self._connection.channel(publisher_confirms=True)
        self._exchange = await self._channel.declare_exchange(
            self.exchange_name, aio_pika.ExchangeType.TOPIC, durable=True
        )
        logger.info("rabbitmq_connected", exchange=self.exchange_name)

    async def declare_queue(
        self, queue_name: str, routing_key: str = "payment.*"
    ) -> aio_pika.abc.AbstractQueue:
        """Declare a durable queue bound to the exchange."""
        await self.connect()
        assert self._channel is not None and self._exchange is not None
        await self._channel.set_qos(prefetch_count=10)
        queue = await self._channel.declare_queue(queue_name, durable=True)
        await queue.bind(self._exchange, routing_key)
        logger.info("rabbitmq_queue_bound", queue=queue_name, routing_key=routing_key)
        return queue

    async def publish(self, event: PaymentOutcomeEvent) -> None:
        """
        Publish one event.

        Raises:
            aio_pika.exceptions.AMQPError: If the broker did not confirm the message
        """
        await self.connect()
        assert self._exchange is not None
        message = aio_pika.Message(
            event.to_message_body(),
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            message_id=event.event_id,
            type=event.event_type,
            timestamp=event.timestamp,
        )
        await self._exchange.publish(message, routing_key=event.routing_key)
        logger.info(
            "payment_event_published",
            event_id=event.event_id,
            routing_key=event.routing_key,
        )

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
        self._connection = None
        self._channel = None
        self._exchange = None
        logger.info("rabbitmq_connection_closed")
