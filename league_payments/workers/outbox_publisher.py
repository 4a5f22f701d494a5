"""
Outbox relay background worker.

Continuously polls the outbox table and publishes unpublished payment
outcome events to RabbitMQ.
"""
import asyncio
import signal
from typing import Any

import structlog

from league_payments.bus.rabbitmq import RabbitMQBus
from league_payments.core.outbox import EventPublisher, OutboxRelay
from league_payments.database.connection import close_db
from league_payments.monitoring.logging import setup_logging

logger = structlog.get_logger(__name__)


async def start_outbox_publisher() -> None:
    """
    Start the outbox relay worker.

    Runs continuously until stopped.
    """
    setup_logging()

    logger.info("outbox_publisher_worker_starting")

    bus = RabbitMQBus()
    relay = OutboxRelay(EventPublisher(bus=bus))

    def signal_handler(sig: int, frame: Any) -> None:
        logger.info("outbox_publisher_worker_shutdown_signal_received", signal=sig)
        relay.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        await bus.connect()
        await relay.start()
    except Exception as e:
        logger.error("outbox_publisher_worker_error", error=str(e))
        raise
    finally:
        await bus.close()
        await close_db()
        logger.info("outbox_publisher_worker_stopped")


def main() -> None:
    asyncio.run(start_outbox_publisher())


if __name__ == "__main__":
    main()
