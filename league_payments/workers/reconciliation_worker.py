"""
Stale intent reconciliation worker.

Periodically polls the processor for CREATED payments whose webhook never
arrived and settles them through the regular reconcile path.
"""
import asyncio
import signal
from typing import Any, Optional

import structlog

from league_payments.config import get_settings
from league_payments.core.lifecycle import PaymentLifecycleManager
from league_payments.core.reconciliation import StaleIntentPoller
from league_payments.database.connection import close_db
from league_payments.monitoring.logging import setup_logging

logger = structlog.get_logger(__name__)


async def start_reconciliation_worker(interval_seconds: Optional[float] = None) -> None:
    """
    Start the reconciliation worker.

    Args:
        interval_seconds: Pause between sweeps (defaults to settings)
    """
    setup_logging()
    settings = get_settings()
    interval = interval_seconds or settings.stale_intent_poll_interval_seconds

    logger.info("reconciliation_worker_starting", interval_seconds=interval)

    poller = StaleIntentPoller(PaymentLifecycleManager())
    running = True

    def signal_handler(sig: int, frame: Any) -> None:
        nonlocal running
        logger.info("reconciliation_worker_shutdown_signal_received", signal=sig)
        running = False

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        while running:
            try:
                await poller.sweep_stale_intents()
            except Exception as e:
                logger.error("reconciliation_execution_error", error=str(e))
                # Continue running even if one sweep fails

            # Wait for the next sweep (with periodic checks for shutdown signal)
            remaining = interval
            while remaining > 0 and running:
                sleep_time = min(remaining, 5)
                await asyncio.sleep(sleep_time)
                remaining -= sleep_time
    finally:
        await close_db()
        logger.info("reconciliation_worker_stopped")


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(description="Stale intent reconciliation worker")
    parser.add_argument(
        "--interval", type=float, default=None, help="Seconds between sweeps"
    )
    args = parser.parse_args()

    asyncio.run(start_reconciliation_worker(interval_seconds=args.interval))


if __name__ == "__main__":
    main()
