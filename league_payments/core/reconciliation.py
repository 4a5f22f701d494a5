"""
Poll-based reconciliation for payments whose webhook never arrived.

Sweeps CREATED payments older than a threshold and asks the processor for
the intent's current status. Settled intents go through the regular
``reconcile`` path; intents still in flight are left for the next sweep.
"""
from datetime import timedelta
from typing import Any, Dict, Optional

import structlog

from league_payments.config import get_settings
from league_payments.core.lifecycle import PaymentLifecycleManager
from league_payments.database.repository import PaymentRepository, utcnow
from league_payments.exceptions import PaymentError
from league_payments.integrations.stripe_client import ProcessorError

logger = structlog.get_logger(__name__)


class StaleIntentPoller:
    """
    Reconciles stale CREATED payments against the processor.

    Failures for one payment are logged and do not stop the sweep.
    """

    def __init__(
        self,
        manager: PaymentLifecycleManager,
        stale_after: Optional[timedelta] = None,
        batch_size: int = 100,
    ):
        """
        Initialize stale intent poller.

        Args:
            manager: Lifecycle manager that owns the reconcile path
            stale_after: Age after which a CREATED payment is polled
            batch_size: Maximum payments per sweep
        """
        settings = get_settings()
        self.manager = manager
        self.stale_after = stale_after or timedelta(minutes=settings.stale_intent_after_minutes)
        self.batch_size = batch_size
        logger.info(
            "stale_intent_poller_initialized",
            stale_after_seconds=self.stale_after.total_seconds(),
        )

    async def sweep_stale_intents(self) -> Dict[str, Any]:
        """
        Run one sweep.

        Returns:
            Dict[str, Any]: Counts of checked, reconciled, pending and failed payments
        """
        cutoff = utcnow() - self.stale_after
        async with self.manager.session_factory() as session:
            stale = await PaymentRepository(session).find_stale_created(
                cutoff, limit=self.batch_size
            )

        summary = {"checked": len(stale), "reconciled": 0, "pending": 0, "failed": 0}
        for payment in stale:
            intent_id = payment.processor_intent_id
            try:
                outcome = await self.manager.reconcile_from_processor(intent_id)
            except (PaymentError, ProcessorError) as e:
                summary["failed"] += 1
                logger.error(
                    "stale_intent_reconcile_failed",
                    payment_id=str(payment.id),
                    intent_id=intent_id,
                    error=str(e),
                )
                continue

            if outcome is None:
                summary["pending"] += 1
            else:
                summary["reconciled"] += 1

        logger.info("stale_intent_sweep_completed", **summary)
        return summary
