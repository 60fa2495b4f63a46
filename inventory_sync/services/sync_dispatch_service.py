"""
Sync dispatch service — scheduled, retry and cleanup orchestration.

Called by the beat-driven Celery tasks. Decides what to queue; the actual
queuing is a callback so the service stays free of Celery imports.
All methods are synchronous (the stores are synchronous).
Version: 1.0.0
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from inventory_sync.core.config import settings
from inventory_sync.db.failure_store import FailureStore
from inventory_sync.db.sync_ledger_store import SyncLedgerStore
from inventory_sync.schemas.inventory import SyncStrategy
from inventory_sync.services.sync_scheduler import SyncScheduler
from inventory_sync.utils.schedule_helpers import utc_now

logger = logging.getLogger(__name__)

# Retry runs scan upstream once for every eligible SKU
RETRY_SKU_LIMIT = 500

# callable(strategy, skus, trigger) -> task id
DispatchCallback = Callable[[str, Optional[List[str]], str], str]


class SyncDispatchService:
    def __init__(
        self,
        scheduler: SyncScheduler,
        ledger_store: SyncLedgerStore,
        failure_store: FailureStore,
        stale_run_minutes: int = settings.sync_stale_run_minutes,
    ) -> None:
        self._scheduler = scheduler
        self._ledger = ledger_store
        self._failures = failure_store
        self._stale_run_minutes = stale_run_minutes

    # ------------------------------------------------------------------
    # Scheduled dispatch
    # ------------------------------------------------------------------

    def dispatch_scheduled(self, dispatch_callback: DispatchCallback, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Queue the scheduler's strategy if it is due.

        Args:
            dispatch_callback: callable(strategy, skus, trigger) that queues a sync run
            now: Reference time
        """
        now = now or utc_now()
        strategy, analysis = self._scheduler.should_run_now(now)

        if strategy is None:
            return {
                "status": "skipped",
                "reason": "not_due",
                "recommended": analysis.strategy,
                "next_run_at": analysis.next_run_at.isoformat(),
            }

        running = {run.kind for run in self._ledger.get_running_runs()}
        if strategy in running:
            logger.info(f"A {strategy.value} sync is already running, not dispatching another")
            return {"status": "skipped", "reason": "already_running", "strategy": strategy.value}

        logger.info("=" * 60)
        logger.info(f"Scheduled dispatch: {strategy.value} (urgency={analysis.urgency})")
        for reason in analysis.reasoning:
            logger.info(f"   {reason}")
        logger.info("=" * 60)

        task_id = dispatch_callback(strategy.value, None, "scheduled")
        return {
            "status": "dispatched",
            "strategy": strategy.value,
            "urgency": analysis.urgency,
            "task_id": task_id,
        }

    # ------------------------------------------------------------------
    # Retry dispatch
    # ------------------------------------------------------------------

    def dispatch_retry(self, dispatch_callback: DispatchCallback, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Queue one SKU-scoped smart run for failed items past their backoff."""
        logger.info("=== Retry Sync Dispatch ===")

        needs_review = self._failures.items_needing_review()
        if needs_review:
            logger.warning(
                f"{len(needs_review)} items reached the retry cap and need manual review: "
                f"{', '.join(item.sku for item in needs_review[:10])}"
            )

        skus = self._failures.items_eligible_for_retry(now=now, limit=RETRY_SKU_LIMIT)
        if not skus:
            logger.info("No failed items eligible for retry")
            return {"status": "completed", "retries": 0, "needs_review": len(needs_review)}

        logger.info(f"Found {len(skus)} failed items eligible for retry")
        task_id = dispatch_callback(SyncStrategy.SMART.value, skus, "retry")

        return {
            "status": "dispatched",
            "retries": len(skus),
            "needs_review": len(needs_review),
            "task_id": task_id,
        }

    # ------------------------------------------------------------------
    # Stale-run cleanup
    # ------------------------------------------------------------------

    def cleanup_stale_runs(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Reclaim abandoned running runs and log failure counts."""
        reclaimed = self._ledger.reclaim_stale_runs(self._stale_run_minutes, now=now)
        if reclaimed:
            logger.warning(f"Reclaimed {len(reclaimed)} stale sync runs")

        summary = self._failures.get_failure_summary()
        if summary.get("needs_review", 0) > 0:
            logger.warning(f"Items needing manual review: {summary['needs_review']}")

        return {
            "status": "completed",
            "reclaimed": len(reclaimed),
            "run_ids": [run.id for run in reclaimed],
            "failures": summary,
        }
