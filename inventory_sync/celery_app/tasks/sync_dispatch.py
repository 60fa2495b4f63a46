"""
Sync dispatch tasks — scheduled dispatch, retry, and stale-run cleanup.

Tasks:
- dispatch_scheduled: Every 5 minutes, queues the scheduler's strategy when due
- dispatch_retry: Hourly, queues a SKU-scoped run for failed items past backoff
- cleanup_stale_runs: Every 10 minutes, reclaims abandoned running runs

Dispatchers hold a Redis dispatch lock per window so overlapping beat
instances never queue the same work twice.
Version: 1.0.0
"""
import logging
from typing import List, Optional

from inventory_sync.celery_app.celery_config import celery_app, SYNC_ENABLED
from inventory_sync.celery_app.tasks.base import BaseTask, get_dispatch_service
from inventory_sync.celery_app.tasks.sync_run import run_sync
from inventory_sync.core.exceptions import NonRetryableError, RetryableError
from inventory_sync.utils.dispatch_lock import acquire_dispatch_lock, release_dispatch_lock

logger = logging.getLogger(__name__)

RETRY_LOCK_TTL = 50 * 60  # shorter than the hourly retry interval


def _queue_sync(strategy: str, skus: Optional[List[str]], trigger: str) -> str:
    """Queue a run_sync task and return its id."""
    result = run_sync.apply_async(
        kwargs={"strategy": strategy, "dry_run": False, "skus": skus, "trigger": trigger},
    )
    logger.info(f"Queued {strategy} sync ({trigger}) as task {result.id}")
    return result.id


@celery_app.task(
    bind=True,
    base=BaseTask,
    name="tasks.sync_dispatch.dispatch_scheduled",
    max_retries=0
)
def dispatch_scheduled(self):
    """Queue the scheduler's recommended strategy if it is due."""
    if not SYNC_ENABLED:
        logger.info("Auto-sync is disabled (SYNC_ENABLED=false), skipping dispatch")
        return {"status": "skipped", "reason": "sync_disabled"}

    task_id = self.request.id or "unknown"
    if not acquire_dispatch_lock("scheduled", task_id):
        return {"status": "skipped", "reason": "already_dispatched"}

    try:
        return get_dispatch_service().dispatch_scheduled(_queue_sync)
    except Exception:
        release_dispatch_lock("scheduled")
        raise


@celery_app.task(
    bind=True,
    base=BaseTask,
    name="tasks.sync_dispatch.dispatch_retry",
    max_retries=0
)
def dispatch_retry(self):
    """Queue a retry run for failed items that are past their backoff."""
    if not SYNC_ENABLED:
        logger.info("Auto-sync is disabled (SYNC_ENABLED=false), skipping retry dispatch")
        return {"status": "skipped", "reason": "sync_disabled"}

    task_id = self.request.id or "unknown"
    if not acquire_dispatch_lock("retry", task_id, ttl=RETRY_LOCK_TTL):
        return {"status": "skipped", "reason": "already_dispatched"}

    try:
        return get_dispatch_service().dispatch_retry(_queue_sync)
    except Exception:
        release_dispatch_lock("retry")
        raise


@celery_app.task(
    bind=True,
    base=BaseTask,
    name="tasks.sync_dispatch.cleanup_stale_runs",
    autoretry_for=(RetryableError,),
    dont_autoretry_for=(NonRetryableError,),
    max_retries=2,
)
def cleanup_stale_runs(self):
    """Reclaim runs stuck in 'running' past the staleness window."""
    return get_dispatch_service().cleanup_stale_runs()
