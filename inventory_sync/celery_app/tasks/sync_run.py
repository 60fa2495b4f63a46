"""
Sync run task — executes one sync run on the sync queue.

Tasks:
- run_sync: Runs the executor for a strategy ("auto" lets the scheduler pick)

Run exclusivity is enforced by the ledger claim, so a duplicate delivery of
this task finds the running slot taken and returns "skipped".
Version: 1.0.0
"""
import logging
from typing import List, Optional

import redis

from inventory_sync.celery_app.celery_config import celery_app
from inventory_sync.celery_app.tasks.base import BaseTask, get_sync_executor, get_sync_scheduler
from inventory_sync.core.exceptions import NonRetryableError, RetryableError, SyncAlreadyRunningError
from inventory_sync.schemas.inventory import SyncStrategy
from inventory_sync.utils.cancellation import RedisCancellationToken
from inventory_sync.utils.dispatch_lock import clear_cancellation

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    base=BaseTask,
    name="tasks.sync_run.run_sync",
    autoretry_for=(RetryableError,),
    dont_autoretry_for=(NonRetryableError,),
    max_retries=2,
)
def run_sync(
    self,
    strategy: str = "auto",
    dry_run: bool = False,
    skus: Optional[List[str]] = None,
    trigger: str = "manual",
):
    """
    Execute one sync run.

    Args:
        strategy: "auto", "full", "inventory", "critical" or "smart"
        dry_run: Report changes without writing
        skus: Restrict the run to these SKUs (forces their writes)
        trigger: Origin recorded in run metadata (manual, scheduled, retry)
    """
    if strategy == "auto":
        strategy = get_sync_scheduler().decide_strategy().value
        logger.info(f"Scheduler selected strategy: {strategy}")

    kind = SyncStrategy(strategy)
    token = RedisCancellationToken()

    try:
        run = get_sync_executor().run(
            kind,
            dry_run=dry_run,
            only_skus=skus,
            cancel_token=token,
            trigger=trigger,
        )
    except SyncAlreadyRunningError as e:
        logger.info(f"{e}; skipping")
        return {"status": "skipped", "reason": "already_running", "strategy": kind.value}
    finally:
        if token.run_id is not None:
            try:
                clear_cancellation(token.run_id)
            except redis.RedisError as e:
                logger.warning(f"Could not clear cancellation flag for run {token.run_id}: {e}")

    return {
        "status": run.status.value,
        "strategy": kind.value,
        "dry_run": dry_run,
        "run": run.model_dump(mode="json"),
    }
