"""
Monitor tasks — periodic reconciliation of critical-item alert state.

Tasks:
- monitor_sweep: Re-evaluates the active catalog against stored monitor state
Version: 1.0.0
"""
import logging

from inventory_sync.celery_app.celery_config import celery_app
from inventory_sync.celery_app.tasks.base import BaseTask, get_critical_monitor
from inventory_sync.core.exceptions import NonRetryableError, RetryableError
from inventory_sync.utils.dispatch_lock import acquire_dispatch_lock, release_dispatch_lock

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    base=BaseTask,
    name="tasks.monitor.monitor_sweep",
    autoretry_for=(RetryableError,),
    dont_autoretry_for=(NonRetryableError,),
    max_retries=2,
)
def monitor_sweep(self):
    """Catch alert transitions missed by per-write observation."""
    task_id = self.request.id or "unknown"
    if not acquire_dispatch_lock("monitor_sweep", task_id):
        return {"status": "skipped", "reason": "sweep_in_progress"}

    try:
        result = get_critical_monitor().sweep()
    finally:
        release_dispatch_lock("monitor_sweep")

    return {"status": "completed", **result}
