"""
Base task class for sync workers — lifecycle logging, retry defaults, lazy DI.

Every sync task runs against worker-local services built by the container
on first use in the forked worker, never in the beat or API process.
Version: 1.0.0
"""
import logging
from celery import Task

logger = logging.getLogger(__name__)


def _describe(kwargs) -> str:
    """Short label for log lines: strategy and trigger when the task has them."""
    if not kwargs:
        return ""
    parts = [f"{key}={kwargs[key]}" for key in ("strategy", "trigger") if kwargs.get(key)]
    return f" ({', '.join(parts)})" if parts else ""


class BaseTask(Task):
    """Base task for run, dispatch and monitor workers."""

    abstract = True

    # autoretry_for is declared per task. Run failures are recorded in the
    # ledger by the executor and must not be retried blindly.
    retry_backoff = True
    retry_backoff_max = 300
    retry_jitter = True
    max_retries = 3

    track_started = True

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(f"Task {self.name}[{task_id}]{_describe(kwargs)} failed: {exc}")

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        logger.warning(
            f"Task {self.name}[{task_id}]{_describe(kwargs)} retry "
            f"{self.request.retries + 1}/{self.max_retries}: {exc}"
        )

    def on_success(self, retval, task_id, args, kwargs):
        status = retval.get("status") if isinstance(retval, dict) else None
        logger.info(f"Task {self.name}[{task_id}]{_describe(kwargs)} finished" + (f": {status}" if status else ""))


# ============================================
# Worker-local services
# ============================================

def get_sync_executor():
    from inventory_sync.container import get_sync_executor as _get
    return _get()


def get_dispatch_service():
    from inventory_sync.container import get_sync_dispatch_service as _get
    return _get()


def get_critical_monitor():
    from inventory_sync.container import get_critical_monitor as _get
    return _get()


def get_sync_scheduler():
    from inventory_sync.container import get_sync_scheduler as _get
    return _get()
