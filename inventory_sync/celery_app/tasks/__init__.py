"""
Celery task exports — all tasks registered from submodules.

Exports all tasks for convenient imports.
Version: 1.0.0
"""
from inventory_sync.celery_app.tasks.sync_run import run_sync
from inventory_sync.celery_app.tasks.sync_dispatch import dispatch_scheduled, dispatch_retry, cleanup_stale_runs
from inventory_sync.celery_app.tasks.monitor import monitor_sweep

__all__ = [
    "run_sync",
    "dispatch_scheduled",
    "dispatch_retry",
    "cleanup_stale_runs",
    "monitor_sweep",
]
