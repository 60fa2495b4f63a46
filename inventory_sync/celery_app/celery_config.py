"""
Celery configuration — broker, task routes, beat schedule.

Configures the Redis broker, task queues, retry policies and the beat
schedule that drives the sync engine.

=============================================================================
RUNNING WORKERS
=============================================================================

    Sync runs (one run per process at a time):
        celery -A inventory_sync.celery_app worker -Q sync --concurrency=2 -l info -n sync@%h

    Dispatchers, cleanup and monitor sweep:
        celery -A inventory_sync.celery_app worker -Q default -l info -n default@%h

    Beat (scheduler):
        celery -A inventory_sync.celery_app beat -l info

On Windows use --pool=solo.

=============================================================================
ENVIRONMENT VARIABLES
=============================================================================
    SYNC_ENABLED: "true" or "false" — master on/off for scheduled sync (default: true)
    REDIS_URL / CELERY_BROKER_URL / CELERY_RESULT_BACKEND: Redis connection URLs
Version: 1.0.0
"""
import logging
import platform

from celery import Celery
from celery.schedules import crontab
from kombu import Queue

from inventory_sync.core.config import settings

logger = logging.getLogger(__name__)

IS_WINDOWS = platform.system() == "Windows"

SYNC_ENABLED = settings.sync_enabled

# Beat cadence (minutes)
DISPATCH_EVERY_MINUTES = 5
CLEANUP_EVERY_MINUTES = 10
MONITOR_SWEEP_EVERY_MINUTES = 5
RETRY_DISPATCH_MINUTE = 15


def _build_beat_schedule() -> dict:
    """Build the Celery Beat schedule; empty when sync is disabled."""
    if not SYNC_ENABLED:
        return {}

    return {
        "dispatch-scheduled-sync": {
            "task": "tasks.sync_dispatch.dispatch_scheduled",
            "schedule": crontab(minute=f"*/{DISPATCH_EVERY_MINUTES}"),
            "options": {"queue": "default"},
        },
        "dispatch-retry-sync": {
            "task": "tasks.sync_dispatch.dispatch_retry",
            "schedule": crontab(minute=RETRY_DISPATCH_MINUTE),
            "options": {"queue": "default"},
        },
        "cleanup-stale-runs": {
            "task": "tasks.sync_dispatch.cleanup_stale_runs",
            "schedule": crontab(minute=f"*/{CLEANUP_EVERY_MINUTES}"),
            "options": {"queue": "default"},
        },
        "monitor-sweep": {
            "task": "tasks.monitor.monitor_sweep",
            "schedule": crontab(minute=f"*/{MONITOR_SWEEP_EVERY_MINUTES}"),
            "options": {"queue": "default"},
        },
    }


def _log_schedule_config() -> None:
    border = "=" * 60
    logger.info(border)
    if not SYNC_ENABLED:
        logger.info("  SYNC SCHEDULER: DISABLED (SYNC_ENABLED=false)")
        logger.info("  No sync tasks will be scheduled by Celery Beat.")
        logger.info("  Manual triggers through the API still work.")
    else:
        logger.info("  SYNC SCHEDULER: ENABLED")
        logger.info(f"  Scheduled dispatch: every {DISPATCH_EVERY_MINUTES} minutes")
        logger.info(f"  Retry dispatch: hourly at minute :{RETRY_DISPATCH_MINUTE}")
        logger.info(f"  Stale-run cleanup: every {CLEANUP_EVERY_MINUTES} minutes")
        logger.info(f"  Monitor sweep: every {MONITOR_SWEEP_EVERY_MINUTES} minutes")
    logger.info(border)


_log_schedule_config()

celery_app = Celery(
    "inventory_sync",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "inventory_sync.celery_app.tasks.sync_run",
        "inventory_sync.celery_app.tasks.sync_dispatch",
        "inventory_sync.celery_app.tasks.monitor",
    ],
)

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,

    # Sync runs get their own queue so long scans never block dispatchers
    task_queues=(
        Queue("sync"),
        Queue("default"),
    ),
    task_default_queue="default",
    task_routes={
        "tasks.sync_run.*": {"queue": "sync"},
        "tasks.sync_dispatch.*": {"queue": "default"},
        "tasks.monitor.*": {"queue": "default"},
    },

    beat_schedule=_build_beat_schedule(),

    # Result expiration (dry-run reports are read from here)
    result_expires=86400,

    # Retry settings
    task_default_retry_delay=30,
    task_max_retries=3,

    worker_pool="solo" if IS_WINDOWS else "prefork",

    # Longer than the stale-run window so acks_late never redelivers a live run
    broker_transport_options={"visibility_timeout": 3600},

    # Custom log format
    worker_log_format="[%(asctime)s: %(levelname)s/%(processName)s] %(message)s",
    worker_task_log_format="[%(asctime)s: %(levelname)s/%(processName)s] [%(task_name)s] %(message)s",
)
