"""
Sync routes — manual triggers, run status, failures, schedule, alerts.

Operational controls for the sync engine:
- Trigger a run (optionally dry-run) and poll its Celery task
- Inspect the latest/running runs, history, and stuck runs
- Cancel a running run
- Inspect open failures and items needing manual review
- Inspect the scheduler's recommendation
- List and acknowledge alerts
- Run and alert metrics over a recent window
Version: 1.0.0
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from inventory_sync.container import (
    get_alert_store,
    get_critical_monitor,
    get_failure_store,
    get_ledger_store,
    get_sync_scheduler,
)
from inventory_sync.core.constants.sync import STUCK_THRESHOLD_MINUTES
from inventory_sync.core.exceptions import (
    AlertNotFoundError,
    InventorySyncException,
    SyncAlreadyRunningError,
    SyncRunNotFoundError,
)
from inventory_sync.db.alert_store import AlertStore
from inventory_sync.db.failure_store import FailureStore
from inventory_sync.db.sync_ledger_store import SyncLedgerStore, run_age_minutes
from inventory_sync.schemas.inventory import Alert, RunStatus, SyncRun, SyncStrategy
from inventory_sync.schemas.sync import (
    AlertsResponse,
    CancelRequest,
    CancelResponse,
    FailuresResponse,
    MetricsResponse,
    ScheduleResponse,
    StuckRunsResponse,
    SyncRunsResponse,
    SyncStatusResponse,
    SyncTriggerRequest,
    SyncTriggerResponse,
    TaskStatusResponse,
)
from inventory_sync.services.critical_monitor import CriticalItemMonitor
from inventory_sync.services.sync_scheduler import SyncScheduler
from inventory_sync.utils.dispatch_lock import request_cancellation

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["sync"])


def _to_http(e: Exception) -> HTTPException:
    if isinstance(e, (SyncRunNotFoundError, AlertNotFoundError)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, SyncAlreadyRunningError):
        return HTTPException(status_code=409, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def _overall_state(latest: Optional[SyncRun], running: list, open_failures: int, needs_review: list) -> str:
    """'broken' when the pipeline itself fails, 'attention' when items need it, else 'ok'."""
    if latest is not None and latest.status == RunStatus.ERROR:
        return "broken"
    if any(run_age_minutes(run) > STUCK_THRESHOLD_MINUTES for run in running):
        return "broken"
    if open_failures or needs_review:
        return "attention"
    if latest is not None and latest.status == RunStatus.PARTIAL:
        return "attention"
    return "ok"


# ============================================
# Triggers
# ============================================
@router.post("/trigger", response_model=SyncTriggerResponse, status_code=202)
def trigger_sync(request: SyncTriggerRequest):
    """Queue a sync run. strategy="auto" lets the scheduler decide at run time."""
    from inventory_sync.celery_app.tasks.sync_run import run_sync

    try:
        result = run_sync.delay(
            strategy=request.strategy,
            dry_run=request.dry_run,
            skus=request.skus,
            trigger="manual",
        )
    except Exception as e:
        logger.error(f"Failed to queue sync: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to queue sync: {e}")

    logger.info(f"Queued manual {request.strategy} sync (dry_run={request.dry_run}) as {result.id}")
    return SyncTriggerResponse(task_id=result.id, strategy=request.strategy, dry_run=request.dry_run)


@router.get("/trigger/{task_id}", response_model=TaskStatusResponse)
def get_trigger_status(task_id: str):
    """Celery state of a queued run, with the run (or dry-run report) once finished."""
    from celery.result import AsyncResult
    from inventory_sync.celery_app import celery_app

    result = AsyncResult(task_id, app=celery_app)
    response = TaskStatusResponse(task_id=task_id, state=result.state)
    if result.successful():
        response.result = result.result if isinstance(result.result, dict) else {"value": result.result}
    elif result.failed():
        response.error = str(result.result)
    return response


# ============================================
# Runs
# ============================================
@router.get("/status", response_model=SyncStatusResponse)
def get_sync_status(
    ledger: SyncLedgerStore = Depends(get_ledger_store),
    failures: FailureStore = Depends(get_failure_store),
    alerts: AlertStore = Depends(get_alert_store),
):
    """Latest run, running runs, and failure counts."""
    try:
        latest = ledger.get_latest_run()
        running = ledger.get_running_runs()
        open_failures = failures.count_open_failures()
        needs_review = failures.items_needing_review(limit=50)
        unacknowledged = alerts.count_unacknowledged()
    except InventorySyncException as e:
        logger.error(f"Failed to load sync status: {e}")
        raise _to_http(e)

    return SyncStatusResponse(
        state=_overall_state(latest, running, open_failures, needs_review),
        latest_run=latest,
        running=running,
        open_failures=open_failures,
        needs_review=needs_review,
        unacknowledged_alerts=unacknowledged,
    )


@router.get("/runs", response_model=SyncRunsResponse)
def list_runs(
    kind: Optional[SyncStrategy] = Query(None),
    status: Optional[RunStatus] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    ledger: SyncLedgerStore = Depends(get_ledger_store),
):
    try:
        runs = ledger.list_runs(kind=kind, limit=limit, status=status)
    except InventorySyncException as e:
        raise _to_http(e)
    return SyncRunsResponse(runs=runs, total=len(runs))


@router.get("/runs/{run_id}", response_model=SyncRun)
def get_run(run_id: str, ledger: SyncLedgerStore = Depends(get_ledger_store)):
    try:
        return ledger.get_run(run_id)
    except InventorySyncException as e:
        raise _to_http(e)


@router.post("/runs/{run_id}/cancel", response_model=CancelResponse)
def cancel_run(
    run_id: str,
    request: Optional[CancelRequest] = None,
    ledger: SyncLedgerStore = Depends(get_ledger_store),
):
    """Ask the worker executing a run to stop after in-flight batches."""
    reason = request.reason if request else "operator request"
    try:
        run = ledger.get_run(run_id)
    except InventorySyncException as e:
        raise _to_http(e)

    if run.status != RunStatus.RUNNING:
        raise HTTPException(status_code=409, detail=f"Run {run_id} is not running (status={run.status.value})")

    request_cancellation(run_id, reason)
    return CancelResponse(run_id=run_id, status="cancellation_requested", reason=reason)


@router.get("/stuck", response_model=StuckRunsResponse)
def get_stuck_runs(
    threshold_minutes: int = Query(STUCK_THRESHOLD_MINUTES, ge=1),
    ledger: SyncLedgerStore = Depends(get_ledger_store),
):
    try:
        runs = ledger.find_stuck_runs(threshold_minutes)
    except InventorySyncException as e:
        raise _to_http(e)
    return StuckRunsResponse(runs=runs, threshold_minutes=threshold_minutes)


@router.post("/stuck/reclaim", response_model=StuckRunsResponse)
def reclaim_stuck_runs(
    threshold_minutes: int = Query(STUCK_THRESHOLD_MINUTES, ge=1),
    ledger: SyncLedgerStore = Depends(get_ledger_store),
):
    """Mark runs stuck past the threshold as error so new runs can claim."""
    try:
        runs = ledger.reclaim_stale_runs(threshold_minutes)
    except InventorySyncException as e:
        raise _to_http(e)
    logger.info(f"Reclaimed {len(runs)} stuck runs via API")
    return StuckRunsResponse(runs=runs, threshold_minutes=threshold_minutes)


# ============================================
# Failures
# ============================================
@router.get("/failures", response_model=FailuresResponse)
def get_open_failures(
    limit: int = Query(100, ge=1, le=1000),
    failures: FailureStore = Depends(get_failure_store),
):
    try:
        items = failures.get_open_failures(limit=limit)
        total = failures.count_open_failures()
    except InventorySyncException as e:
        raise _to_http(e)
    return FailuresResponse(items=items, total=total, retry_cap=failures.retry_cap)


@router.get("/failures/review", response_model=FailuresResponse)
def get_failures_needing_review(
    limit: int = Query(100, ge=1, le=1000),
    failures: FailureStore = Depends(get_failure_store),
):
    """Items that hit the retry cap and are no longer retried automatically."""
    try:
        items = failures.items_needing_review(limit=limit)
    except InventorySyncException as e:
        raise _to_http(e)
    return FailuresResponse(items=items, total=len(items), retry_cap=failures.retry_cap)


# ============================================
# Schedule
# ============================================
@router.get("/schedule", response_model=ScheduleResponse)
def get_schedule(scheduler: SyncScheduler = Depends(get_sync_scheduler)):
    try:
        analysis = scheduler.analyze_and_recommend()
        next_due = scheduler.next_due_by_strategy()
    except InventorySyncException as e:
        raise _to_http(e)
    return ScheduleResponse(analysis=analysis, next_due=next_due)


# ============================================
# Alerts
# ============================================
@router.get("/alerts", response_model=AlertsResponse)
def list_alerts(
    acknowledged: Optional[bool] = Query(None),
    sku: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    alerts: AlertStore = Depends(get_alert_store),
):
    try:
        items = alerts.list_alerts(acknowledged=acknowledged, sku=sku, limit=limit)
    except InventorySyncException as e:
        raise _to_http(e)
    return AlertsResponse(alerts=items, total=len(items))


@router.post("/alerts/{alert_id}/acknowledge", response_model=Alert)
def acknowledge_alert(alert_id: str, monitor: CriticalItemMonitor = Depends(get_critical_monitor)):
    try:
        return monitor.acknowledge(alert_id)
    except InventorySyncException as e:
        raise _to_http(e)


# ============================================
# Metrics
# ============================================
@router.get("/metrics", response_model=MetricsResponse)
def get_metrics(
    days: int = Query(7, ge=1, le=90),
    hourly: bool = Query(False),
    ledger: SyncLedgerStore = Depends(get_ledger_store),
    monitor: CriticalItemMonitor = Depends(get_critical_monitor),
):
    """Per-day (or per-hour) run outcomes and durations, plus current alert counts."""
    try:
        sync_metrics = ledger.get_sync_metrics(days=days, hourly=hourly)
        alert_metrics = monitor.get_alert_metrics()
    except InventorySyncException as e:
        logger.error(f"Failed to load sync metrics: {e}")
        raise _to_http(e)
    return MetricsResponse(sync=sync_metrics, alerts=alert_metrics)
