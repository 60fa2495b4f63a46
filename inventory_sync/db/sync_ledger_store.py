"""
Sync Ledger Store — audit record of every sync run.

Provides database operations for the sync_logs table:
- Atomic run claims (one running run per sync kind)
- Incremental progress updates and final status
- Stuck-run detection and reclamation
- History queries for the scheduler and operators

The one-running-run rule is enforced by the database, not by this process:

    CREATE UNIQUE INDEX sync_logs_one_running_per_type
        ON sync_logs (sync_type) WHERE status = 'running';

A claim is a plain INSERT of a running row; a unique violation means the
slot is already held. Finalizing is a conditional UPDATE on status =
'running', so a run that was reclaimed as stale cannot be resurrected.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx
from postgrest.exceptions import APIError

from inventory_sync.core.config import settings
from inventory_sync.core.constants.sync import (
    RUN_STATUS_ERROR,
    RUN_STATUS_PARTIAL,
    RUN_STATUS_RUNNING,
    RUN_STATUS_SUCCESS,
    STUCK_THRESHOLD_MINUTES,
    SYNC_LOGS_TABLE,
    UNIQUE_VIOLATION_CODE,
)
from inventory_sync.core.exceptions import (
    DatabaseTransientError,
    SyncAlreadyRunningError,
    SyncRunNotFoundError,
)
from inventory_sync.db.base_store import BaseStore
from inventory_sync.schemas.inventory import RunStatus, SyncRun, SyncStrategy
from inventory_sync.utils.schedule_helpers import parse_timestamp, utc_now

logger = logging.getLogger("sync_ledger_store")

STALE_TERMINATION_REASON = "Stuck sync detected and terminated"


class SyncLedgerStore(BaseStore):
    """Database operations for sync run bookkeeping."""

    def __init__(self, supabase_client=None, stale_run_minutes: int = settings.sync_stale_run_minutes) -> None:
        super().__init__(supabase_client)
        self._stale_run_minutes = stale_run_minutes

    def claim_run(
        self,
        kind: SyncStrategy,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> SyncRun:
        """
        Claim the running slot for a sync kind.

        Running rows of the same kind older than the configured staleness
        window are reclaimed first so a crashed worker never blocks future
        syncs.

        Args:
            kind: Sync kind to claim
            metadata: Initial run metadata (strategy options, trigger source)
            now: Claim time (defaults to current UTC time)

        Returns:
            The new running SyncRun

        Raises:
            SyncAlreadyRunningError: A fresh run of this kind is already running
            DatabaseTransientError: Ledger unreachable
        """
        now = now or utc_now()
        self.reclaim_stale_runs(self._stale_run_minutes, kind=kind, now=now)

        row = {
            "sync_type": kind.value,
            "status": RUN_STATUS_RUNNING,
            "started_at": now.isoformat(),
            "items_processed": 0,
            "items_updated": 0,
            "items_failed": 0,
            "errors": [],
            "metadata": metadata or {},
        }

        try:
            result = self.client.table(SYNC_LOGS_TABLE).insert(row).execute()
        except APIError as e:
            if getattr(e, "code", None) == UNIQUE_VIOLATION_CODE:
                logger.info(f"Claim refused: a {kind.value} sync is already running")
                raise SyncAlreadyRunningError(kind.value) from e
            logger.error(f"Error claiming {kind.value} run: {e}")
            raise DatabaseTransientError(f"Supabase claim {kind.value} run failed: {e}") from e
        except httpx.HTTPError as e:
            raise DatabaseTransientError(f"Supabase claim {kind.value} run failed: {e}") from e

        run = SyncRun.from_row(result.data[0] if result.data else row)
        logger.info(f"Claimed {kind.value} sync run {run.id}")
        return run

    def update_progress(
        self,
        run_id: str,
        items_processed: int,
        items_updated: int,
        items_failed: int = 0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Record in-flight progress on a running run.

        Returns:
            False if the row is no longer running (reclaimed as stale); the
            caller must stop writing
        """
        payload: Dict[str, Any] = {
            "items_processed": items_processed,
            "items_updated": items_updated,
            "items_failed": items_failed,
        }
        if metadata is not None:
            payload["metadata"] = metadata

        result = self._execute(
            self.client.table(SYNC_LOGS_TABLE)
            .update(payload)
            .eq("id", run_id)
            .eq("status", RUN_STATUS_RUNNING),
            f"update progress {run_id}",
        )
        if not result.data:
            logger.warning(f"Run {run_id} is no longer running; progress not recorded")
            return False
        return True

    def finalize_run(
        self,
        run: SyncRun,
        status: RunStatus,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Move a running run to its final status.

        The run object is updated in place with completion fields.

        Returns:
            True if the row was finalized, False if it was no longer running
            (already reclaimed as stale)
        """
        if status == RunStatus.RUNNING:
            raise ValueError("finalize_run requires a final status")

        now = now or utc_now()
        run.status = status
        run.completed_at = now
        run.duration_ms = max(0, int((now - run.started_at).total_seconds() * 1000))

        result = self._execute(
            self.client.table(SYNC_LOGS_TABLE)
            .update({
                "status": status.value,
                "completed_at": now.isoformat(),
                "duration_ms": run.duration_ms,
                "items_processed": run.items_processed,
                "items_updated": run.items_updated,
                "items_failed": run.items_failed,
                "errors": run.errors,
                "metadata": run.metadata,
            })
            .eq("id", run.id)
            .eq("status", RUN_STATUS_RUNNING),
            f"finalize run {run.id}",
        )

        finalized = bool(result.data)
        if finalized:
            logger.info(
                f"Run {run.id} ({run.kind.value}) finalized as {status.value}: "
                f"processed={run.items_processed}, updated={run.items_updated}, "
                f"failed={run.items_failed}, duration={run.duration_ms}ms"
            )
        else:
            logger.warning(f"Run {run.id} was no longer running when finalized (reclaimed as stale?)")
        return finalized

    def find_stuck_runs(
        self,
        threshold_minutes: int = STUCK_THRESHOLD_MINUTES,
        kind: Optional[SyncStrategy] = None,
        now: Optional[datetime] = None,
    ) -> List[SyncRun]:
        """
        Get runs stuck in 'running' past the threshold.

        Args:
            threshold_minutes: Minutes before a running run is considered abandoned
            kind: Restrict to one sync kind

        Returns:
            List of stuck runs (oldest first)
        """
        cutoff = (now or utc_now()) - timedelta(minutes=threshold_minutes)

        query = self.client.table(SYNC_LOGS_TABLE) \
            .select("*") \
            .eq("status", RUN_STATUS_RUNNING) \
            .lt("started_at", cutoff.isoformat())
        if kind is not None:
            query = query.eq("sync_type", kind.value)

        result = self._execute(query.order("started_at"), "find stuck runs")
        return [SyncRun.from_row(row) for row in result.data or []]

    def reclaim_stale_runs(
        self,
        threshold_minutes: int = STUCK_THRESHOLD_MINUTES,
        kind: Optional[SyncStrategy] = None,
        now: Optional[datetime] = None,
    ) -> List[SyncRun]:
        """
        Mark abandoned running runs as error.

        Returns:
            Runs that this call reclaimed
        """
        now = now or utc_now()
        reclaimed: List[SyncRun] = []

        for run in self.find_stuck_runs(threshold_minutes, kind=kind, now=now):
            running_minutes = round((now - run.started_at).total_seconds() / 60)
            errors = list(run.errors) + [{
                "type": "stale_run",
                "message": f"Sync terminated after running for {running_minutes} minutes",
            }]
            metadata = {
                **run.metadata,
                "terminated_at": now.isoformat(),
                "termination_reason": STALE_TERMINATION_REASON,
            }

            result = self._execute(
                self.client.table(SYNC_LOGS_TABLE)
                .update({
                    "status": RUN_STATUS_ERROR,
                    "completed_at": now.isoformat(),
                    "duration_ms": running_minutes * 60 * 1000,
                    "errors": errors,
                    "metadata": metadata,
                })
                .eq("id", run.id)
                .eq("status", RUN_STATUS_RUNNING),
                f"reclaim run {run.id}",
            )

            if result.data:
                run.status = RunStatus.ERROR
                run.completed_at = now
                run.errors = errors
                run.metadata = metadata
                reclaimed.append(run)
                logger.warning(
                    f"Reclaimed stale {run.kind.value} run {run.id} after {running_minutes} minutes"
                )

        return reclaimed

    def get_run(self, run_id: str) -> SyncRun:
        result = self._execute(
            self.client.table(SYNC_LOGS_TABLE).select("*").eq("id", run_id).limit(1),
            f"get run {run_id}",
        )
        if not result.data:
            raise SyncRunNotFoundError(f"Sync run {run_id} not found")
        return SyncRun.from_row(result.data[0])

    def get_latest_run(self, kind: Optional[SyncStrategy] = None) -> Optional[SyncRun]:
        """Most recently started run (any status), optionally of one kind."""
        query = self.client.table(SYNC_LOGS_TABLE).select("*")
        if kind is not None:
            query = query.eq("sync_type", kind.value)

        result = self._execute(query.order("started_at", desc=True).limit(1), "get latest run")
        return SyncRun.from_row(result.data[0]) if result.data else None

    def get_last_completed_run(self, kind: SyncStrategy) -> Optional[SyncRun]:
        """Most recent run of a kind that finished with success or partial."""
        result = self._execute(
            self.client.table(SYNC_LOGS_TABLE)
            .select("*")
            .eq("sync_type", kind.value)
            .in_("status", [RUN_STATUS_SUCCESS, RUN_STATUS_PARTIAL])
            .order("started_at", desc=True)
            .limit(1),
            f"get last completed {kind.value} run",
        )
        return SyncRun.from_row(result.data[0]) if result.data else None

    def get_running_runs(self) -> List[SyncRun]:
        result = self._execute(
            self.client.table(SYNC_LOGS_TABLE)
            .select("*")
            .eq("status", RUN_STATUS_RUNNING)
            .order("started_at"),
            "get running runs",
        )
        return [SyncRun.from_row(row) for row in result.data or []]

    def list_runs(
        self,
        kind: Optional[SyncStrategy] = None,
        limit: int = 50,
        since: Optional[datetime] = None,
        status: Optional[RunStatus] = None,
    ) -> List[SyncRun]:
        """Run history, newest first."""
        query = self.client.table(SYNC_LOGS_TABLE).select("*")
        if kind is not None:
            query = query.eq("sync_type", kind.value)
        if status is not None:
            query = query.eq("status", status.value)
        if since is not None:
            query = query.gte("started_at", since.isoformat())

        result = self._execute(query.order("started_at", desc=True).limit(limit), "list runs")
        return [SyncRun.from_row(row) for row in result.data or []]

    def get_recent_change_rate(self, days: int = 7, now: Optional[datetime] = None) -> Optional[float]:
        """
        Average fraction of processed items that needed a write.

        Returns:
            Ratio between 0 and 1, or None without recent successful runs
        """
        since = (now or utc_now()) - timedelta(days=days)
        result = self._execute(
            self.client.table(SYNC_LOGS_TABLE)
            .select("items_processed, items_updated")
            .eq("status", RUN_STATUS_SUCCESS)
            .gte("started_at", since.isoformat()),
            "get recent change rate",
        )

        rates = [
            row["items_updated"] / row["items_processed"]
            for row in result.data or []
            if row.get("items_processed")
        ]
        if not rates:
            return None
        return sum(rates) / len(rates)

    def get_sync_metrics(
        self,
        days: int = 7,
        hourly: bool = False,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Run counts, outcomes and durations bucketed per day (or per hour).

        Running rows count toward totals but have no duration yet.

        Returns:
            Dict with "totals", "buckets" (oldest first) and "top_errors"
        """
        since = (now or utc_now()) - timedelta(days=days)
        result = self._execute(
            self.client.table(SYNC_LOGS_TABLE)
            .select("started_at, status, duration_ms, items_processed, items_updated, items_failed, errors")
            .gte("started_at", since.isoformat())
            .order("started_at"),
            "get sync metrics",
        )

        buckets: Dict[str, Dict[str, Any]] = {}
        totals = _empty_bucket("total")
        error_counts: Dict[str, int] = {}

        for row in result.data or []:
            started = parse_timestamp(row["started_at"])
            if hourly:
                key = started.strftime("%Y-%m-%dT%H:00:00")
            else:
                key = started.strftime("%Y-%m-%d")
            bucket = buckets.setdefault(key, _empty_bucket(key))
            for target in (bucket, totals):
                _add_run(target, row)
            for error in row.get("errors") or []:
                error_type = error.get("type") if isinstance(error, dict) else str(error).split(":")[0].strip()
                if error_type:
                    error_counts[error_type] = error_counts.get(error_type, 0) + 1

        top_errors = sorted(error_counts.items(), key=lambda item: item[1], reverse=True)[:10]
        return {
            "days": days,
            "hourly": hourly,
            "totals": _close_bucket(totals),
            "buckets": [_close_bucket(buckets[key]) for key in sorted(buckets)],
            "top_errors": [{"type": error_type, "count": count} for error_type, count in top_errors],
        }


def _empty_bucket(period: str) -> Dict[str, Any]:
    return {
        "period": period,
        "runs": 0,
        "successful": 0,
        "partial": 0,
        "failed": 0,
        "items_processed": 0,
        "items_updated": 0,
        "items_failed": 0,
        "durations": [],
    }


def _add_run(bucket: Dict[str, Any], row: Dict[str, Any]) -> None:
    bucket["runs"] += 1
    status = row.get("status")
    if status == RUN_STATUS_SUCCESS:
        bucket["successful"] += 1
    elif status == RUN_STATUS_PARTIAL:
        bucket["partial"] += 1
    elif status == RUN_STATUS_ERROR:
        bucket["failed"] += 1
    bucket["items_processed"] += row.get("items_processed") or 0
    bucket["items_updated"] += row.get("items_updated") or 0
    bucket["items_failed"] += row.get("items_failed") or 0
    if row.get("duration_ms"):
        bucket["durations"].append(row["duration_ms"])


def _close_bucket(bucket: Dict[str, Any]) -> Dict[str, Any]:
    durations = bucket.pop("durations")
    bucket["avg_duration_ms"] = round(sum(durations) / len(durations)) if durations else None
    return bucket


def run_age_minutes(run: SyncRun, now: Optional[datetime] = None) -> int:
    """Minutes since a run started."""
    started = parse_timestamp(run.started_at)
    return round(((now or utc_now()) - started).total_seconds() / 60)
