"""
Sync Executor — one sync run from upstream pages to catalog writes.

Run lifecycle:
1. Claim a running row in the ledger (before any upstream I/O)
2. Stream pages from the rate-limited inventory client
3. Validate and scope records per the strategy plan
4. Write changed records in bounded batches on a small thread pool,
   serializing check-then-write per SKU
5. Isolate per-item write failures through the failure tracker
6. Finalize as success / partial / error

Dry runs skip step 1 and every write; they only report what would change.
Version: 1.0.0
"""
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from pydantic import ValidationError as RecordValidationError

from inventory_sync.clients.inventory_client import InventoryClient
from inventory_sync.core.config import settings
from inventory_sync.core.constants.sync import MAX_RUN_ERRORS
from inventory_sync.core.exceptions import (
    DatabaseTransientError,
    InventorySyncException,
    ItemWriteError,
    RunReclaimedError,
)
from inventory_sync.db.catalog_store import CatalogStore
from inventory_sync.db.failure_store import FailureStore
from inventory_sync.db.sync_ledger_store import SyncLedgerStore
from inventory_sync.schemas.inventory import InventoryRecord, RunStatus, SyncRun, SyncStrategy
from inventory_sync.services.critical_monitor import CriticalItemMonitor
from inventory_sync.services.sync_strategies import StrategyContext, StrategyPlan, build_plan
from inventory_sync.utils.cancellation import CancellationToken
from inventory_sync.utils.change_detection import (
    ChangeResult,
    calculate_priority,
    calculate_sync_stats,
    filter_changed_items,
)
from inventory_sync.utils.keyed_lock import KeyedLock
from inventory_sync.utils.schedule_helpers import utc_now

logger = logging.getLogger(__name__)

ChangedPair = Tuple[InventoryRecord, ChangeResult]


@dataclass
class BatchOutcome:
    """Result of one batch, aggregated on the run thread."""
    processed: int = 0
    written: int = 0
    unchanged: int = 0
    new_items: int = 0
    would_update: int = 0
    would_create: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list)


@dataclass
class RunTotals:
    processed: int = 0
    updated: int = 0
    failed: int = 0
    unchanged: int = 0
    new_items: int = 0
    invalid: int = 0
    would_update: int = 0
    would_create: int = 0
    deactivated: int = 0
    would_deactivate: int = 0
    pages: int = 0
    cursor: Optional[str] = None
    errors: List[Dict[str, Any]] = field(default_factory=list)
    errors_truncated: bool = False
    seen_skus: Set[str] = field(default_factory=set)

    def add_failure(self, sku: Optional[str], message: str, error_type: str = "item_write") -> None:
        self.failed += 1
        if len(self.errors) < MAX_RUN_ERRORS:
            self.errors.append({"type": error_type, "sku": sku, "message": message})
        else:
            self.errors_truncated = True

    def apply(self, outcome: BatchOutcome) -> None:
        self.processed += outcome.processed
        self.updated += outcome.written
        self.unchanged += outcome.unchanged
        self.new_items += outcome.new_items
        self.would_update += outcome.would_update
        self.would_create += outcome.would_create
        for sku, message in outcome.failures:
            self.add_failure(sku, message)


def _raw_sku(raw: Any) -> Optional[str]:
    """Best-effort SKU of a record that failed validation."""
    if not isinstance(raw, Mapping):
        return None
    for key in ("sku", "productSku", "productId"):
        value = raw.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def _validation_message(error: RecordValidationError) -> str:
    first = error.errors()[0] if error.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"invalid record: {location} {first.get('msg', str(error))}".strip()


class SyncExecutor:
    """Runs one sync of a given strategy against the catalog."""

    def __init__(
        self,
        client: InventoryClient,
        catalog_store: CatalogStore,
        ledger_store: SyncLedgerStore,
        failure_store: FailureStore,
        monitor: Optional[CriticalItemMonitor] = None,
        batch_size: int = settings.sync_batch_size,
        max_workers: int = settings.sync_max_workers,
        urgent_staleness_minutes: int = settings.sync_urgent_staleness_minutes,
        keyed_lock: Optional[KeyedLock] = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._client = client
        self._catalog = catalog_store
        self._ledger = ledger_store
        self._failures = failure_store
        self._monitor = monitor
        self._batch_size = batch_size
        self._max_workers = max(1, max_workers)
        self._urgent_minutes = urgent_staleness_minutes
        self._locks = keyed_lock or KeyedLock()

    # ============================================
    # Public API
    # ============================================
    def run(
        self,
        strategy: SyncStrategy,
        dry_run: bool = False,
        only_skus: Optional[Iterable[str]] = None,
        cancel_token: Optional[CancellationToken] = None,
        trigger: str = "manual",
    ) -> SyncRun:
        """
        Execute one sync run.

        Args:
            strategy: Sync kind
            dry_run: Report changes without writing anything
            only_skus: Restrict the run to these SKUs and force their writes
            cancel_token: Cooperative cancellation signal
            trigger: Free-form origin recorded in run metadata

        Returns:
            The finalized SyncRun (unsaved for dry runs)

        Raises:
            SyncAlreadyRunningError: A run of this kind is already active
            DatabaseTransientError: The ledger could not be reached to claim or finalize
        """
        strategy = SyncStrategy(strategy)
        token = cancel_token or CancellationToken()
        scope: Optional[FrozenSet[str]] = frozenset(only_skus) if only_skus is not None else None
        started = utc_now()

        metadata: Dict[str, Any] = {"strategy": strategy.value, "trigger": trigger}
        if scope is not None:
            metadata["only_skus"] = len(scope)

        if dry_run:
            run = SyncRun(kind=strategy, started_at=started, metadata={**metadata, "dry_run": True})
        else:
            run = self._ledger.claim_run(strategy, metadata, now=started)
            token.bind(run.id)

        logger.info("=" * 60)
        logger.info(f"Sync run {run.id or 'dry-run'} started: strategy={strategy.value}, dry_run={dry_run}")
        logger.info("=" * 60)

        totals = RunTotals()
        try:
            plan = build_plan(strategy, StrategyContext(self._catalog, started, self._urgent_minutes, scope))
            completed = self._stream(run, plan, totals, token, dry_run)
            if completed and plan.deactivate_missing:
                self._reconcile_missing(totals, dry_run)
            if completed and plan.sku_filter is not None and plan.critical_skus is None:
                self._record_unseen_targets(run, plan, totals, dry_run)
        except InventorySyncException as e:
            logger.error(f"Sync run {run.id or 'dry-run'} aborted: {type(e).__name__}: {e}")
            return self._finish_error(run, totals, type(e).__name__, str(e), dry_run)
        except Exception as e:
            logger.exception(f"Sync run {run.id or 'dry-run'} crashed: {e}")
            self._finish_error(run, totals, "unexpected_error", str(e), dry_run)
            raise

        if not completed:
            reason = token.reason or "operator request"
            logger.warning(f"Sync run {run.id or 'dry-run'} cancelled after {totals.pages} pages: {reason}")
            return self._finish_error(run, totals, "cancelled", f"cancelled: {reason}", dry_run)

        return self._finish(run, totals, dry_run)

    # ============================================
    # Page streaming
    # ============================================
    def _stream(
        self,
        run: SyncRun,
        plan: StrategyPlan,
        totals: RunTotals,
        token: CancellationToken,
        dry_run: bool,
    ) -> bool:
        """
        Process pages until the last one. Returns False if cancelled.

        Raises:
            RunReclaimedError: The ledger row stopped being running mid-run
        """
        cursor: Optional[str] = None

        with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="sync-batch") as pool:
            while True:
                if token.is_cancelled():
                    return False

                page = self._client.fetch_page(cursor)
                totals.pages += 1

                records = self._scope_page(run, plan, page.records, totals, dry_run)
                if plan.priority_order and records:
                    records = self._order_by_priority(records, run.started_at)

                batches = [
                    records[i:i + self._batch_size]
                    for i in range(0, len(records), self._batch_size)
                ]
                cancelled = self._run_batches(pool, run, plan, batches, totals, token, dry_run)

                cursor = page.next_cursor
                totals.cursor = cursor
                if not dry_run:
                    run.metadata = self._progress_metadata(run, totals)
                    still_running = self._ledger.update_progress(
                        run.id, totals.processed, totals.updated, totals.failed, run.metadata
                    )
                    if not still_running:
                        raise RunReclaimedError(run.id)

                logger.info(
                    f"Page {totals.pages}: processed={totals.processed}, "
                    f"updated={totals.updated}, failed={totals.failed}"
                )

                if cancelled:
                    return False
                if page.is_last:
                    return True

    def _scope_page(
        self,
        run: SyncRun,
        plan: StrategyPlan,
        raw_records: List[Dict[str, Any]],
        totals: RunTotals,
        dry_run: bool,
    ) -> List[InventoryRecord]:
        """
        Validate raw records and keep those in the plan's scope.

        The last valid occurrence of a SKU wins. A malformed copy of a SKU
        that also has a valid record in the page is dropped; other malformed
        records count once per SKU as invalid.
        """
        by_sku: Dict[str, InventoryRecord] = {}
        valid_skus: Set[str] = set()
        invalid: Dict[Optional[str], List[str]] = {}

        for raw in raw_records:
            try:
                record = InventoryRecord.model_validate(raw)
            except RecordValidationError as e:
                sku = _raw_sku(raw)
                if plan.includes_sku(sku):
                    message = _validation_message(e)
                    if sku is None:
                        invalid.setdefault(None, []).append(message)
                    else:
                        invalid[sku] = [message]
                continue

            valid_skus.add(record.sku)
            if plan.includes(record):
                totals.seen_skus.add(record.sku)
                by_sku[record.sku] = record

        for sku, messages in invalid.items():
            if sku in valid_skus:
                logger.info(f"Ignoring malformed duplicate of {sku}; the page also has a valid record")
                continue
            for message in messages:
                self._record_invalid(run, sku, message, totals, dry_run)

        return list(by_sku.values())

    def _record_invalid(
        self, run: SyncRun, sku: Optional[str], message: str, totals: RunTotals, dry_run: bool
    ) -> None:
        logger.warning(f"Skipping malformed record {sku or '<no sku>'}: {message}")
        totals.processed += 1
        totals.invalid += 1
        if sku:
            totals.seen_skus.add(sku)
        if dry_run:
            return
        totals.add_failure(sku, message, error_type="invalid_record")
        if sku:
            self._failures.record_failure(sku, run.id, message)

    def _order_by_priority(self, records: List[InventoryRecord], now: datetime) -> List[InventoryRecord]:
        stored = self._catalog.get_items_by_skus(r.sku for r in records)
        return sorted(records, key=lambda r: calculate_priority(r, stored.get(r.sku), now), reverse=True)

    def _run_batches(
        self,
        pool: ThreadPoolExecutor,
        run: SyncRun,
        plan: StrategyPlan,
        batches: List[List[InventoryRecord]],
        totals: RunTotals,
        token: CancellationToken,
        dry_run: bool,
    ) -> bool:
        """Run one page's batches. Returns True if cancellation stopped submission."""
        futures: List[Future] = []
        cancelled = False
        for batch in batches:
            if token.is_cancelled():
                cancelled = True
                break
            futures.append(pool.submit(self._process_batch, run, plan, batch, dry_run))

        first_error: Optional[BaseException] = None
        for future in futures:
            try:
                totals.apply(future.result())
            except Exception as e:
                if first_error is None:
                    first_error = e

        if first_error is not None:
            raise first_error
        return cancelled

    # ============================================
    # Batch processing (worker threads)
    # ============================================
    def _process_batch(
        self,
        run: SyncRun,
        plan: StrategyPlan,
        batch: List[InventoryRecord],
        dry_run: bool,
    ) -> BatchOutcome:
        skus = [record.sku for record in batch]

        with self._locks.hold(skus):
            stored = self._catalog.get_items_by_skus(skus)
            analysis = filter_changed_items(
                batch, stored, force=plan.force_write, now=run.started_at, verify_columns=plan.verify_columns
            )

            changed = analysis.changed
            if not plan.priority_order:
                position = {sku: i for i, sku in enumerate(skus)}
                changed = sorted(changed, key=lambda pair: position[pair[0].sku])

            created = sum(1 for record, _ in changed if record.sku not in stored)
            outcome = BatchOutcome(
                processed=len(batch),
                unchanged=analysis.unchanged,
                new_items=created,
            )

            if dry_run:
                outcome.would_create = created
                outcome.would_update = len(changed) - created
                return outcome

            if not changed:
                return outcome

            written, failures = self._write_changed(changed)
            outcome.written = len(written)

            for sku, message in failures:
                self._failures.record_failure(sku, run.id, message)
                outcome.failures.append((sku, message))

            if written:
                self._failures.record_successes([record.sku for record, _ in written])
                self._observe(written, stored)

        return outcome

    def _write_changed(self, changed: List[ChangedPair]) -> Tuple[List[ChangedPair], List[Tuple[str, str]]]:
        """
        Write changed records: one batch upsert, falling back to per-item writes.

        Raises:
            DatabaseTransientError: The catalog store is unreachable
        """
        synced_at = utc_now()
        rows = [record.to_catalog_row(result.content_hash, synced_at, result.priority) for record, result in changed]

        try:
            self._catalog.upsert_items(rows)
            return changed, []
        except DatabaseTransientError as e:
            logger.warning(f"Batch upsert of {len(rows)} items failed, isolating per item: {e}")

        written: List[ChangedPair] = []
        failures: List[Tuple[str, str]] = []
        for pair, row in zip(changed, rows):
            try:
                self._catalog.upsert_item(row)
                written.append(pair)
            except ItemWriteError as e:
                failures.append((pair[0].sku, str(e)))

        if failures:
            logger.warning(f"{len(failures)} of {len(rows)} items failed to write")
        return written, failures

    def _observe(self, written: List[ChangedPair], stored: Dict[str, Dict[str, Any]]) -> None:
        if self._monitor is None:
            return
        try:
            self._monitor.observe_batch([(record, stored.get(record.sku)) for record, _ in written])
        except Exception as e:
            logger.error(f"Monitor observation failed for {len(written)} items: {e}")

    # ============================================
    # Completion
    # ============================================
    def _reconcile_missing(self, totals: RunTotals, dry_run: bool) -> None:
        if not totals.seen_skus:
            logger.warning("Full sync saw no upstream records; skipping deactivation")
            return

        missing = self._catalog.get_active_skus() - totals.seen_skus
        if dry_run:
            totals.would_deactivate = len(missing)
            return
        if missing:
            totals.deactivated = self._catalog.deactivate_items(missing)

    def _record_unseen_targets(self, run: SyncRun, plan: StrategyPlan, totals: RunTotals, dry_run: bool) -> None:
        """Requested SKUs the upstream never returned count as failures so retries stay bounded."""
        unseen = sorted(plan.sku_filter - totals.seen_skus)
        if not unseen or dry_run:
            return
        logger.warning(f"{len(unseen)} requested SKUs were not returned upstream")
        for sku in unseen:
            message = "not returned by the inventory API"
            totals.add_failure(sku, message, error_type="not_found_upstream")
            self._failures.record_failure(sku, run.id, message)

    def _progress_metadata(self, run: SyncRun, totals: RunTotals) -> Dict[str, Any]:
        return {
            **run.metadata,
            "pages": totals.pages,
            "cursor": totals.cursor,
            "progress": {
                "processed": totals.processed,
                "updated": totals.updated,
                "failed": totals.failed,
                "at": utc_now().isoformat(),
            },
        }

    def _summary_metadata(self, run: SyncRun, totals: RunTotals, duration_seconds: float) -> Dict[str, Any]:
        summary = {
            **run.metadata,
            "pages": totals.pages,
            "new_items": totals.new_items,
            "unchanged": totals.unchanged,
            "invalid": totals.invalid,
            "items_failed": totals.failed,
            "stats": calculate_sync_stats(totals.processed, totals.updated, duration_seconds),
        }
        summary.pop("progress", None)
        if run.kind == SyncStrategy.FULL:
            summary["deactivated"] = totals.deactivated
        if totals.errors_truncated:
            summary["errors_truncated"] = True
        return summary

    def _complete_locally(self, run: SyncRun, status: RunStatus, now: datetime) -> None:
        run.status = status
        run.completed_at = now
        run.duration_ms = max(0, int((now - run.started_at).total_seconds() * 1000))

    def _finish(self, run: SyncRun, totals: RunTotals, dry_run: bool) -> SyncRun:
        now = utc_now()
        duration_seconds = (now - run.started_at).total_seconds()
        run.items_processed = totals.processed
        run.metadata = self._summary_metadata(run, totals, duration_seconds)

        if dry_run:
            run.items_updated = 0
            run.items_failed = 0
            run.metadata.update({
                "dry_run": True,
                "would_update": totals.would_update,
                "would_create": totals.would_create,
                "unchanged": totals.unchanged,
                "invalid": totals.invalid,
            })
            if run.kind == SyncStrategy.FULL:
                run.metadata["would_deactivate"] = totals.would_deactivate
            self._complete_locally(run, RunStatus.SUCCESS, now)
            logger.info(
                f"Dry run complete: would_update={totals.would_update}, "
                f"would_create={totals.would_create}, unchanged={totals.unchanged}"
            )
            return run

        run.items_updated = totals.updated
        run.items_failed = totals.failed
        run.errors = totals.errors
        status = RunStatus.SUCCESS if totals.failed == 0 else RunStatus.PARTIAL
        self._ledger.finalize_run(run, status, now=now)
        return run

    def _finish_error(
        self,
        run: SyncRun,
        totals: RunTotals,
        error_type: str,
        message: str,
        dry_run: bool,
    ) -> SyncRun:
        now = utc_now()
        run.items_processed = totals.processed
        run.items_updated = 0 if dry_run else totals.updated
        run.items_failed = 0 if dry_run else totals.failed
        run.errors = totals.errors + [{"type": error_type, "message": message}]
        run.metadata = {**self._summary_metadata(run, totals, (now - run.started_at).total_seconds()), "error": message}

        if dry_run:
            self._complete_locally(run, RunStatus.ERROR, now)
        else:
            self._ledger.finalize_run(run, RunStatus.ERROR, now=now)
        return run
