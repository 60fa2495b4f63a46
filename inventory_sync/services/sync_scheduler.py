"""
Sync Scheduler — decides when to sync and with which strategy.

Decision policy, in priority order:
1. CRITICAL  any active item out of stock, at/below reorder, or unsynced
             beyond the urgent staleness window
2. SMART     a meaningful fraction of the catalog is stale or never synced
3. FULL      no successful full run within the full-sync interval
4. INVENTORY routine refresh

A full scan is the most expensive run, so it is never the default; it
only catches drift the incremental strategies might miss.

Every method here is a pure read over the catalog snapshot and the
ledger: calling it twice without an intervening run gives the same answer.
Version: 1.0.0
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from inventory_sync.core.config import settings
from inventory_sync.core.constants.sync import STRATEGY_INTERVAL_MINUTES
from inventory_sync.db.catalog_store import CatalogStore, is_critical_row
from inventory_sync.db.sync_ledger_store import SyncLedgerStore
from inventory_sync.schemas.inventory import SyncStrategy
from inventory_sync.schemas.sync import CriticalSummary, SyncAnalysis
from inventory_sync.utils.schedule_helpers import is_business_hours, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

# Strategies that scan and write broadly; kept out of business hours
DEFERRABLE_STRATEGIES = (SyncStrategy.FULL, SyncStrategy.SMART)

# Rough catalog write cost used for duration estimates
WRITE_SECONDS_PER_ITEM = 0.01
DEFAULT_CHANGE_RATE = 0.1


class SyncScheduler:
    def __init__(
        self,
        catalog_store: CatalogStore,
        ledger_store: SyncLedgerStore,
        urgent_staleness_minutes: int = settings.sync_urgent_staleness_minutes,
        stale_hours: int = settings.sync_stale_hours,
        smart_stale_fraction: float = settings.sync_smart_stale_fraction,
        full_interval_hours: int = settings.sync_full_interval_hours,
        business_hours_start: int = settings.sync_business_hours_start,
        business_hours_end: int = settings.sync_business_hours_end,
        low_stock_multiplier: float = settings.monitor_low_stock_multiplier,
        page_size: int = settings.inventory_api_page_size,
        requests_per_second: float = settings.inventory_rate_limit_per_second,
    ) -> None:
        self._catalog = catalog_store
        self._ledger = ledger_store
        self._urgent_minutes = urgent_staleness_minutes
        self._stale_hours = stale_hours
        self._smart_fraction = smart_stale_fraction
        self._full_interval_hours = full_interval_hours
        self._business_start = business_hours_start
        self._business_end = business_hours_end
        self._low_stock_multiplier = low_stock_multiplier
        self._page_size = max(1, page_size)
        self._requests_per_second = requests_per_second

    # ------------------------------------------------------------------
    # Catalog health
    # ------------------------------------------------------------------

    def _summarize(self, now: datetime) -> Tuple[CriticalSummary, int]:
        """Critical summary plus the number of items that make CRITICAL apply."""
        urgent_cutoff = now - timedelta(minutes=self._urgent_minutes)
        stale_cutoff = now - timedelta(hours=self._stale_hours)
        summary = CriticalSummary()
        critical = 0

        for row in self._catalog.get_health_snapshot():
            summary.total += 1
            stock = row.get("stock") or 0
            reorder_point = row.get("reorder_point") or 0
            last_synced = parse_timestamp(row.get("last_synced_at"))

            if stock <= 0:
                summary.out_of_stock += 1
            elif reorder_point > 0 and stock <= reorder_point:
                summary.need_reorder += 1
            elif reorder_point > 0 and stock <= reorder_point * self._low_stock_multiplier:
                summary.low_stock += 1

            if last_synced is None:
                summary.never_synced += 1
            elif last_synced < stale_cutoff:
                summary.stale += 1
            if last_synced is not None and last_synced < urgent_cutoff:
                summary.urgent_stale += 1

            if is_critical_row(row, urgent_cutoff):
                critical += 1

        return summary, critical

    def _full_sync_overdue(self, now: datetime) -> bool:
        last_full = self._ledger.get_last_completed_run(SyncStrategy.FULL)
        if last_full is None:
            return True
        return last_full.started_at < now - timedelta(hours=self._full_interval_hours)

    def _decide(
        self, summary: CriticalSummary, critical: int, full_overdue: bool
    ) -> Tuple[SyncStrategy, List[str]]:
        if summary.total == 0:
            return SyncStrategy.FULL, ["Catalog is empty; a full sync is needed to populate it"]

        if critical > 0:
            reasons = [f"{critical} items need urgent sync"]
            if summary.out_of_stock:
                reasons.append(f"{summary.out_of_stock} items are out of stock")
            if summary.need_reorder:
                reasons.append(f"{summary.need_reorder} items are at or below their reorder point")
            if summary.urgent_stale:
                reasons.append(
                    f"{summary.urgent_stale} items unsynced for more than {self._urgent_minutes} minutes"
                )
            return SyncStrategy.CRITICAL, reasons

        stale_total = summary.stale + summary.never_synced
        stale_fraction = stale_total / summary.total
        if stale_fraction >= self._smart_fraction:
            return SyncStrategy.SMART, [
                f"{stale_total} of {summary.total} items ({stale_fraction:.0%}) are stale or never synced"
            ]

        if full_overdue:
            return SyncStrategy.FULL, [
                f"No successful full sync in the last {self._full_interval_hours} hours"
            ]

        return SyncStrategy.INVENTORY, ["Catalog is healthy; routine inventory refresh"]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def decide_strategy(self, now: Optional[datetime] = None) -> SyncStrategy:
        """The strategy the next run should use."""
        now = now or utc_now()
        summary, critical = self._summarize(now)
        strategy, _ = self._decide(summary, critical, self._full_sync_overdue(now))
        return strategy

    def next_run_due_at(self, strategy: Optional[SyncStrategy] = None, now: Optional[datetime] = None) -> datetime:
        """
        When the next run of a strategy is due.

        Args:
            strategy: Strategy to check (defaults to decide_strategy())
            now: Reference time

        Returns:
            Last run start plus the strategy interval (now when never run),
            moved past business hours for FULL and SMART
        """
        now = now or utc_now()
        strategy = SyncStrategy(strategy) if strategy is not None else self.decide_strategy(now)

        last_run = self._ledger.get_latest_run(strategy)
        if last_run is None:
            due = now
        else:
            due = last_run.started_at + timedelta(minutes=STRATEGY_INTERVAL_MINUTES[strategy.value])

        if strategy in DEFERRABLE_STRATEGIES:
            due = self._defer_past_business_hours(max(due, now))
        return due

    def _defer_past_business_hours(self, due: datetime) -> datetime:
        if is_business_hours(due, self._business_start, self._business_end):
            return due.replace(hour=self._business_end, minute=0, second=0, microsecond=0)
        return due

    def analyze_and_recommend(self, now: Optional[datetime] = None) -> SyncAnalysis:
        """Full recommendation with reasoning, urgency and cost estimate."""
        now = now or utc_now()
        summary, critical = self._summarize(now)
        full_overdue = self._full_sync_overdue(now)
        strategy, reasoning = self._decide(summary, critical, full_overdue)
        change_rate = self._ledger.get_recent_change_rate(now=now)

        return SyncAnalysis(
            strategy=strategy.value,
            urgency=self._urgency(summary, strategy, full_overdue),
            reasoning=reasoning,
            estimated_duration_seconds=self._estimate_duration(strategy, summary, critical, change_rate),
            critical_summary=summary,
            next_run_at=self.next_run_due_at(strategy, now),
            full_sync_overdue=full_overdue,
            change_rate=change_rate,
        )

    def should_run_now(self, now: Optional[datetime] = None) -> Tuple[Optional[SyncStrategy], SyncAnalysis]:
        """
        Strategy to dispatch right now, if any.

        The decided strategy runs when it is due. When it is not, an overdue
        full sync and then the routine inventory refresh are considered, so a
        catalog with permanently out-of-stock items still gets refreshed.

        Returns:
            (strategy or None, analysis)
        """
        now = now or utc_now()
        analysis = self.analyze_and_recommend(now)
        decided = SyncStrategy(analysis.strategy)

        candidates = [decided]
        if analysis.full_sync_overdue:
            candidates.append(SyncStrategy.FULL)
        candidates.append(SyncStrategy.INVENTORY)

        for strategy in dict.fromkeys(candidates):
            due = analysis.next_run_at if strategy == decided else self.next_run_due_at(strategy, now)
            if due <= now:
                if strategy != decided:
                    logger.info(f"{decided.value} not due until {analysis.next_run_at}; running {strategy.value}")
                return strategy, analysis

        logger.debug(f"No sync due (next {decided.value} at {analysis.next_run_at})")
        return None, analysis

    def next_due_by_strategy(self, now: Optional[datetime] = None) -> Dict[str, datetime]:
        now = now or utc_now()
        return {strategy.value: self.next_run_due_at(strategy, now) for strategy in SyncStrategy}

    # ------------------------------------------------------------------
    # Estimates
    # ------------------------------------------------------------------

    def _urgency(self, summary: CriticalSummary, strategy: SyncStrategy, full_overdue: bool) -> str:
        if summary.out_of_stock:
            return "critical"
        if strategy == SyncStrategy.CRITICAL:
            return "high"
        if strategy == SyncStrategy.SMART or full_overdue:
            return "medium"
        return "low"

    def _estimate_duration(
        self,
        strategy: SyncStrategy,
        summary: CriticalSummary,
        critical: int,
        change_rate: Optional[float],
    ) -> float:
        pages = math.ceil(summary.total / self._page_size) if summary.total else 1
        fetch_seconds = pages / self._requests_per_second if self._requests_per_second > 0 else 0.0

        if strategy == SyncStrategy.FULL:
            writes = summary.total
        elif strategy == SyncStrategy.CRITICAL:
            writes = critical
        elif strategy == SyncStrategy.SMART:
            writes = summary.stale + summary.never_synced
        else:
            rate = change_rate if change_rate is not None else DEFAULT_CHANGE_RATE
            writes = int(summary.total * rate)

        return round(fetch_seconds + writes * WRITE_SECONDS_PER_ITEM, 1)
