"""
Sync strategies — one plan builder per SyncStrategy member.

A plan tells the executor which upstream records are in scope, whether
fingerprint equality may skip a write, whether stored columns are checked
behind a matching hash, how records are ordered inside a page, and whether
unseen SKUs are deactivated after the run.

The handler table is checked for exhaustiveness at import time, so adding
a SyncStrategy member without a handler fails immediately.
Version: 1.0.0
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, FrozenSet, Optional

from inventory_sync.db.catalog_store import CatalogStore
from inventory_sync.schemas.inventory import InventoryRecord, SyncStrategy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StrategyContext:
    catalog: CatalogStore
    now: datetime
    urgent_staleness_minutes: int
    only_skus: Optional[FrozenSet[str]] = None


@dataclass(frozen=True)
class StrategyPlan:
    strategy: SyncStrategy
    force_write: bool = False
    verify_columns: bool = False
    priority_order: bool = False
    deactivate_missing: bool = False
    sku_filter: Optional[FrozenSet[str]] = None
    critical_skus: Optional[FrozenSet[str]] = None

    def includes(self, record: InventoryRecord) -> bool:
        """Whether a validated upstream record is in scope."""
        if self.sku_filter is not None and record.sku not in self.sku_filter:
            return False
        if self.critical_skus is not None:
            return (
                record.is_out_of_stock
                or record.is_at_or_below_reorder
                or record.sku in self.critical_skus
            )
        return True

    def includes_sku(self, sku: Optional[str]) -> bool:
        """Scope check for a record that failed validation."""
        if sku is None:
            return self.sku_filter is None and self.critical_skus is None
        if self.sku_filter is not None and sku not in self.sku_filter:
            return False
        if self.critical_skus is not None:
            return sku in self.critical_skus
        return True


def _plan_full(ctx: StrategyContext) -> StrategyPlan:
    # Deactivation only applies to an unfiltered pass
    return StrategyPlan(
        strategy=SyncStrategy.FULL,
        force_write=ctx.only_skus is not None,
        verify_columns=True,
        deactivate_missing=ctx.only_skus is None,
        sku_filter=ctx.only_skus,
    )


def _plan_inventory(ctx: StrategyContext) -> StrategyPlan:
    return StrategyPlan(
        strategy=SyncStrategy.INVENTORY,
        force_write=ctx.only_skus is not None,
        sku_filter=ctx.only_skus,
    )


def _plan_critical(ctx: StrategyContext) -> StrategyPlan:
    critical = frozenset(ctx.catalog.get_critical_skus(ctx.urgent_staleness_minutes, now=ctx.now))
    logger.info(f"Critical sync scope: {len(critical)} catalog SKUs plus upstream critical records")
    return StrategyPlan(
        strategy=SyncStrategy.CRITICAL,
        force_write=ctx.only_skus is not None,
        sku_filter=ctx.only_skus,
        critical_skus=critical,
    )


def _plan_smart(ctx: StrategyContext) -> StrategyPlan:
    return StrategyPlan(
        strategy=SyncStrategy.SMART,
        force_write=ctx.only_skus is not None,
        priority_order=True,
        sku_filter=ctx.only_skus,
    )


STRATEGY_HANDLERS: Dict[SyncStrategy, Callable[[StrategyContext], StrategyPlan]] = {
    SyncStrategy.FULL: _plan_full,
    SyncStrategy.INVENTORY: _plan_inventory,
    SyncStrategy.CRITICAL: _plan_critical,
    SyncStrategy.SMART: _plan_smart,
}

_unhandled = set(SyncStrategy) - set(STRATEGY_HANDLERS)
if _unhandled:
    raise RuntimeError(f"No sync handler for strategies: {sorted(s.value for s in _unhandled)}")


def build_plan(strategy: SyncStrategy, ctx: StrategyContext) -> StrategyPlan:
    """Resolve the plan for a strategy."""
    return STRATEGY_HANDLERS[SyncStrategy(strategy)](ctx)
