"""
Unit tests for sync strategy plans.
Version: 1.0.0
"""
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from inventory_sync.schemas.inventory import InventoryRecord, SyncStrategy
from inventory_sync.services.sync_strategies import STRATEGY_HANDLERS, StrategyContext, build_plan

NOW = datetime(2025, 6, 2, 12, 0, tzinfo=timezone.utc)


def _ctx(only_skus=None, critical=()):
    catalog = MagicMock()
    catalog.get_critical_skus.return_value = set(critical)
    return StrategyContext(
        catalog=catalog,
        now=NOW,
        urgent_staleness_minutes=120,
        only_skus=frozenset(only_skus) if only_skus is not None else None,
    )


def _record(sku, stock=50, reorder_point=10):
    return InventoryRecord(sku=sku, stock=stock, reorder_point=reorder_point)


@pytest.mark.unit
class TestHandlerTable:
    def test_every_strategy_has_a_handler(self):
        assert set(STRATEGY_HANDLERS) == set(SyncStrategy)

    def test_build_plan_accepts_string_value(self):
        assert build_plan("smart", _ctx()).strategy == SyncStrategy.SMART


@pytest.mark.unit
class TestFullPlan:
    def test_verifies_columns_and_deactivates(self):
        plan = build_plan(SyncStrategy.FULL, _ctx())
        assert plan.force_write is False
        assert plan.verify_columns is True
        assert plan.deactivate_missing is True
        assert plan.includes(_record("ANY"))

    def test_filtered_full_never_deactivates(self):
        plan = build_plan(SyncStrategy.FULL, _ctx(only_skus=["A"]))
        assert plan.deactivate_missing is False
        assert plan.includes(_record("A"))
        assert not plan.includes(_record("B"))


@pytest.mark.unit
class TestInventoryAndSmartPlans:
    def test_inventory_is_incremental(self):
        plan = build_plan(SyncStrategy.INVENTORY, _ctx())
        assert plan.force_write is False
        assert plan.priority_order is False
        assert plan.deactivate_missing is False

    def test_smart_orders_by_priority(self):
        plan = build_plan(SyncStrategy.SMART, _ctx())
        assert plan.priority_order is True
        assert plan.force_write is False

    def test_sku_scoped_runs_force_writes(self):
        for strategy in SyncStrategy:
            assert build_plan(strategy, _ctx(only_skus=["A"])).force_write is True


@pytest.mark.unit
class TestCriticalPlan:
    def test_scope_is_catalog_critical_plus_upstream_critical(self):
        ctx = _ctx(critical={"STALE"})
        plan = build_plan(SyncStrategy.CRITICAL, ctx)

        assert plan.includes(_record("STALE"))
        assert plan.includes(_record("NOW-OUT", stock=0))
        assert plan.includes(_record("NOW-LOW", stock=5))
        assert not plan.includes(_record("HEALTHY"))
        ctx.catalog.get_critical_skus.assert_called_once_with(120, now=NOW)

    def test_invalid_record_scope(self):
        plan = build_plan(SyncStrategy.CRITICAL, _ctx(critical={"STALE"}))

        assert plan.includes_sku("STALE")
        assert not plan.includes_sku("OTHER")
        assert not plan.includes_sku(None)

    def test_unscoped_plan_counts_unidentifiable_records(self):
        assert build_plan(SyncStrategy.INVENTORY, _ctx()).includes_sku(None)
