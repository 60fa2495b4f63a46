"""
Unit tests for Pydantic schemas.

Tests valid construction and validation errors for the inventory record,
ledger and sync request models.

Version: 1.0.0
"""
import pytest
from datetime import datetime, timezone

from pydantic import ValidationError


pytestmark = pytest.mark.unit


# ---------------------------------------------------------------------------
# Inventory records
# ---------------------------------------------------------------------------

class TestInventoryRecord:
    """Tests for inventory_sync.schemas.inventory.InventoryRecord."""

    def test_camel_case_aliases(self):
        from inventory_sync.schemas.inventory import InventoryRecord
        record = InventoryRecord.model_validate({
            "productSku": " SKU-1 ",
            "productName": "Widget",
            "quantityOnHand": 12,
            "reorderPoint": 5,
            "unitCost": 3.5,
            "supplier": "ACME",
            "id": 991,
        })
        assert record.sku == "SKU-1"
        assert record.product_name == "Widget"
        assert record.stock == 12
        assert record.cost == 3.5
        assert record.vendor == "ACME"
        assert record.external_id == "991"

    def test_negative_stock_rejected(self):
        from inventory_sync.schemas.inventory import InventoryRecord
        with pytest.raises(ValidationError):
            InventoryRecord(sku="A", stock=-1)

    def test_blank_sku_rejected(self):
        from inventory_sync.schemas.inventory import InventoryRecord
        with pytest.raises(ValidationError):
            InventoryRecord(sku="   ")

    def test_stock_flags(self):
        from inventory_sync.schemas.inventory import InventoryRecord
        assert InventoryRecord(sku="A", stock=0).is_out_of_stock
        assert InventoryRecord(sku="A", stock=5, reorder_point=5).is_at_or_below_reorder
        assert not InventoryRecord(sku="A", stock=5, reorder_point=0).is_at_or_below_reorder

    def test_catalog_row(self):
        from inventory_sync.schemas.inventory import InventoryRecord
        synced = datetime(2025, 6, 1, tzinfo=timezone.utc)
        row = InventoryRecord(sku="A", stock=3).to_catalog_row("hash", synced, priority=9)
        assert row["content_hash"] == "hash"
        assert row["sync_priority"] == 9
        assert row["last_synced_at"] == synced.isoformat()
        assert row["active"] is True


class TestLedgerModels:
    """Tests for SyncRun and FailedItem."""

    def test_sync_run_from_row(self):
        from inventory_sync.schemas.inventory import RunStatus, SyncRun, SyncStrategy
        run = SyncRun.from_row({
            "id": 12,
            "sync_type": "smart",
            "status": "partial",
            "started_at": "2025-06-01T10:00:00Z",
            "errors": None,
            "metadata": None,
        })
        assert run.id == "12"
        assert run.kind == SyncStrategy.SMART
        assert run.status == RunStatus.PARTIAL
        assert run.started_at.tzinfo is not None
        assert run.errors == []

    def test_failed_item_flags(self):
        from inventory_sync.schemas.inventory import FailedItem
        item = FailedItem(sku="A", sync_id=5, metadata=None)
        assert item.sync_id == "5"
        assert item.is_open
        assert not item.needs_review


# ---------------------------------------------------------------------------
# Sync schemas
# ---------------------------------------------------------------------------

class TestSyncSchemas:
    """Tests for inventory_sync.schemas.sync."""

    def test_trigger_defaults_to_auto(self):
        from inventory_sync.schemas.sync import SyncTriggerRequest
        req = SyncTriggerRequest()
        assert req.strategy == "auto"
        assert req.dry_run is False
        assert req.skus is None

    def test_trigger_normalizes_strategy(self):
        from inventory_sync.schemas.sync import SyncTriggerRequest
        assert SyncTriggerRequest(strategy=" FULL ").strategy == "full"

    def test_trigger_rejects_unknown_strategy(self):
        from inventory_sync.schemas.sync import SyncTriggerRequest
        with pytest.raises(ValidationError):
            SyncTriggerRequest(strategy="everything")

    def test_trigger_cleans_skus(self):
        from inventory_sync.schemas.sync import SyncTriggerRequest
        assert SyncTriggerRequest(skus=[" A ", "", "B"]).skus == ["A", "B"]

    def test_trigger_rejects_empty_sku_list(self):
        from inventory_sync.schemas.sync import SyncTriggerRequest
        with pytest.raises(ValidationError):
            SyncTriggerRequest(skus=["  "])

    def test_cancel_request_default_reason(self):
        from inventory_sync.schemas.sync import CancelRequest
        assert CancelRequest().reason == "operator request"
