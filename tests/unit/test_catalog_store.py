"""
Unit tests for CatalogStore — stored-row lookups, upserts, snapshots,
critical SKU selection and soft deactivation.
Version: 1.0.0
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import httpx
import pytest
from postgrest.exceptions import APIError

from inventory_sync.core.exceptions import DatabaseTransientError, ItemWriteError
from inventory_sync.db.catalog_store import CatalogStore, PAGE_SIZE, SKU_CHUNK_SIZE, is_critical_row

NOW = datetime(2025, 6, 2, 12, 0, tzinfo=timezone.utc)


def _store(mock_supabase_client):
    return CatalogStore(mock_supabase_client)


@pytest.mark.unit
class TestGetItemsBySkus:
    def test_returns_rows_keyed_by_sku(self, mock_supabase_client, mock_table):
        mock_table.execute.return_value = MagicMock(data=[{"sku": "A", "content_hash": "h1"}])

        rows = _store(mock_supabase_client).get_items_by_skus(["A", "B", "A"])

        assert rows == {"A": {"sku": "A", "content_hash": "h1"}}
        mock_table.in_.assert_called_once_with("sku", ["A", "B"])

    def test_chunks_large_lookups(self, mock_supabase_client, mock_table):
        skus = [f"S{i:04d}" for i in range(SKU_CHUNK_SIZE + 5)]

        _store(mock_supabase_client).get_items_by_skus(skus)

        assert mock_table.in_.call_count == 2

    def test_api_error_becomes_transient(self, mock_supabase_client, mock_table):
        mock_table.execute.side_effect = APIError({"message": "boom", "code": "500"})

        with pytest.raises(DatabaseTransientError):
            _store(mock_supabase_client).get_items_by_skus(["A"])


@pytest.mark.unit
class TestUpserts:
    def test_upsert_items_uses_sku_conflict_key(self, mock_supabase_client, mock_table):
        rows = [{"sku": "A"}, {"sku": "B"}]

        written = _store(mock_supabase_client).upsert_items(rows)

        assert written == 2
        mock_table.upsert.assert_called_once_with(rows, on_conflict="sku")

    def test_upsert_items_empty_is_noop(self, mock_supabase_client, mock_table):
        assert _store(mock_supabase_client).upsert_items([]) == 0
        mock_table.upsert.assert_not_called()

    def test_upsert_item_rejection_is_item_error(self, mock_supabase_client, mock_table):
        mock_table.execute.side_effect = APIError({"message": "check constraint", "code": "23514"})

        with pytest.raises(ItemWriteError) as exc_info:
            _store(mock_supabase_client).upsert_item({"sku": "BAD"})

        assert exc_info.value.sku == "BAD"

    def test_upsert_item_network_error_is_transient(self, mock_supabase_client, mock_table):
        mock_table.execute.side_effect = httpx.ConnectError("refused")

        with pytest.raises(DatabaseTransientError):
            _store(mock_supabase_client).upsert_item({"sku": "A"})


@pytest.mark.unit
class TestActiveItems:
    def test_pages_through_row_cap(self, mock_supabase_client, mock_table):
        full_page = [{"sku": f"S{i}"} for i in range(PAGE_SIZE)]
        mock_table.execute.side_effect = [MagicMock(data=full_page), MagicMock(data=[{"sku": "LAST"}])]

        items = _store(mock_supabase_client).get_active_items("sku")

        assert len(items) == PAGE_SIZE + 1
        mock_table.range.assert_any_call(PAGE_SIZE, 2 * PAGE_SIZE - 1)

    def test_get_critical_skus(self, mock_supabase_client, mock_table):
        mock_table.execute.return_value = MagicMock(data=[
            {"sku": "OUT", "stock": 0, "reorder_point": 5, "last_synced_at": NOW.isoformat()},
            {"sku": "LOW", "stock": 3, "reorder_point": 5, "last_synced_at": NOW.isoformat()},
            {"sku": "OLD", "stock": 50, "reorder_point": 5, "last_synced_at": (NOW - timedelta(hours=5)).isoformat()},
            {"sku": "OK", "stock": 50, "reorder_point": 5, "last_synced_at": NOW.isoformat()},
            {"sku": "NEVER", "stock": 50, "reorder_point": 5, "last_synced_at": None},
        ])

        critical = _store(mock_supabase_client).get_critical_skus(urgent_minutes=120, now=NOW)

        assert critical == {"OUT", "LOW", "OLD"}

    def test_count_active_items(self, mock_supabase_client, mock_table):
        mock_table.execute.return_value = MagicMock(data=[], count=42)

        assert _store(mock_supabase_client).count_active_items() == 42


@pytest.mark.unit
class TestDeactivateItems:
    def test_soft_deactivates_in_chunks(self, mock_supabase_client, mock_table):
        mock_table.execute.return_value = MagicMock(data=[{"sku": "x"}])
        skus = [f"S{i}" for i in range(SKU_CHUNK_SIZE + 1)]

        count = _store(mock_supabase_client).deactivate_items(skus)

        assert count == 2
        update_payload = mock_table.update.call_args.args[0]
        assert update_payload["active"] is False
        mock_table.delete.assert_not_called()

    def test_empty_is_noop(self, mock_supabase_client, mock_table):
        assert _store(mock_supabase_client).deactivate_items([]) == 0
        mock_table.update.assert_not_called()


@pytest.mark.unit
class TestIsCriticalRow:
    def test_never_synced_is_not_critical_on_age(self):
        cutoff = NOW - timedelta(minutes=120)
        assert is_critical_row({"stock": 10, "reorder_point": 2, "last_synced_at": None}, cutoff) is False

    def test_zero_reorder_point_ignored(self):
        cutoff = NOW - timedelta(minutes=120)
        assert is_critical_row({"stock": 1, "reorder_point": 0, "last_synced_at": NOW.isoformat()}, cutoff) is False
