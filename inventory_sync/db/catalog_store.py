"""
Catalog Store — inventory_items reads and writes for the sync engine.

Provides:
- Stored fingerprint lookups for change detection
- Batch and single-item upserts keyed by SKU
- Catalog health snapshots for the scheduler and monitor
- Soft deactivation (items are never deleted by the engine)

Uses Supabase/PostgreSQL for persistence with the inventory_items table.
Version: 1.0.0
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Set

import httpx
from postgrest.exceptions import APIError

from inventory_sync.core.constants.sync import INVENTORY_ITEMS_TABLE
from inventory_sync.core.exceptions import DatabaseTransientError, ItemWriteError
from inventory_sync.db.base_store import BaseStore
from inventory_sync.utils.schedule_helpers import parse_timestamp, utc_now

logger = logging.getLogger("catalog_store")

# Columns needed to diff an upstream record against its stored row
STORED_ROW_COLUMNS = (
    "sku, product_name, stock, cost, vendor, location, reorder_point, "
    "reorder_quantity, content_hash, last_synced_at, active"
)
SNAPSHOT_COLUMNS = "sku, stock, reorder_point, last_synced_at"

# PostgREST caps responses at 1000 rows
PAGE_SIZE = 1000
# Keep IN (...) filters well under URL length limits
SKU_CHUNK_SIZE = 200


def _chunks(items: List[str], size: int) -> Iterable[List[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


class CatalogStore(BaseStore):
    """Database operations for catalog items."""

    def get_items_by_skus(self, skus: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        """
        Fetch stored rows for the given SKUs.

        Args:
            skus: SKUs to look up

        Returns:
            Dict mapping SKU to its stored row (missing SKUs are absent)

        Raises:
            DatabaseTransientError: Catalog store unreachable
        """
        unique = sorted(set(skus))
        rows: Dict[str, Dict[str, Any]] = {}

        for chunk in _chunks(unique, SKU_CHUNK_SIZE):
            result = self._execute(
                self.client.table(INVENTORY_ITEMS_TABLE)
                .select(STORED_ROW_COLUMNS)
                .in_("sku", chunk),
                "select stored rows",
            )
            for row in result.data or []:
                rows[row["sku"]] = row

        return rows

    def upsert_items(self, rows: List[Dict[str, Any]]) -> int:
        """
        Upsert a batch of catalog rows in one statement.

        Returns:
            Number of rows written

        Raises:
            DatabaseTransientError: The batch statement failed
        """
        if not rows:
            return 0
        self._execute(
            self.client.table(INVENTORY_ITEMS_TABLE).upsert(rows, on_conflict="sku"),
            f"upsert {len(rows)} items",
        )
        return len(rows)

    def upsert_item(self, row: Dict[str, Any]) -> None:
        """
        Upsert a single catalog row.

        Raises:
            ItemWriteError: The row was rejected (constraint violation, bad data)
            DatabaseTransientError: Catalog store unreachable
        """
        sku = row.get("sku", "?")
        try:
            self.client.table(INVENTORY_ITEMS_TABLE).upsert(row, on_conflict="sku").execute()
        except APIError as e:
            logger.warning(f"Item write rejected for {sku}: {e}")
            raise ItemWriteError(sku, str(e)) from e
        except httpx.HTTPError as e:
            raise DatabaseTransientError(f"Supabase upsert {sku} failed: {e}") from e

    def get_active_items(self, columns: str = "*") -> List[Dict[str, Any]]:
        """All active catalog rows, paging through PostgREST's row cap."""
        items: List[Dict[str, Any]] = []
        offset = 0

        while True:
            result = self._execute(
                self.client.table(INVENTORY_ITEMS_TABLE)
                .select(columns)
                .eq("active", True)
                .order("sku")
                .range(offset, offset + PAGE_SIZE - 1),
                "select active items",
            )
            page = result.data or []
            items.extend(page)
            if len(page) < PAGE_SIZE:
                return items
            offset += PAGE_SIZE

    def get_health_snapshot(self) -> List[Dict[str, Any]]:
        """Stock and sync-age columns of every active item (scheduler input)."""
        return self.get_active_items(SNAPSHOT_COLUMNS)

    def get_active_skus(self) -> Set[str]:
        return {row["sku"] for row in self.get_active_items("sku")}

    def get_critical_skus(self, urgent_minutes: int, now: Optional[datetime] = None) -> Set[str]:
        """
        SKUs that need an urgent sync.

        An item is critical when it is out of stock, at or below its reorder
        point, or has not been synced within urgent_minutes.
        """
        cutoff = (now or utc_now()) - timedelta(minutes=urgent_minutes)
        return {
            row["sku"]
            for row in self.get_health_snapshot()
            if is_critical_row(row, cutoff)
        }

    def deactivate_items(self, skus: Iterable[str]) -> int:
        """
        Soft-deactivate items no longer returned upstream.

        Returns:
            Number of items deactivated
        """
        pending = sorted(set(skus))
        if not pending:
            return 0

        now = utc_now().isoformat()
        count = 0
        for chunk in _chunks(pending, SKU_CHUNK_SIZE):
            result = self._execute(
                self.client.table(INVENTORY_ITEMS_TABLE)
                .update({"active": False, "updated_at": now})
                .in_("sku", chunk),
                "deactivate items",
            )
            count += len(result.data) if result.data else 0

        logger.info(f"Deactivated {count} catalog items missing upstream")
        return count

    def count_active_items(self) -> int:
        result = self._execute(
            self.client.table(INVENTORY_ITEMS_TABLE)
            .select("id", count="exact")
            .eq("active", True)
            .limit(1),
            "count active items",
        )
        return result.count or 0


def is_critical_row(row: Dict[str, Any], stale_cutoff: datetime) -> bool:
    """
    Out of stock, at/below reorder point, or unsynced since stale_cutoff.

    Never-synced rows are not critical on age alone; the scheduler counts
    them toward the smart strategy instead.
    """
    stock = row.get("stock") or 0
    reorder_point = row.get("reorder_point") or 0
    if stock <= 0:
        return True
    if reorder_point > 0 and stock <= reorder_point:
        return True
    last_synced = parse_timestamp(row.get("last_synced_at"))
    return last_synced is not None and last_synced < stale_cutoff
