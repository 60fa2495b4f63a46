"""
Change detection — decide which upstream records need a catalog write.

Missed changes are worse than redundant writes, so every ambiguous case
(no stored hash, unreadable record) counts as changed.
Version: 1.0.0
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Sequence, Tuple

from inventory_sync.core.constants.sync import (
    PRIORITY_BASE,
    PRIORITY_BELOW_REORDER,
    PRIORITY_NEW_ITEM,
    PRIORITY_OUT_OF_STOCK,
)
from inventory_sync.schemas.inventory import InventoryRecord
from inventory_sync.utils.hash_utils import FINGERPRINT_FIELDS, compute_fingerprint, fingerprint_fields
from inventory_sync.utils.schedule_helpers import parse_timestamp, utc_now

logger = logging.getLogger(__name__)


class ChangeResult(NamedTuple):
    changed: bool
    reason: str
    changed_fields: List[str]
    priority: int
    content_hash: str


class ChangeAnalysis(NamedTuple):
    changed: List[Tuple[InventoryRecord, ChangeResult]]
    unchanged: int
    new_items: int


def has_changed(record: InventoryRecord, stored_hash: Optional[str]) -> bool:
    """True unless the record's fingerprint provably equals stored_hash."""
    if not stored_hash:
        return True
    try:
        return compute_fingerprint(record) != stored_hash
    except (TypeError, ValueError) as e:
        logger.warning(f"Could not fingerprint {getattr(record, 'sku', '?')}, treating as changed: {e}")
        return True


def calculate_priority(
    record: InventoryRecord, stored_row: Optional[Mapping[str, Any]], now: Optional[datetime] = None
) -> int:
    """Sync priority of a changed record (higher first)."""
    if record.is_out_of_stock:
        return PRIORITY_OUT_OF_STOCK
    if record.is_at_or_below_reorder:
        return PRIORITY_BELOW_REORDER
    if stored_row is None:
        return PRIORITY_NEW_ITEM

    priority = PRIORITY_BASE
    last_synced = parse_timestamp(stored_row.get("last_synced_at"))
    if last_synced is not None:
        hours = ((now or utc_now()) - last_synced).total_seconds() / 3600
        if hours > 24:
            priority += 2
        elif hours > 6:
            priority += 1
    return priority


def _drifted_fields(record: InventoryRecord, stored_row: Mapping[str, Any]) -> List[str]:
    new_fields = fingerprint_fields(record)
    old_fields = fingerprint_fields(stored_row)
    return [f for f in FINGERPRINT_FIELDS if new_fields[f] != old_fields[f]]


def detect_changes(
    record: InventoryRecord,
    stored_row: Optional[Mapping[str, Any]],
    now: Optional[datetime] = None,
    verify_columns: bool = False,
) -> ChangeResult:
    """
    Compare a record with its stored catalog row.

    A soft-deactivated row always counts as changed so the write reactivates
    it. With verify_columns, a matching hash is also checked against the
    stored columns, catching rows edited behind their hash.
    """
    new_hash = compute_fingerprint(record)
    priority = calculate_priority(record, stored_row, now)

    if stored_row is None:
        return ChangeResult(True, "new_item", list(FINGERPRINT_FIELDS), priority, new_hash)

    if stored_row.get("active") is False:
        return ChangeResult(True, "reactivated", _drifted_fields(record, stored_row), priority, new_hash)

    stored_hash = stored_row.get("content_hash")
    if not has_changed(record, stored_hash):
        if verify_columns:
            drifted = _drifted_fields(record, stored_row)
            if drifted:
                return ChangeResult(True, f"column_drift: {', '.join(drifted)}", drifted, priority, new_hash)
        return ChangeResult(False, "no_change", [], priority, new_hash)

    if not stored_hash:
        return ChangeResult(True, "no_stored_hash", list(FINGERPRINT_FIELDS), priority, new_hash)

    changed_fields = _drifted_fields(record, stored_row)
    if not changed_fields:
        # Hash differs but columns match: the stored row drifted from its hash
        return ChangeResult(True, "hash_mismatch", [], priority, new_hash)

    return ChangeResult(True, f"changed: {', '.join(changed_fields)}", changed_fields, priority, new_hash)


def filter_changed_items(
    records: Sequence[InventoryRecord],
    stored_rows: Dict[str, Mapping[str, Any]],
    force: bool = False,
    now: Optional[datetime] = None,
    verify_columns: bool = False,
) -> ChangeAnalysis:
    """
    Split records into changed and unchanged.

    Args:
        records: Validated upstream records
        stored_rows: Current catalog rows keyed by SKU
        force: Treat every record as changed (SKU-scoped retries)
        now: Reference time for staleness priority
        verify_columns: Also compare stored columns when hashes match

    Returns:
        ChangeAnalysis with changed records sorted by priority (highest first)
    """
    changed: List[Tuple[InventoryRecord, ChangeResult]] = []
    unchanged = 0
    new_items = 0

    for record in records:
        stored = stored_rows.get(record.sku)
        result = detect_changes(record, stored, now, verify_columns)
        if stored is None:
            new_items += 1
        if result.changed:
            changed.append((record, result))
        elif force:
            changed.append((record, result._replace(changed=True, reason="forced")))
        else:
            unchanged += 1

    changed.sort(key=lambda pair: pair[1].priority, reverse=True)
    return ChangeAnalysis(changed=changed, unchanged=unchanged, new_items=new_items)


def calculate_sync_stats(total_items: int, changed_items: int, duration_seconds: float) -> Dict[str, float]:
    """Efficiency statistics stored in run metadata."""
    change_rate = (changed_items / total_items * 100) if total_items else 0.0
    items_per_second = (total_items / duration_seconds) if duration_seconds > 0 else 0.0
    return {
        "change_rate": round(change_rate, 2),
        "items_per_second": round(items_per_second, 2),
        "efficiency_gain": round(100 - change_rate, 2),
        "estimated_full_sync_seconds": round(total_items / items_per_second, 1) if items_per_second else 0.0,
    }
