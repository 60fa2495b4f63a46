"""
Hash utilities — deterministic fingerprints for sync change detection.

The fingerprint covers only the fields downstream consumers act on:
stock, cost, reorder thresholds, vendor and location. Display names,
sales statistics and timestamps are excluded so they never force a write.
Keys are sorted before hashing, so field order never changes the result.
Version: 1.0.0
"""

import hashlib
import json
from typing import Any, Dict, Mapping, Union

from pydantic import BaseModel

FINGERPRINT_FIELDS = (
    "stock",
    "cost",
    "reorder_point",
    "reorder_quantity",
    "vendor",
    "location",
)

# Cost precision kept in the fingerprint
COST_DECIMALS = 4


def _normalize(field: str, value: Any) -> Any:
    """Canonical form of a field value (10, 10.0 and "10" hash the same)."""
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if field in ("vendor", "location"):
            return value or None
        try:
            value = float(value)
        except ValueError:
            return value
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if field == "cost":
            value = round(float(value), COST_DECIMALS)
        if float(value).is_integer():
            return int(value)
        return float(value)
    return value


def fingerprint_fields(record: Union[BaseModel, Mapping[str, Any]]) -> Dict[str, Any]:
    """Extract and normalize the fingerprinted fields of a record or catalog row."""
    data = record.model_dump() if isinstance(record, BaseModel) else record
    return {field: _normalize(field, data.get(field)) for field in FINGERPRINT_FIELDS}


def compute_fingerprint(record: Union[BaseModel, Mapping[str, Any]]) -> str:
    """
    Compute a deterministic hash of the change-relevant fields.

    Args:
        record: InventoryRecord or a dict with catalog column names

    Returns:
        SHA-256 hash string (first 16 chars for storage efficiency)
    """
    relevant_data = fingerprint_fields(record)

    json_str = json.dumps(relevant_data, sort_keys=True, default=str)
    hash_obj = hashlib.sha256(json_str.encode())

    return hash_obj.hexdigest()[:16]
