"""
Inventory schemas — upstream records, catalog rows, ledger and alert models.

Domain models shared by the sync executor, stores, scheduler and monitor.
Upstream records arrive in camelCase or snake_case; both are accepted.
Version: 1.0.0
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from inventory_sync.utils.schedule_helpers import parse_timestamp


class SyncStrategy(str, Enum):
    """Sync kinds. Each member has exactly one executor handler."""
    FULL = "full"
    INVENTORY = "inventory"
    CRITICAL = "critical"
    SMART = "smart"


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


# ============================================
# Upstream records
# ============================================
class InventoryRecord(BaseModel):
    """One item record as returned by the inventory API."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sku: str = Field(..., min_length=1, validation_alias=AliasChoices("sku", "productSku", "productId"))
    external_id: Optional[str] = Field(None, validation_alias=AliasChoices("external_id", "externalId", "productUrl", "id"))
    product_name: Optional[str] = Field(None, validation_alias=AliasChoices("product_name", "productName", "internalName", "name"))
    stock: int = Field(0, ge=0, validation_alias=AliasChoices("stock", "quantityOnHand", "quantity"))
    reorder_point: int = Field(0, ge=0, validation_alias=AliasChoices("reorder_point", "reorderPoint"))
    reorder_quantity: int = Field(0, ge=0, validation_alias=AliasChoices("reorder_quantity", "reorderQuantity"))
    cost: Optional[float] = Field(None, validation_alias=AliasChoices("cost", "unitCost"))
    vendor: Optional[str] = Field(None, validation_alias=AliasChoices("vendor", "supplier"))
    location: Optional[str] = Field(None, validation_alias=AliasChoices("location", "facility"))
    sales_last_30_days: int = Field(0, validation_alias=AliasChoices("sales_last_30_days", "salesLast30Days"))
    sales_last_90_days: int = Field(0, validation_alias=AliasChoices("sales_last_90_days", "salesLast90Days"))

    @field_validator("sku")
    @classmethod
    def strip_sku(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("sku must not be blank")
        return v

    @field_validator("external_id", mode="before")
    @classmethod
    def external_id_as_str(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)

    @property
    def is_out_of_stock(self) -> bool:
        return self.stock == 0

    @property
    def is_at_or_below_reorder(self) -> bool:
        return self.reorder_point > 0 and self.stock <= self.reorder_point

    def to_catalog_row(self, content_hash: str, synced_at: datetime, priority: int = 0) -> Dict[str, Any]:
        """Build the inventory_items upsert payload."""
        return {
            "sku": self.sku,
            "external_id": self.external_id,
            "product_name": self.product_name,
            "stock": self.stock,
            "reorder_point": self.reorder_point,
            "reorder_quantity": self.reorder_quantity,
            "cost": self.cost,
            "vendor": self.vendor,
            "location": self.location,
            "sales_last_30_days": self.sales_last_30_days,
            "sales_last_90_days": self.sales_last_90_days,
            "content_hash": content_hash,
            "sync_priority": priority,
            "last_synced_at": synced_at.isoformat(),
            "active": True,
        }


class InventoryPage(BaseModel):
    """One page from the inventory API. next_cursor is None on the last page."""
    records: List[Dict[str, Any]]
    next_cursor: Optional[str] = None

    @property
    def is_last(self) -> bool:
        return self.next_cursor is None


# ============================================
# Ledger
# ============================================
class SyncRun(BaseModel):
    """One sync_logs row."""
    id: Optional[str] = None
    kind: SyncStrategy
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    items_processed: int = 0
    items_updated: int = 0
    items_failed: int = 0
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("started_at", "completed_at", mode="before")
    @classmethod
    def as_utc(cls, v: Any) -> Optional[datetime]:
        return parse_timestamp(v)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SyncRun":
        return cls(
            id=str(row["id"]) if row.get("id") is not None else None,
            kind=row["sync_type"],
            status=row["status"],
            started_at=row["started_at"],
            completed_at=row.get("completed_at"),
            duration_ms=row.get("duration_ms"),
            items_processed=row.get("items_processed") or 0,
            items_updated=row.get("items_updated") or 0,
            items_failed=row.get("items_failed") or 0,
            errors=row.get("errors") or [],
            metadata=row.get("metadata") or {},
        )


# ============================================
# Failure tracker
# ============================================
class FailedItem(BaseModel):
    """One failed_items row."""
    id: Optional[int] = None
    sku: str
    sync_id: str
    error_message: Optional[str] = None
    retry_count: int = 0
    last_retry_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("sync_id", mode="before")
    @classmethod
    def sync_id_as_str(cls, v: Any) -> str:
        return str(v)

    @field_validator("metadata", mode="before")
    @classmethod
    def metadata_default(cls, v: Any) -> Dict[str, Any]:
        return v or {}

    @field_validator("last_retry_at", "resolved_at", "created_at", mode="before")
    @classmethod
    def as_utc(cls, v: Any) -> Optional[datetime]:
        return parse_timestamp(v)

    @property
    def needs_review(self) -> bool:
        return bool(self.metadata.get("needs_review"))

    @property
    def is_open(self) -> bool:
        return self.resolved_at is None


# ============================================
# Monitor
# ============================================
class Alert(BaseModel):
    """One inventory_alerts row."""
    id: Optional[str] = None
    sku: str
    product_name: Optional[str] = None
    alert_type: str
    severity: str
    current_value: Optional[float] = None
    threshold_value: Optional[float] = None
    previous_value: Optional[float] = None
    acknowledged: bool = False
    acknowledged_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def id_as_str(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)

    @field_validator("acknowledged_at", "created_at", mode="before")
    @classmethod
    def as_utc(cls, v: Any) -> Optional[datetime]:
        return parse_timestamp(v)

    @field_validator("metadata", mode="before")
    @classmethod
    def metadata_default(cls, v: Any) -> Dict[str, Any]:
        return v or {}


class MonitorState(BaseModel):
    """Last-known state of one watched SKU."""
    sku: str
    stock: Optional[int] = None
    cost: Optional[float] = None
    vendor: Optional[str] = None
    reorder_point: Optional[int] = None
    condition: Optional[str] = None
    state: str = "normal"
    alert_id: Optional[str] = None
    updated_at: Optional[datetime] = None

    @field_validator("alert_id", mode="before")
    @classmethod
    def alert_id_as_str(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)
