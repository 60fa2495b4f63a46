"""
Sync schemas — operational request/response models.

Defines request/response models for the sync control endpoints and the
scheduler's analysis.
Version: 1.0.0
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from inventory_sync.schemas.inventory import Alert, FailedItem, SyncRun

AUTO_STRATEGY = "auto"
TRIGGER_STRATEGIES = ("auto", "full", "inventory", "critical", "smart")


class CriticalSummary(BaseModel):
    out_of_stock: int = 0
    need_reorder: int = 0
    low_stock: int = 0
    urgent_stale: int = 0
    stale: int = 0
    never_synced: int = 0
    total: int = 0


class SyncAnalysis(BaseModel):
    """Scheduler recommendation with its reasoning."""
    strategy: str
    urgency: str  # 'low', 'medium', 'high', 'critical'
    reasoning: List[str]
    estimated_duration_seconds: float
    critical_summary: CriticalSummary
    next_run_at: datetime
    full_sync_overdue: bool = False
    change_rate: Optional[float] = None


# ============================================
# Requests
# ============================================
class SyncTriggerRequest(BaseModel):
    """Manual sync trigger."""
    strategy: str = Field(AUTO_STRATEGY, description="auto, full, inventory, critical or smart")
    dry_run: bool = Field(False, description="Report changes without writing")
    skus: Optional[List[str]] = Field(None, description="Restrict the run to these SKUs")

    @field_validator("strategy")
    @classmethod
    def known_strategy(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in TRIGGER_STRATEGIES:
            raise ValueError(f"strategy must be one of {', '.join(TRIGGER_STRATEGIES)}")
        return v

    @field_validator("skus")
    @classmethod
    def clean_skus(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return None
        cleaned = [sku.strip() for sku in v if sku and sku.strip()]
        if not cleaned:
            raise ValueError("skus must contain at least one SKU")
        return cleaned


class CancelRequest(BaseModel):
    reason: str = "operator request"


# ============================================
# Responses
# ============================================
class SyncTriggerResponse(BaseModel):
    task_id: str
    strategy: str
    dry_run: bool
    status: str = "queued"


class TaskStatusResponse(BaseModel):
    task_id: str
    state: str
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class SyncStatusResponse(BaseModel):
    """Operator view: is everything fine, does something need attention, or is sync broken."""
    state: str  # 'ok', 'attention', 'broken'
    latest_run: Optional[SyncRun] = None
    running: List[SyncRun]
    open_failures: int
    needs_review: List[FailedItem]
    unacknowledged_alerts: int = 0


class SyncRunsResponse(BaseModel):
    runs: List[SyncRun]
    total: int


class CancelResponse(BaseModel):
    run_id: str
    status: str
    reason: str


class StuckRunsResponse(BaseModel):
    runs: List[SyncRun]
    threshold_minutes: int


class FailuresResponse(BaseModel):
    items: List[FailedItem]
    total: int
    retry_cap: int


class ScheduleResponse(BaseModel):
    analysis: SyncAnalysis
    next_due: Dict[str, datetime]


class AlertsResponse(BaseModel):
    alerts: List[Alert]
    total: int


class MetricsResponse(BaseModel):
    sync: Dict[str, Any]
    alerts: Dict[str, int]
