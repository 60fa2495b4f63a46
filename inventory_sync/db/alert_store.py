"""
Alert Store — persisted alerts and per-item monitor state.

Provides database operations for:
- inventory_alerts: alerts raised by the critical-item monitor, consumed by
  external notification channels (email, dashboard)
- inventory_monitor_state: last-known values and alert state per SKU, so
  alerting compares against stored state instead of trusting a change feed
Version: 1.0.0
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from inventory_sync.core.constants.alerts import ALERTS_TABLE, MONITOR_STATE_TABLE
from inventory_sync.core.exceptions import AlertNotFoundError
from inventory_sync.db.base_store import BaseStore
from inventory_sync.schemas.inventory import Alert, MonitorState
from inventory_sync.utils.schedule_helpers import utc_now

logger = logging.getLogger("alert_store")


class AlertStore(BaseStore):
    """Database operations for inventory alerts."""

    def create_alert(self, alert: Alert) -> Alert:
        row = alert.model_dump(exclude={"id", "acknowledged_at", "created_at"}, mode="json")
        row["created_at"] = utc_now().isoformat()
        result = self._execute(
            self.client.table(ALERTS_TABLE).insert(row),
            f"insert {alert.alert_type} alert {alert.sku}",
        )
        stored = Alert(**result.data[0]) if result.data else alert
        logger.info(
            f"Alert raised: {alert.alert_type} ({alert.severity}) for {alert.sku} "
            f"current={alert.current_value} threshold={alert.threshold_value}"
        )
        return stored

    def get_alert(self, alert_id: str) -> Alert:
        result = self._execute(
            self.client.table(ALERTS_TABLE).select("*").eq("id", alert_id).limit(1),
            f"get alert {alert_id}",
        )
        if not result.data:
            raise AlertNotFoundError(f"Alert {alert_id} not found")
        return Alert(**result.data[0])

    def list_alerts(
        self,
        acknowledged: Optional[bool] = None,
        sku: Optional[str] = None,
        limit: int = 100,
    ) -> List[Alert]:
        query = self.client.table(ALERTS_TABLE).select("*")
        if acknowledged is not None:
            query = query.eq("acknowledged", acknowledged)
        if sku:
            query = query.eq("sku", sku)

        result = self._execute(query.order("created_at", desc=True).limit(limit), "list alerts")
        return [Alert(**row) for row in result.data or []]

    def acknowledge_alert(self, alert_id: str, now: Optional[datetime] = None) -> Alert:
        """
        Mark an alert as acknowledged by an operator.

        Raises:
            AlertNotFoundError: No alert with this id
        """
        now = now or utc_now()
        result = self._execute(
            self.client.table(ALERTS_TABLE)
            .update({"acknowledged": True, "acknowledged_at": now.isoformat()})
            .eq("id", alert_id),
            f"acknowledge alert {alert_id}",
        )
        if not result.data:
            raise AlertNotFoundError(f"Alert {alert_id} not found")
        return Alert(**result.data[0])

    def count_unacknowledged(self) -> int:
        result = self._execute(
            self.client.table(ALERTS_TABLE)
            .select("id", count="exact")
            .eq("acknowledged", False)
            .limit(1),
            "count unacknowledged alerts",
        )
        return result.count or 0


class MonitorStateStore(BaseStore):
    """Database operations for per-SKU monitor state."""

    def get_state(self, sku: str) -> Optional[MonitorState]:
        result = self._execute(
            self.client.table(MONITOR_STATE_TABLE).select("*").eq("sku", sku).limit(1),
            f"get monitor state {sku}",
        )
        return MonitorState(**result.data[0]) if result.data else None

    def get_states(self, skus: List[str]) -> Dict[str, MonitorState]:
        if not skus:
            return {}
        result = self._execute(
            self.client.table(MONITOR_STATE_TABLE).select("*").in_("sku", skus),
            "get monitor states",
        )
        return {row["sku"]: MonitorState(**row) for row in result.data or []}

    def list_active_states(self) -> List[MonitorState]:
        """States currently alerting or acknowledged."""
        result = self._execute(
            self.client.table(MONITOR_STATE_TABLE).select("*").neq("state", "normal"),
            "list active monitor states",
        )
        return [MonitorState(**row) for row in result.data or []]

    def save_state(self, state: MonitorState) -> None:
        row: Dict[str, Any] = state.model_dump(mode="json")
        row["updated_at"] = utc_now().isoformat()
        self._execute(
            self.client.table(MONITOR_STATE_TABLE).upsert(row, on_conflict="sku"),
            f"save monitor state {state.sku}",
        )
