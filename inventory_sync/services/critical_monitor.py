"""
Critical-Item Monitor — edge-triggered stock and price alerts.

Every catalog mutation is compared with the last-known state stored for
the SKU. An alert is emitted only when a condition newly becomes true, so
an item sitting at zero stock raises one out_of_stock alert, not one per
sync.

Per-item state machine for stock conditions:
    normal -> alerting          condition becomes true (alert emitted)
    alerting -> acknowledged    operator acknowledges the alert
    alerting/acknowledged -> normal     condition clears
    alerting/acknowledged -> alerting   condition changes kind (new alert)

Price and vendor changes are value transitions and alert on every change
that crosses the configured threshold.

Because the monitor cannot assume every write event is delivered, a
periodic sweep re-evaluates the whole active catalog against stored state.
Version: 1.0.0
"""
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel

from inventory_sync.core.config import settings
from inventory_sync.core.constants.alerts import (
    ALERT_LOW_STOCK,
    ALERT_OUT_OF_STOCK,
    ALERT_PRICE_CHANGE,
    ALERT_REORDER_NEEDED,
    ALERT_VENDOR_CHANGE,
    PRICE_CHANGE_HIGH_PERCENT,
    SEVERITY_BY_CONDITION,
    STATE_ACKNOWLEDGED,
    STATE_ALERTING,
    STATE_NORMAL,
)
from inventory_sync.db.alert_store import AlertStore, MonitorStateStore
from inventory_sync.db.catalog_store import CatalogStore
from inventory_sync.schemas.inventory import Alert, MonitorState

logger = logging.getLogger(__name__)

MONITOR_COLUMNS = "sku, product_name, stock, cost, vendor, reorder_point"
SWEEP_CHUNK_SIZE = 200

_UNSET = object()

AlertListener = Callable[[Alert], None]


def evaluate_stock_condition(stock: Optional[int], reorder_point: Optional[int], low_stock_multiplier: float) -> Optional[str]:
    """The most severe stock condition that holds, or None."""
    if stock is None:
        return None
    if stock <= 0:
        return ALERT_OUT_OF_STOCK
    reorder_point = reorder_point or 0
    if reorder_point <= 0:
        return None
    if stock <= reorder_point:
        return ALERT_REORDER_NEEDED
    if stock <= reorder_point * low_stock_multiplier:
        return ALERT_LOW_STOCK
    return None


def _as_dict(item: Union[BaseModel, Mapping[str, Any]]) -> Dict[str, Any]:
    return item.model_dump() if isinstance(item, BaseModel) else dict(item)


class CriticalItemMonitor:
    """Watches catalog mutations and persists alerts."""

    def __init__(
        self,
        state_store: MonitorStateStore,
        alert_store: AlertStore,
        catalog_store: Optional[CatalogStore] = None,
        low_stock_multiplier: float = settings.monitor_low_stock_multiplier,
        price_change_percent: float = settings.monitor_price_change_percent,
    ):
        self._states = state_store
        self._alerts = alert_store
        self._catalog = catalog_store
        self._low_stock_multiplier = low_stock_multiplier
        self._price_change_percent = price_change_percent
        self._listeners: List[AlertListener] = []

    def add_listener(self, listener: AlertListener) -> None:
        """Register a callback invoked with every persisted alert."""
        self._listeners.append(listener)

    # ============================================
    # Observation
    # ============================================
    def observe(
        self,
        item: Union[BaseModel, Mapping[str, Any]],
        previous: Optional[Mapping[str, Any]] = None,
        state: Any = _UNSET,
    ) -> List[Alert]:
        """
        Evaluate one catalog mutation.

        Args:
            item: New item values (InventoryRecord or catalog row)
            previous: Stored row before the write, used when no state exists yet
            state: Preloaded MonitorState (sweep); looked up when omitted

        Returns:
            Alerts emitted by this observation
        """
        data = _as_dict(item)
        sku = data["sku"]
        if state is _UNSET:
            state = self._states.get_state(sku)

        if state is None:
            seed = previous or {}
            state = MonitorState(
                sku=sku,
                stock=seed.get("stock"),
                cost=seed.get("cost"),
                vendor=seed.get("vendor"),
                reorder_point=seed.get("reorder_point"),
            )
        before = state.model_copy()

        pending: List[Alert] = []
        stock_alert = self._transition_stock_condition(state, data)
        if stock_alert is not None:
            pending.append(stock_alert)
        pending.extend(self._value_change_alerts(state, data))

        state.stock = data.get("stock")
        state.cost = data.get("cost")
        state.vendor = data.get("vendor")
        state.reorder_point = data.get("reorder_point")

        emitted: List[Alert] = []
        for alert in pending:
            stored = self._alerts.create_alert(alert)
            if stock_alert is alert:
                state.alert_id = stored.id
            emitted.append(stored)
            self._notify(stored)

        if state != before:
            self._states.save_state(state)

        return emitted

    def observe_batch(
        self,
        items: List[Tuple[Union[BaseModel, Mapping[str, Any]], Optional[Mapping[str, Any]]]],
    ) -> List[Alert]:
        """Observe several (item, previous) mutations with one state lookup."""
        if not items:
            return []
        states = self._states.get_states([_as_dict(item)["sku"] for item, _ in items])
        emitted: List[Alert] = []
        for item, previous in items:
            sku = _as_dict(item)["sku"]
            emitted.extend(self.observe(item, previous, state=states.get(sku)))
        return emitted

    def _transition_stock_condition(self, state: MonitorState, data: Dict[str, Any]) -> Optional[Alert]:
        condition = evaluate_stock_condition(data.get("stock"), data.get("reorder_point"), self._low_stock_multiplier)

        if condition is None:
            if state.state != STATE_NORMAL:
                logger.info(f"{data['sku']} recovered from {state.condition}")
            state.condition = None
            state.state = STATE_NORMAL
            state.alert_id = None
            return None

        if state.state != STATE_NORMAL and condition == state.condition:
            return None

        state.condition = condition
        state.state = STATE_ALERTING
        return Alert(
            sku=data["sku"],
            product_name=data.get("product_name"),
            alert_type=condition,
            severity=SEVERITY_BY_CONDITION[condition],
            current_value=data.get("stock"),
            threshold_value=self._threshold_for(condition, data.get("reorder_point") or 0),
            previous_value=state.stock,
        )

    def _threshold_for(self, condition: str, reorder_point: int) -> float:
        if condition == ALERT_OUT_OF_STOCK:
            return 0
        if condition == ALERT_REORDER_NEEDED:
            return reorder_point
        return reorder_point * self._low_stock_multiplier

    def _value_change_alerts(self, state: MonitorState, data: Dict[str, Any]) -> List[Alert]:
        alerts: List[Alert] = []
        sku = data["sku"]

        old_cost, new_cost = state.cost, data.get("cost")
        if old_cost and new_cost is not None and old_cost > 0:
            change_percent = abs(new_cost - old_cost) / old_cost * 100
            if change_percent >= self._price_change_percent:
                alerts.append(Alert(
                    sku=sku,
                    product_name=data.get("product_name"),
                    alert_type=ALERT_PRICE_CHANGE,
                    severity="high" if change_percent > PRICE_CHANGE_HIGH_PERCENT else "medium",
                    current_value=new_cost,
                    threshold_value=self._price_change_percent,
                    previous_value=old_cost,
                    metadata={"change_percent": round(change_percent, 2)},
                ))

        old_vendor, new_vendor = state.vendor, data.get("vendor")
        if old_vendor and new_vendor != old_vendor:
            alerts.append(Alert(
                sku=sku,
                product_name=data.get("product_name"),
                alert_type=ALERT_VENDOR_CHANGE,
                severity="medium",
                metadata={"previous_vendor": old_vendor, "current_vendor": new_vendor},
            ))

        return alerts

    def _notify(self, alert: Alert) -> None:
        for listener in self._listeners:
            try:
                listener(alert)
            except Exception as e:
                logger.error(f"Alert listener failed for {alert.alert_type} {alert.sku}: {e}")

    # ============================================
    # Operator actions
    # ============================================
    def acknowledge(self, alert_id: str) -> Alert:
        """
        Acknowledge an alert and move its item to the acknowledged state.

        Raises:
            AlertNotFoundError: No alert with this id
        """
        alert = self._alerts.acknowledge_alert(alert_id)

        state = self._states.get_state(alert.sku)
        if state is not None and state.alert_id == alert.id and state.state == STATE_ALERTING:
            state.state = STATE_ACKNOWLEDGED
            self._states.save_state(state)
            logger.info(f"{alert.sku} {alert.alert_type} acknowledged")

        return alert

    # ============================================
    # Reconciliation
    # ============================================
    def sweep(self) -> Dict[str, int]:
        """
        Re-evaluate every active catalog item against its stored state.

        Catches mutations whose observation was missed and clears states of
        items that left the active catalog.

        Returns:
            Dict with checked, alerts_raised and cleared counts
        """
        if self._catalog is None:
            raise RuntimeError("sweep requires a catalog store")

        rows = self._catalog.get_active_items(MONITOR_COLUMNS)
        checked = 0
        raised = 0
        seen = set()

        for i in range(0, len(rows), SWEEP_CHUNK_SIZE):
            chunk = rows[i:i + SWEEP_CHUNK_SIZE]
            states = self._states.get_states([row["sku"] for row in chunk])
            for row in chunk:
                seen.add(row["sku"])
                raised += len(self.observe(row, state=states.get(row["sku"])))
                checked += 1

        cleared = 0
        for state in self._states.list_active_states():
            if state.sku not in seen:
                state.condition = None
                state.state = STATE_NORMAL
                state.alert_id = None
                self._states.save_state(state)
                cleared += 1

        logger.info(f"Monitor sweep: checked={checked}, alerts_raised={raised}, cleared={cleared}")
        return {"checked": checked, "alerts_raised": raised, "cleared": cleared}

    def get_alert_metrics(self) -> Dict[str, int]:
        """Counts of items per active stock condition plus unacknowledged alerts."""
        metrics = {ALERT_OUT_OF_STOCK: 0, ALERT_REORDER_NEEDED: 0, ALERT_LOW_STOCK: 0}
        for state in self._states.list_active_states():
            if state.condition in metrics:
                metrics[state.condition] += 1
        metrics["total_critical"] = sum(metrics.values())
        metrics["unacknowledged_alerts"] = self._alerts.count_unacknowledged()
        return metrics
