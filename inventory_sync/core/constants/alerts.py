"""
Alert constants — alert kinds, severities, monitor states.

Critical-item monitor constants.
Version: 1.0.0
"""

ALERTS_TABLE: str = "inventory_alerts"
MONITOR_STATE_TABLE: str = "inventory_monitor_state"

# Alert kinds
ALERT_OUT_OF_STOCK: str = "out_of_stock"
ALERT_REORDER_NEEDED: str = "reorder_needed"
ALERT_LOW_STOCK: str = "low_stock"
ALERT_PRICE_CHANGE: str = "price_change"
ALERT_VENDOR_CHANGE: str = "vendor_change"

# Stock conditions, most severe first
STOCK_CONDITIONS: tuple = (ALERT_OUT_OF_STOCK, ALERT_REORDER_NEEDED, ALERT_LOW_STOCK)

SEVERITY_BY_CONDITION: dict = {
    ALERT_OUT_OF_STOCK: "critical",
    ALERT_REORDER_NEEDED: "high",
    ALERT_LOW_STOCK: "medium",
}

# Per-item monitor states
STATE_NORMAL: str = "normal"
STATE_ALERTING: str = "alerting"
STATE_ACKNOWLEDGED: str = "acknowledged"

# Price moves above this percentage are escalated to "high"
PRICE_CHANGE_HIGH_PERCENT: float = 25.0
