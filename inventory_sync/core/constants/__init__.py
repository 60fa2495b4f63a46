"""
Constants package — re-exports from domain-specific modules.

Centralized constants for the inventory sync engine.

Usage:
    from inventory_sync.core.constants.sync import STUCK_THRESHOLD_MINUTES
    # or import everything:
    from inventory_sync.core.constants import sync, alerts
Version: 1.0.0
"""

from inventory_sync.core.constants import sync, alerts
from inventory_sync.core.constants.sync import (
    RUN_STATUS_RUNNING,
    RUN_STATUS_SUCCESS,
    RUN_STATUS_PARTIAL,
    RUN_STATUS_ERROR,
    STUCK_THRESHOLD_MINUTES,
    STRATEGY_INTERVAL_MINUTES,
    MAX_RETRY_CAP,
)
from inventory_sync.core.constants.alerts import (
    ALERT_OUT_OF_STOCK,
    ALERT_REORDER_NEEDED,
    ALERT_LOW_STOCK,
    ALERT_PRICE_CHANGE,
    ALERT_VENDOR_CHANGE,
)

__all__ = [
    "sync",
    "alerts",
    "RUN_STATUS_RUNNING",
    "RUN_STATUS_SUCCESS",
    "RUN_STATUS_PARTIAL",
    "RUN_STATUS_ERROR",
    "STUCK_THRESHOLD_MINUTES",
    "STRATEGY_INTERVAL_MINUTES",
    "MAX_RETRY_CAP",
    "ALERT_OUT_OF_STOCK",
    "ALERT_REORDER_NEEDED",
    "ALERT_LOW_STOCK",
    "ALERT_PRICE_CHANGE",
    "ALERT_VENDOR_CHANGE",
]
