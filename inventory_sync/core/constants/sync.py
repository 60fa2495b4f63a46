"""
Sync constants — table names, run statuses, intervals, thresholds.

Sync engine constants.
Version: 1.0.0
"""

# Supabase tables
INVENTORY_ITEMS_TABLE: str = "inventory_items"
SYNC_LOGS_TABLE: str = "sync_logs"
FAILED_ITEMS_TABLE: str = "failed_items"

# Run statuses (running -> success | partial | error)
RUN_STATUS_RUNNING: str = "running"
RUN_STATUS_SUCCESS: str = "success"
RUN_STATUS_PARTIAL: str = "partial"
RUN_STATUS_ERROR: str = "error"
FINAL_RUN_STATUSES: tuple = (RUN_STATUS_SUCCESS, RUN_STATUS_PARTIAL, RUN_STATUS_ERROR)

# Minutes before a "running" sync log is considered abandoned
STUCK_THRESHOLD_MINUTES: int = 30

# Postgres unique_violation, raised by the one-running-run-per-kind index
UNIQUE_VIOLATION_CODE: str = "23505"

# Minutes between runs, per strategy
STRATEGY_INTERVAL_MINUTES: dict = {
    "critical": 15,
    "inventory": 60,
    "smart": 360,
    "full": 1440,
}

# Hard ceiling enforced by the failed_items CHECK constraint
MAX_RETRY_CAP: int = 10

# Error messages stored on failed_items are truncated to this length
MAX_ERROR_MESSAGE_LENGTH: int = 2000

# Change priority scores (higher syncs first)
PRIORITY_OUT_OF_STOCK: int = 10
PRIORITY_BELOW_REORDER: int = 9
PRIORITY_NEW_ITEM: int = 8
PRIORITY_BASE: int = 5

# Per-item error descriptors kept on one sync_logs row
MAX_RUN_ERRORS: int = 100
