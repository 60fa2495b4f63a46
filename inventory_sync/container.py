"""
Lazy DI container — singleton access to clients, stores, and services.

Provides singleton access to all clients, stores, and services.
Works in both FastAPI and Celery contexts; Celery workers build their
instances after fork because nothing here runs at import time.
Import individual getters to avoid circular imports.
Version: 1.0.0
"""

from functools import lru_cache

import redis

from inventory_sync.core.config import settings
from inventory_sync.clients.inventory_client import InventoryClient
from inventory_sync.clients.supabase_client import SupabaseClient
from inventory_sync.db.alert_store import AlertStore, MonitorStateStore
from inventory_sync.db.catalog_store import CatalogStore
from inventory_sync.db.failure_store import FailureStore
from inventory_sync.db.sync_ledger_store import SyncLedgerStore
from inventory_sync.services.critical_monitor import CriticalItemMonitor
from inventory_sync.services.sync_dispatch_service import SyncDispatchService
from inventory_sync.services.sync_executor import SyncExecutor
from inventory_sync.services.sync_scheduler import SyncScheduler
from inventory_sync.utils.rate_limiter import RateLimiter, build_rate_limiter


# -- Clients ---------------------------------------------------------------

@lru_cache(maxsize=1)
def get_supabase_client():
    return SupabaseClient(settings)


@lru_cache(maxsize=1)
def get_redis_client():
    return redis.Redis.from_url(settings.redis_url)


@lru_cache(maxsize=1)
def get_rate_limiter() -> RateLimiter:
    """The one limiter every inventory API call in this process goes through."""
    redis_client = get_redis_client() if settings.inventory_rate_limit_backend.lower() == "redis" else None
    return build_rate_limiter(settings, redis_client=redis_client)


@lru_cache(maxsize=1)
def get_inventory_client():
    return InventoryClient(settings, rate_limiter=get_rate_limiter())


# -- DB Stores -------------------------------------------------------------

@lru_cache(maxsize=1)
def get_catalog_store():
    return CatalogStore(get_supabase_client())


@lru_cache(maxsize=1)
def get_ledger_store():
    return SyncLedgerStore(get_supabase_client())


@lru_cache(maxsize=1)
def get_failure_store():
    return FailureStore(get_supabase_client())


@lru_cache(maxsize=1)
def get_alert_store():
    return AlertStore(get_supabase_client())


@lru_cache(maxsize=1)
def get_monitor_state_store():
    return MonitorStateStore(get_supabase_client())


# -- Sync Services ---------------------------------------------------------

@lru_cache(maxsize=1)
def get_critical_monitor():
    return CriticalItemMonitor(
        state_store=get_monitor_state_store(),
        alert_store=get_alert_store(),
        catalog_store=get_catalog_store(),
    )


@lru_cache(maxsize=1)
def get_sync_executor():
    return SyncExecutor(
        client=get_inventory_client(),
        catalog_store=get_catalog_store(),
        ledger_store=get_ledger_store(),
        failure_store=get_failure_store(),
        monitor=get_critical_monitor(),
    )


@lru_cache(maxsize=1)
def get_sync_scheduler():
    return SyncScheduler(
        catalog_store=get_catalog_store(),
        ledger_store=get_ledger_store(),
    )


@lru_cache(maxsize=1)
def get_sync_dispatch_service():
    return SyncDispatchService(
        scheduler=get_sync_scheduler(),
        ledger_store=get_ledger_store(),
        failure_store=get_failure_store(),
    )
