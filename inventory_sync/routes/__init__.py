"""
Route aggregator — routers mounted by main.py.

Version: 1.0.0
"""
from inventory_sync.routes.health import router as health_router
from inventory_sync.routes.sync import router as sync_router

__all__ = ["health_router", "sync_router"]
