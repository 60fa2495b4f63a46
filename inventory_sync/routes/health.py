"""
Health routes — dependency-aware health check.

Pings the database, Redis, the inventory API and the shared rate limiter:
- healthy: every dependency responds
- degraded: at least three quarters respond
- unhealthy: fewer than that
Version: 1.0.0
"""
import logging
from typing import Any, Dict

import redis
from fastapi import APIRouter, Depends

from inventory_sync.container import (
    get_inventory_client,
    get_rate_limiter,
    get_redis_client,
    get_supabase_client,
)

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

DEGRADED_THRESHOLD = 0.75


def _check_redis(client: redis.Redis) -> Dict[str, Any]:
    try:
        client.ping()
        return {"healthy": True}
    except redis.RedisError as e:
        logger.warning(f"Redis health check failed: {e}")
        return {"healthy": False, "error": str(e)}


def _check_rate_limiter(limiter) -> Dict[str, Any]:
    status = limiter.get_status()
    return {"healthy": "error" not in status, **status}


def overall_status(checks: Dict[str, Dict[str, Any]]) -> str:
    healthy = sum(1 for check in checks.values() if check.get("healthy"))
    ratio = healthy / len(checks) if checks else 0.0
    if ratio == 1.0:
        return "healthy"
    if ratio >= DEGRADED_THRESHOLD:
        return "degraded"
    return "unhealthy"


@router.get("/health")
def health_check(
    supabase=Depends(get_supabase_client),
    redis_client=Depends(get_redis_client),
    inventory_client=Depends(get_inventory_client),
    rate_limiter=Depends(get_rate_limiter),
):
    """Dependency health with an overall status."""
    checks = {
        "database": {"healthy": supabase.ping()},
        "redis": _check_redis(redis_client),
        "inventory_api": inventory_client.health_check(),
        "rate_limiter": _check_rate_limiter(rate_limiter),
    }
    return {"status": overall_status(checks), "checks": checks}
